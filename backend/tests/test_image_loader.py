import asyncio
import base64
from io import BytesIO
from unittest.mock import MagicMock, patch

import pytest
import requests
from PIL import Image

from domain.errors import LoadError
from domain.models import ImageResource, LoadState
from services.image_loader import ImageLoader, load_image, read_image_bytes


def _png_bytes(size=(8, 6), color=(200, 10, 10)) -> bytes:
    buf = BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return buf.getvalue()


def test_load_from_data_url():
    url = "data:image/png;base64," + base64.b64encode(_png_bytes()).decode("ascii")
    res = asyncio.run(load_image(url))
    assert res.load_state is LoadState.LOADED
    assert res.size == (8, 6)


def test_load_from_raw_bytes_and_path(tmp_path):
    path = tmp_path / "pfp.png"
    path.write_bytes(_png_bytes((5, 5)))

    from_bytes = asyncio.run(load_image(_png_bytes((3, 4))))
    from_path = asyncio.run(load_image(str(path)))
    assert from_bytes.size == (3, 4)
    assert from_path.size == (5, 5)


def test_missing_file_settles_as_failed(tmp_path):
    res = asyncio.run(load_image(str(tmp_path / "nope.png")))
    assert res.load_state is LoadState.FAILED
    assert isinstance(res.error, LoadError)


def test_undecodable_bytes_settle_as_failed():
    res = asyncio.run(load_image(b"definitely not an image"))
    assert res.load_state is LoadState.FAILED
    assert isinstance(res.error, LoadError)


@patch("services.image_loader._session.get")
def test_http_errors_become_load_errors(mock_get):
    mock_get.side_effect = requests.ConnectionError("offline")
    with pytest.raises(LoadError):
        read_image_bytes("https://example.com/pfp.png")


@patch("services.image_loader._session.get")
def test_http_fetch_returns_content(mock_get):
    mock_resp = MagicMock()
    mock_resp.content = b"abc"
    mock_resp.raise_for_status.return_value = None
    mock_get.return_value = mock_resp
    assert read_image_bytes("http://example.com/x.png", timeout=1.0) == b"abc"


def test_loader_starts_one_task_per_resource():
    res = ImageResource(_png_bytes())

    async def scenario():
        loader = ImageLoader()
        first = loader.start(res)
        second = loader.start(res)
        assert first is second
        await first
        # Settled resources are not reloaded
        assert loader.start(res) is None

    asyncio.run(scenario())
    assert res.load_state is LoadState.LOADED


def test_unexpected_loader_error_still_settles_the_resource(monkeypatch):
    import services.image_loader as image_loader

    def exploding(ref, timeout):
        raise IndexError("decoder bug")

    monkeypatch.setattr(image_loader, "_load_sync", exploding)
    res = asyncio.run(load_image(b"whatever"))
    assert res.load_state is LoadState.FAILED
    assert isinstance(res.error, LoadError)


def test_path_with_null_byte_settles_as_failed():
    res = asyncio.run(load_image("bad\x00name.png"))
    assert res.load_state is LoadState.FAILED
    assert isinstance(res.error, LoadError)
