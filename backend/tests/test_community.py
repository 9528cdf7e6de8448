from datetime import datetime, timedelta
from io import BytesIO
import re
from unittest.mock import MagicMock

import pytest
from PIL import Image
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from db import init_db
from domain.errors import DecodeError, RemoteWriteError, ValidationError
from repositories.community import CommunityRepository
from services.community import (
    CommunityService,
    build_viewer_url,
    generate_object_key,
    normalize_username,
    to_base36,
    validate_upload,
)
from storage.file_storage import FileStorage

KEY_RE = re.compile(r"^\d+-[0-9a-z]{6,}\.(png|jpg|jpeg)$")


def _png_bytes(size=(40, 30)) -> bytes:
    buf = BytesIO()
    Image.new("RGB", size, (10, 10, 10)).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    init_db(bind=engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def storage(tmp_path):
    return FileStorage(str(tmp_path / "media"))


# ---- validation -----------------------------------------------------------


@pytest.mark.parametrize(
    "filename, mime",
    [("a.png", "image/png"), ("a.JPG", "image/jpeg"), ("photo.jpeg", "image/jpeg")],
)
def test_allowed_uploads(filename, mime):
    assert validate_upload(filename, mime, b"x") in {"png", "jpg", "jpeg"}


@pytest.mark.parametrize(
    "filename, mime",
    [
        ("a.gif", "image/gif"),
        ("a.png", "image/gif"),
        ("a.gif", "image/png"),
        ("noext", "image/png"),
        ("a.webp", "image/webp"),
        ("a.png", None),
    ],
)
def test_rejected_uploads(filename, mime):
    with pytest.raises(ValidationError, match="Only PNG, JPG, JPEG files are allowed."):
        validate_upload(filename, mime)


def test_empty_payload_rejected():
    with pytest.raises(ValidationError):
        validate_upload("a.png", "image/png", b"")


# ---- keys, names and viewer urls -------------------------------------------


def test_to_base36():
    assert to_base36(0) == "0"
    assert to_base36(35) == "z"
    assert to_base36(36) == "10"
    assert to_base36(1295) == "zz"


def test_object_key_format():
    key = generate_object_key("photo.JPG", now_ms=1700000000000, randbits=lambda n: 36 ** 6 + 5)
    assert key == "1700000000000-1000005.jpg"
    assert KEY_RE.match(generate_object_key("x.png"))


def test_object_key_suffix_is_padded_and_ext_defaults_to_jpg():
    assert generate_object_key("noext", now_ms=1, randbits=lambda n: 1) == "1-000001.jpg"


def test_object_key_extension_override():
    key = generate_object_key("photo.png", now_ms=5, randbits=lambda n: 1, ext="jpg")
    assert key == "5-000001.jpg"


def test_object_keys_are_unique():
    keys = {generate_object_key("a.jpg", now_ms=1) for _ in range(200)}
    assert len(keys) == 200


def test_normalize_username():
    assert normalize_username(None) == "anon"
    assert normalize_username("   ") == "anon"
    assert normalize_username("  emir ") == "emir"
    assert len(normalize_username("x" * 100)) == 40


def test_viewer_url_escapes_path():
    url = build_viewer_url("17-abc def&x.jpg", "/api/wm")
    assert url == "/api/wm?path=17-abc%20def%26x.jpg"


def test_viewer_url_with_intensities():
    url = build_viewer_url("17-abc.jpg", "/api/wm", fill=0.28, stroke=0.85)
    assert url == "/api/wm?path=17-abc.jpg&fill=0.28&stroke=0.85"
    assert build_viewer_url("k.jpg", "/w", fill=0, stroke=1).endswith("&fill=0&stroke=1")


@pytest.mark.parametrize("fill, stroke", [(-0.1, None), (1.5, None), (None, 2.0), (None, -1)])
def test_viewer_url_rejects_out_of_range(fill, stroke):
    with pytest.raises(ValidationError):
        build_viewer_url("k.jpg", "/api/wm", fill=fill, stroke=stroke)


# ---- submit / list ----------------------------------------------------------


def test_submit_watermarks_stores_and_lists(storage, session_factory):
    service = CommunityService(storage, CommunityRepository(), session_factory)
    item = service.submit("  emir ", "photo.png", "image/png", _png_bytes())

    assert item.username == "emir"
    assert KEY_RE.match(item.image_path)
    assert item.image_path.endswith(".jpg")

    stored = Image.open(BytesIO(storage.read_object(item.image_path)))
    assert stored.format == "JPEG"
    assert stored.size == (40, 30)

    posts = service.list_posts()
    assert [p.item.image_path for p in posts] == [item.image_path]
    assert posts[0].thumbnail_url.endswith("&fill=0.28&stroke=0.85")
    assert posts[0].viewer_url == f"/api/wm?path={item.image_path}"


def test_submit_without_username_uses_anon(storage, session_factory):
    service = CommunityService(storage, CommunityRepository(), session_factory)
    assert service.submit(None, "a.jpg", "image/jpeg", _png_bytes()).username == "anon"


def test_validation_failure_touches_nothing(session_factory):
    storage = MagicMock()
    tiler = MagicMock()
    service = CommunityService(storage, CommunityRepository(), session_factory, tiler=tiler)
    with pytest.raises(ValidationError):
        service.submit("emir", "a.gif", "image/gif", b"GIF89a")
    tiler.apply.assert_not_called()
    storage.save_object.assert_not_called()


def test_decode_failure_stores_nothing(session_factory):
    storage = MagicMock()
    service = CommunityService(storage, CommunityRepository(), session_factory)
    with pytest.raises(DecodeError):
        service.submit("emir", "a.png", "image/png", b"not really a png")
    storage.save_object.assert_not_called()


def test_listing_failure_removes_stored_object(storage, session_factory):
    repo = MagicMock()
    repo.add_item.side_effect = RemoteWriteError("listing down")
    service = CommunityService(storage, repo, session_factory)

    with pytest.raises(RemoteWriteError):
        service.submit("emir", "a.png", "image/png", _png_bytes())
    assert list(storage.get_bucket_dir().iterdir()) == []


def test_list_recent_is_newest_first_and_capped(session_factory):
    repo = CommunityRepository()
    start = datetime(2025, 1, 1, 12, 0, 0)
    with session_factory() as session:
        for i in range(5):
            repo.add_item(session, "u", f"{i}-abcdef.jpg", created_at=start + timedelta(minutes=i))
        items = repo.list_recent(session, limit=3)
    assert [i.image_path for i in items] == ["4-abcdef.jpg", "3-abcdef.jpg", "2-abcdef.jpg"]


def test_duplicate_listing_path_is_a_remote_write_error(session_factory):
    repo = CommunityRepository()
    with session_factory() as session:
        repo.add_item(session, "u", "1-abcdef.jpg")
        with pytest.raises(RemoteWriteError):
            repo.add_item(session, "u", "1-abcdef.jpg")
