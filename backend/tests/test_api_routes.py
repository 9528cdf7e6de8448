from datetime import datetime
from io import BytesIO
from unittest.mock import AsyncMock, patch

from fastapi import FastAPI
from fastapi.testclient import TestClient
from PIL import Image

from api.routes import cards as cards_router
from api.routes import community as community_router
from domain.errors import DecodeError, ExportError, RemoteWriteError, ValidationError
from domain.models import CardDownload, CommunityItem


def _png_bytes(size=(32, 32)) -> bytes:
    buf = BytesIO()
    Image.new("RGB", size, (90, 20, 20)).save(buf, format="PNG")
    return buf.getvalue()


def _client() -> TestClient:
    app = FastAPI()
    app.include_router(cards_router.router, prefix="/cards")
    app.include_router(community_router.router, prefix="/community")
    return TestClient(app)


def test_layout_endpoint_normalizes_and_reports_ready():
    resp = _client().post(
        "/cards/layout",
        json={"twitter": "  @@Foo Bar ", "discord": "", "badge": "", "profile_image_url": "pfp.png"},
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data == {
        "badge": "Seeker",
        "twitter": "@FooBar",
        "discord": "",
        "has_profile_image": True,
        "ready": True,
    }


def test_layout_endpoint_not_ready_without_photo():
    resp = _client().post("/cards/layout", json={"twitter": "emir"})
    assert resp.json()["ready"] is False


@patch.object(cards_router, "export_card", new_callable=AsyncMock)
def test_export_endpoint_returns_png_attachment(mock_export):
    mock_export.return_value = CardDownload(filename="anoma-card-1700000000000.png", content=b"\x89PNG")
    resp = _client().post(
        "/cards/export",
        files={"pfp": ("pfp.png", _png_bytes(), "image/png")},
        data={"twitter": "emir"},
    )
    assert resp.status_code == 200
    assert resp.headers["content-type"] == "image/png"
    assert 'filename="anoma-card-1700000000000.png"' in resp.headers["content-disposition"]
    assert resp.content == b"\x89PNG"


@patch.object(cards_router, "export_card", new_callable=AsyncMock)
def test_export_endpoint_requires_a_handle(mock_export):
    resp = _client().post(
        "/cards/export",
        files={"pfp": ("pfp.png", _png_bytes(), "image/png")},
        data={"twitter": "  ", "discord": ""},
    )
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Upload PFP + at least one username."
    mock_export.assert_not_called()


def test_export_endpoint_rejects_disallowed_file():
    resp = _client().post(
        "/cards/export",
        files={"pfp": ("anim.gif", b"GIF89a", "image/gif")},
        data={"twitter": "emir"},
    )
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Only PNG, JPG, JPEG files are allowed."


@patch.object(cards_router, "export_card", new_callable=AsyncMock)
def test_export_endpoint_maps_failures(mock_export):
    client = _client()
    files = {"pfp": ("pfp.png", _png_bytes(), "image/png")}

    mock_export.side_effect = ExportError("boom")
    resp = client.post("/cards/export", files=files, data={"twitter": "emir"})
    assert resp.status_code == 500
    assert resp.json()["detail"] == "Export failed."


@patch.object(cards_router, "export_card", new_callable=AsyncMock)
def test_export_endpoint_builds_a_fresh_card_per_request(mock_export):
    mock_export.return_value = CardDownload(filename="anoma-card-1.png", content=b"\x89PNG")
    client = _client()
    for _ in range(2):
        resp = client.post(
            "/cards/export",
            files={"pfp": ("pfp.png", _png_bytes(), "image/png")},
            data={"twitter": "emir"},
        )
        assert resp.status_code == 200
    first, second = (call.args[0] for call in mock_export.call_args_list)
    assert first is not second


def test_preview_endpoint_renders_scaled_png():
    resp = _client().post(
        "/cards/preview",
        files={"pfp": ("pfp.png", _png_bytes(), "image/png")},
        data={"twitter": "emir", "badge": "master"},
    )
    assert resp.status_code == 200
    assert Image.open(BytesIO(resp.content)).size == (684, 738)


def _item(key="1700000000000-abcdef.jpg", username="emir") -> CommunityItem:
    return CommunityItem(id="1", username=username, image_path=key, created_at=datetime(2025, 1, 1))


@patch.object(community_router.service, "submit")
def test_create_community_item(mock_submit):
    mock_submit.return_value = _item()
    resp = _client().post(
        "/community/items",
        files={"file": ("photo.png", _png_bytes(), "image/png")},
        data={"username": "emir"},
    )
    assert resp.status_code == 201
    data = resp.json()
    assert data["username"] == "emir"
    assert data["image_path"] == "1700000000000-abcdef.jpg"
    assert data["viewer_url"].endswith("?path=1700000000000-abcdef.jpg")
    assert "fill=0.28" in data["thumbnail_url"]
    args = mock_submit.call_args[0]
    assert args[0] == "emir"
    assert args[1] == "photo.png"
    assert args[2] == "image/png"


@patch.object(community_router.service, "submit")
def test_create_community_item_error_mapping(mock_submit):
    client = _client()
    cases = [
        (ValidationError("Only PNG, JPG, JPEG files are allowed."), 400),
        (DecodeError("bad bytes"), 422),
        (RemoteWriteError("bucket down"), 502),
    ]
    for exc, status in cases:
        mock_submit.side_effect = exc
        resp = client.post(
            "/community/items",
            files={"file": ("photo.png", _png_bytes(), "image/png")},
        )
        assert resp.status_code == status


@patch.object(community_router.service, "list_posts")
def test_list_community_items(mock_list):
    service = community_router.service
    mock_list.return_value = [service.to_post(_item("2-bbbbbb.jpg")), service.to_post(_item("1-aaaaaa.jpg"))]
    resp = _client().get("/community/items")
    assert resp.status_code == 200
    assert [d["image_path"] for d in resp.json()] == ["2-bbbbbb.jpg", "1-aaaaaa.jpg"]
