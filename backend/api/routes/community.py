"""
Community wall API routes.
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, File, Form, HTTPException, UploadFile
from pydantic import BaseModel

from db import SessionLocal
from domain.errors import DecodeError, EncodeError, RemoteWriteError, ValidationError
from repositories import CommunityRepository
from services.community import CommunityPost, CommunityService
from services.watermark import WatermarkTiler
from settings import settings
from storage.file_storage import FileStorage

router = APIRouter()
logger = logging.getLogger(__name__)

storage = FileStorage(settings.MEDIA_ROOT)
community_repo = CommunityRepository()
service = CommunityService(
    storage=storage,
    repository=community_repo,
    session_factory=SessionLocal,
    tiler=WatermarkTiler(font_path=str(settings.CARD_BOLD_FONT_PATH) if settings.CARD_BOLD_FONT_PATH else None),
    viewer_base=settings.VIEWER_PROXY_BASE,
    page_size=settings.COMMUNITY_PAGE_SIZE,
)


class CommunityItemResponse(BaseModel):
    id: str
    username: str
    image_path: str
    created_at: str
    thumbnail_url: str
    viewer_url: str


def post_to_response(post: CommunityPost) -> CommunityItemResponse:
    """Convert a community post to API response."""
    return CommunityItemResponse(
        id=post.item.id,
        username=post.item.username,
        image_path=post.item.image_path,
        created_at=post.item.created_at.isoformat(),
        thumbnail_url=post.thumbnail_url,
        viewer_url=post.viewer_url,
    )


@router.get("/items", response_model=List[CommunityItemResponse])
async def list_items():
    """Latest community uploads, newest first."""
    return [post_to_response(p) for p in service.list_posts()]


@router.post("/items", response_model=CommunityItemResponse, status_code=201)
async def create_item(
    file: UploadFile = File(...),
    username: Optional[str] = Form(None),
):
    """Watermark and publish one photo to the community wall."""
    data = await file.read()
    try:
        item = service.submit(username, file.filename or "", file.content_type, data)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except (DecodeError, EncodeError) as e:
        raise HTTPException(status_code=422, detail=f"Could not process image: {e}")
    except RemoteWriteError as e:
        logger.error("community upload failed: %s", e)
        raise HTTPException(status_code=502, detail="Upload failed, please try again.")
    return post_to_response(service.to_post(item))
