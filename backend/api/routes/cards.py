"""
Card generator API routes.
"""
from io import BytesIO
import logging
from typing import Optional

from fastapi import APIRouter, File, Form, HTTPException, UploadFile
from fastapi.responses import Response
from pydantic import BaseModel

from domain.errors import ExportError, ValidationError
from domain.models import PREVIEW_SCALE, AppState, ImageResource
from services import card_state
from services.community import validate_upload
from services.export_rasterizer import ExportRasterizer, export_card, render_preview
from services.image_loader import ImageLoader
from services.layout_engine import BrandAssets, build_card_tree, compute_card_layout
from services.readiness import await_all
from settings import settings

router = APIRouter()
logger = logging.getLogger(__name__)

loader = ImageLoader()
rasterizer = ExportRasterizer(
    loader=loader,
    font_path=str(settings.CARD_FONT_PATH) if settings.CARD_FONT_PATH else None,
    bold_font_path=str(settings.CARD_BOLD_FONT_PATH) if settings.CARD_BOLD_FONT_PATH else None,
)
brand = BrandAssets.from_settings(settings)

NOT_READY_MESSAGE = "Upload PFP + at least one username."


class CardFields(BaseModel):
    twitter: str = ""
    discord: str = ""
    badge: str = ""
    profile_image_url: Optional[str] = None


class CardLayoutResponse(BaseModel):
    badge: str
    twitter: str
    discord: str
    has_profile_image: bool
    ready: bool


def _state_from_fields(twitter: str, discord: str, badge: str, profile: Optional[ImageResource]) -> AppState:
    state = AppState()
    if profile is not None:
        state = card_state.select_profile_image(state, profile)
    state = card_state.set_twitter_handle(state, twitter)
    state = card_state.set_discord_handle(state, discord)
    return card_state.set_badge_label(state, badge)


async def _profile_from_upload(pfp: Optional[UploadFile]) -> Optional[ImageResource]:
    if pfp is None:
        return None
    data = await pfp.read()
    try:
        validate_upload(pfp.filename, pfp.content_type, data)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return ImageResource(data, name=pfp.filename)


@router.post("/layout", response_model=CardLayoutResponse)
async def card_layout(fields: CardFields):
    """Normalize the fields and report the slot values and readiness."""
    profile = ImageResource(fields.profile_image_url) if fields.profile_image_url else None
    state = _state_from_fields(fields.twitter, fields.discord, fields.badge, profile)
    layout = compute_card_layout(state.card)
    return CardLayoutResponse(
        badge=layout.slots["badge"],
        twitter=layout.slots["twitter"],
        discord=layout.slots["discord"],
        has_profile_image=layout.slots["profile_image"] is not None,
        ready=layout.ready,
    )


@router.post("/preview")
async def card_preview(
    pfp: Optional[UploadFile] = File(None),
    twitter: str = Form(""),
    discord: str = Form(""),
    badge: str = Form(""),
):
    """Render the card at preview scale as PNG; failed images show their placeholder."""
    profile = await _profile_from_upload(pfp)
    state = _state_from_fields(twitter, discord, badge, profile)
    tree = build_card_tree(state.card, scale=PREVIEW_SCALE, brand=brand)
    resources = tree.image_resources()
    loader.start_all(resources)
    await await_all(resources)
    buf = BytesIO()
    render_preview(tree).save(buf, format="PNG")
    return Response(content=buf.getvalue(), media_type="image/png")


@router.post("/export")
async def card_export(
    pfp: UploadFile = File(...),
    twitter: str = Form(""),
    discord: str = Form(""),
    badge: str = Form(""),
):
    """Export the full-size card as a PNG download."""
    profile = await _profile_from_upload(pfp)
    state = _state_from_fields(twitter, discord, badge, profile)
    if not card_state.can_export(state):
        raise HTTPException(status_code=400, detail=NOT_READY_MESSAGE)

    # Every request builds its own tree; single-flight only refuses repeats over one tree
    state = card_state.begin_export(state)
    try:
        download = await export_card(state.card, rasterizer, brand=brand)
    except ExportError as e:
        state = card_state.finish_export(state, error=e)
        raise HTTPException(status_code=500, detail=state.message)
    state = card_state.finish_export(state)

    headers = {"Content-Disposition": f'attachment; filename="{download.filename}"'}
    return Response(content=download.content, media_type=download.media_type, headers=headers)
