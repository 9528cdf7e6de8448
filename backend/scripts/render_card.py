"""Render a community card to a PNG file.

Usage (from backend/):
    python -m scripts.render_card --pfp photo.jpg --twitter emir_ethh [--discord name] [--badge master]
        [--out-dir output] [--preview]

The card is written as anoma-card-{epoch millis}.png (1140x1230). With
--preview the 0.6-scale preview is written next to it as well.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import mimetypes
from pathlib import Path
import sys

from domain.errors import CardStudioError, ValidationError
from domain.models import PREVIEW_SCALE, AppState, ImageResource
from services import card_state
from services.community import validate_upload
from services.export_rasterizer import ExportRasterizer, export_card, render_preview
from services.layout_engine import BrandAssets, build_card_tree
from settings import settings

logger = logging.getLogger("render_card")


def build_state(args: argparse.Namespace) -> AppState:
    state = AppState()
    pfp = Path(args.pfp)
    mime, _ = mimetypes.guess_type(pfp.name)
    try:
        validate_upload(pfp.name, mime)
        state = card_state.select_profile_image(state, ImageResource(str(pfp), name=pfp.name))
    except ValidationError as exc:
        state = card_state.reject_profile_image(state, str(exc))
    state = card_state.set_twitter_handle(state, args.twitter)
    state = card_state.set_discord_handle(state, args.discord)
    return card_state.set_badge_label(state, args.badge)


async def run(args: argparse.Namespace) -> int:
    state = build_state(args)
    if state.message:
        logger.error(state.message)
        return 1
    if not card_state.can_export(state):
        logger.error("Upload PFP + at least one username.")
        return 1

    brand = BrandAssets.from_settings(settings)
    rasterizer = ExportRasterizer(
        font_path=str(settings.CARD_FONT_PATH) if settings.CARD_FONT_PATH else None,
        bold_font_path=str(settings.CARD_BOLD_FONT_PATH) if settings.CARD_BOLD_FONT_PATH else None,
    )
    out_dir = Path(args.out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    state = card_state.begin_export(state)
    try:
        download = await export_card(state.card, rasterizer, brand=brand)
    except CardStudioError as exc:
        state = card_state.finish_export(state, error=exc)
        logger.error("%s (%s)", state.message, exc)
        return 2
    state = card_state.finish_export(state)

    out_path = out_dir / download.filename
    out_path.write_bytes(download.content)
    logger.info("Card written to %s", out_path)

    if args.preview:
        tree = build_card_tree(state.card, scale=PREVIEW_SCALE, brand=brand)
        preview_path = out_path.with_name(out_path.stem + "-preview.png")
        render_preview(tree).save(preview_path)
        logger.info("Preview written to %s", preview_path)
    return 0


def main() -> int:
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    parser = argparse.ArgumentParser(description="Render a community card PNG.")
    parser.add_argument("--pfp", required=True, help="Profile image (png/jpg/jpeg).")
    parser.add_argument("--twitter", default="", help="Twitter/X username.")
    parser.add_argument("--discord", default="", help="Discord username.")
    parser.add_argument("--badge", default="", help="Badge label (defaults to Seeker).")
    parser.add_argument("--out-dir", default="output")
    parser.add_argument("--preview", action="store_true", help="Also write the 0.6-scale preview.")
    args = parser.parse_args()
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
