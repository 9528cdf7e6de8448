"""Apply the community watermark to a local image.

Usage (from backend/):
    python -m scripts.watermark_image photo.jpg [--out photo.watermarked.jpg]
"""

from __future__ import annotations

import argparse
import logging
import mimetypes
from pathlib import Path
import sys

from domain.errors import CardStudioError
from services.community import validate_upload
from services.watermark import WatermarkTiler
from settings import settings

logger = logging.getLogger("watermark_image")


def main() -> int:
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    parser = argparse.ArgumentParser(description="Watermark an image with the tiled DO NOT USE mark.")
    parser.add_argument("image", help="Source image (png/jpg/jpeg).")
    parser.add_argument("--out", default=None, help="Output path (defaults to <name>.watermarked.jpg).")
    args = parser.parse_args()

    src = Path(args.image)
    out = Path(args.out) if args.out else src.with_name(f"{src.stem}.watermarked.jpg")
    mime, _ = mimetypes.guess_type(src.name)
    tiler = WatermarkTiler(font_path=str(settings.CARD_BOLD_FONT_PATH) if settings.CARD_BOLD_FONT_PATH else None)
    try:
        data = src.read_bytes()
        validate_upload(src.name, mime, data)
        out.write_bytes(tiler.apply(data))
    except (CardStudioError, OSError) as exc:
        logger.error("Failed to watermark %s: %s", src, exc)
        return 1
    logger.info("Watermarked image written to %s", out)
    return 0


if __name__ == "__main__":
    sys.exit(main())
