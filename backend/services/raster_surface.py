"""
Raster surface backed by Pillow.

Offers the small canvas-like drawing vocabulary the card and watermark code
needs: a save/restore transform stack with translate and rotate, image
drawing, stroked (optionally dashed) and filled text, and encoding to bytes.
Angles follow screen conventions: positive radians turn clockwise because the
y axis points down.
"""
from functools import lru_cache
from io import BytesIO
import logging
import math
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
from PIL import Image, ImageChops, ImageDraw, ImageFilter, ImageFont, ImageOps, UnidentifiedImageError

from domain.errors import DecodeError, EncodeError

logger = logging.getLogger(__name__)

Matrix = Tuple[float, float, float, float, float, float]
_IDENTITY: Matrix = (1.0, 0.0, 0.0, 0.0, 1.0, 0.0)

_FALLBACK_FONTS = {
    True: ("DejaVuSans-Bold.ttf", "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf", "Arial Bold.ttf"),
    False: ("DejaVuSans.ttf", "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf", "Arial.ttf"),
}


@lru_cache(maxsize=64)
def load_font(size: int, bold: bool = False, font_path: Optional[str] = None) -> ImageFont.FreeTypeFont:
    """Load a TrueType font, falling back to common system fonts and then Pillow's default."""
    candidates = ([font_path] if font_path else []) + list(_FALLBACK_FONTS[bold])
    for candidate in candidates:
        try:
            return ImageFont.truetype(candidate, size)
        except OSError:
            continue
    logger.debug("no TrueType font found for size=%s bold=%s; using Pillow default", size, bold)
    return ImageFont.load_default(size=size)


def decode_image(data: bytes) -> Image.Image:
    """Decode image bytes, honouring EXIF orientation. Raises DecodeError."""
    if not data:
        raise DecodeError("empty image data")
    try:
        img = Image.open(BytesIO(data))
        img.load()
        img = ImageOps.exif_transpose(img)
    except (UnidentifiedImageError, OSError, ValueError, SyntaxError, Image.DecompressionBombError) as exc:
        raise DecodeError(f"cannot decode image: {exc}") from exc
    return img


def encode_image(img: Image.Image, fmt: str = "PNG", quality: float = 0.92) -> bytes:
    """Serialize an image; JPEG output is flattened onto black. Raises EncodeError."""
    width, height = img.size
    if width <= 0 or height <= 0:
        raise EncodeError(f"cannot encode a {width}x{height} surface")
    fmt = fmt.upper()
    out = img
    save_kwargs: Dict[str, object] = {}
    if fmt in ("JPEG", "JPG"):
        fmt = "JPEG"
        if img.mode in ("RGBA", "LA", "P"):
            rgba = img.convert("RGBA")
            out = Image.new("RGB", rgba.size, (0, 0, 0))
            out.paste(rgba, mask=rgba.split()[-1])
        elif img.mode != "RGB":
            out = img.convert("RGB")
        save_kwargs["quality"] = int(round(quality * 100))
    buffer = BytesIO()
    try:
        out.save(buffer, format=fmt, **save_kwargs)
    except (OSError, ValueError, KeyError, SystemError) as exc:
        raise EncodeError(f"cannot encode image as {fmt}: {exc}") from exc
    return buffer.getvalue()


def _dash_mask(size: Tuple[int, int], dash: Sequence[float]) -> Image.Image:
    """Diagonal on/off pattern so both horizontal and vertical outline runs come out dashed."""
    on, off = dash
    period = on + off
    rows, cols = np.indices((size[1], size[0]))
    keep = ((rows + cols) % period) < on
    return Image.fromarray((keep * 255).astype(np.uint8))


def composite_clipped(base: Image.Image, layer: Image.Image, x: int, y: int) -> None:
    """alpha_composite `layer` at (x, y), clipping whatever falls outside `base`."""
    left, top = max(0, x), max(0, y)
    right = min(base.width, x + layer.width)
    bottom = min(base.height, y + layer.height)
    if right <= left or bottom <= top:
        return
    source = (left - x, top - y, right - x, bottom - y)
    base.alpha_composite(layer, dest=(left, top), source=source)


class PillowSurface:
    """An RGBA drawing surface with a canvas-style transform stack."""

    def __init__(self, width: int, height: int, background=(0, 0, 0, 0)):
        self.width = int(width)
        self.height = int(height)
        self.image = Image.new("RGBA", (max(0, self.width), max(0, self.height)), background)
        self._matrix: Matrix = _IDENTITY
        self._stack: List[Tuple[Matrix, Tuple[float, ...]]] = []
        self._dash: Tuple[float, ...] = ()
        self._stamps: Dict[tuple, Tuple[Image.Image, Tuple[float, float]]] = {}

    # -- transform state --------------------------------------------------

    def save(self) -> None:
        self._stack.append((self._matrix, self._dash))

    def restore(self) -> None:
        if self._stack:
            self._matrix, self._dash = self._stack.pop()

    def translate(self, dx: float, dy: float) -> None:
        a, b, c, d, e, f = self._matrix
        self._matrix = (a, b, c + a * dx + b * dy, d, e, f + d * dx + e * dy)

    def rotate(self, radians: float) -> None:
        a, b, c, d, e, f = self._matrix
        cos, sin = math.cos(radians), math.sin(radians)
        self._matrix = (a * cos + b * sin, -a * sin + b * cos, c, d * cos + e * sin, -d * sin + e * cos, f)

    def set_line_dash(self, segments: Sequence[float]) -> None:
        self._dash = tuple(float(s) for s in segments)

    def to_surface(self, x: float, y: float) -> Tuple[float, float]:
        """Map a point from the current local frame to surface pixels."""
        a, b, c, d, e, f = self._matrix
        return (a * x + b * y + c, d * x + e * y + f)

    @property
    def rotation(self) -> float:
        a, _, _, d, _, _ = self._matrix
        return math.atan2(d, a)

    # -- drawing ----------------------------------------------------------

    def draw_image(self, img: Image.Image, x: float = 0, y: float = 0,
                   width: Optional[float] = None, height: Optional[float] = None) -> None:
        w = int(round(width if width is not None else img.width))
        h = int(round(height if height is not None else img.height))
        if w <= 0 or h <= 0:
            return
        layer = img.convert("RGBA")
        if layer.size != (w, h):
            layer = layer.resize((w, h), resample=Image.Resampling.LANCZOS)
        angle = self.rotation
        if abs(angle) < 1e-9:
            sx, sy = self.to_surface(x, y)
            composite_clipped(self.image, layer, int(round(sx)), int(round(sy)))
            return
        cx, cy = self.to_surface(x + w / 2, y + h / 2)
        turned = layer.rotate(-math.degrees(angle), expand=True, resample=Image.Resampling.BICUBIC)
        composite_clipped(self.image, turned, int(round(cx - turned.width / 2)), int(round(cy - turned.height / 2)))

    def stroke_text(self, text: str, x: float, y: float, font: ImageFont.FreeTypeFont,
                    color=(255, 255, 255), alpha: float = 1.0, line_width: int = 1) -> None:
        """Outline `text` centred on (x, y) in the local frame."""
        self._stamp_text(text, x, y, font, color, alpha, line_width=line_width)

    def fill_text(self, text: str, x: float, y: float, font: ImageFont.FreeTypeFont,
                  color=(255, 255, 255), alpha: float = 1.0) -> None:
        """Fill `text` centred on (x, y) in the local frame."""
        self._stamp_text(text, x, y, font, color, alpha, line_width=0)

    def to_encoded_bytes(self, fmt: str = "PNG", quality: float = 0.92) -> bytes:
        return encode_image(self.image, fmt=fmt, quality=quality)

    # -- internals --------------------------------------------------------

    def _stamp_text(self, text, x, y, font, color, alpha, line_width) -> None:
        stamp, anchor = self._text_stamp(text, font, tuple(color[:3]), alpha, line_width)
        sx, sy = self.to_surface(x, y)
        composite_clipped(self.image, stamp, int(round(sx - anchor[0])), int(round(sy - anchor[1])))

    def _text_stamp(self, text, font, color, alpha, line_width):
        """Render text once per style and orientation; every tile reuses the result."""
        angle = self.rotation
        key = (text, id(font), color, alpha, line_width, self._dash if line_width else (), round(angle, 9))
        cached = self._stamps.get(key)
        if cached is not None:
            return cached

        grow = max(1, int(round(line_width / 2))) if line_width else 0
        left, top, right, bottom = font.getbbox(text, anchor="mm", stroke_width=grow)
        pad = 2 + grow
        size = (int(right - left) + 2 * pad, int(bottom - top) + 2 * pad)
        origin = (pad - left, pad - top)

        glyphs = Image.new("L", size, 0)
        ImageDraw.Draw(glyphs).text(origin, text, fill=255, font=font, anchor="mm")
        if line_width:
            outer = Image.new("L", size, 0)
            ImageDraw.Draw(outer).text(origin, text, fill=255, font=font, anchor="mm",
                                       stroke_width=grow, stroke_fill=255)
            inner = glyphs.filter(ImageFilter.MinFilter(2 * grow + 1))
            mask = ImageChops.subtract(outer, inner)
            if self._dash and sum(self._dash) > 0:
                mask = ImageChops.multiply(mask, _dash_mask(size, self._dash))
        else:
            mask = glyphs

        stamp = Image.new("RGBA", size, color + (0,))
        stamp.putalpha(mask.point(lambda v: int(round(v * alpha))))

        anchor = origin
        if abs(angle) > 1e-9:
            cx, cy = size[0] / 2, size[1] / 2
            vx, vy = origin[0] - cx, origin[1] - cy
            cos, sin = math.cos(angle), math.sin(angle)
            stamp = stamp.rotate(-math.degrees(angle), expand=True, resample=Image.Resampling.BICUBIC)
            anchor = (stamp.width / 2 + vx * cos - vy * sin, stamp.height / 2 + vx * sin + vy * cos)

        self._stamps[key] = (stamp, anchor)
        return stamp, anchor
