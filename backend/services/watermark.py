"""
Tiled "DO NOT USE" watermark for community uploads.

A single centred mark is easy to crop away, so the text is repeated over the
whole photo on a lattice rotated by -30 degrees. Rotation exposes the corners
of the photo beyond the axis-aligned lattice, so the lattice overscans. Tile
phases start at -width on the x axis and -height on the y axis, and the rows
and columns are extended in whole steps until they cover [-span, +span] with
span = max(width, height). That keeps every pixel of the photo within one tile
cell of a tile centre whatever the aspect ratio.
"""
import logging
import math
from typing import List, Optional, Tuple, Union

from PIL import Image

from domain.errors import EncodeError
from domain.models import WatermarkSpec
from services.raster_surface import PillowSurface, decode_image, load_font

logger = logging.getLogger(__name__)

DEFAULT_SPEC = WatermarkSpec()


def _axis_positions(anchor: float, span: float, step: float) -> List[float]:
    """Positions on the lattice through -anchor, covering [-span, span]."""
    first = -anchor - math.ceil((span - anchor) / step) * step
    count = int(math.ceil((span - first) / step))
    return [first + k * step for k in range(count + 1)]


def tile_centers(width: int, height: int, spec: WatermarkSpec = DEFAULT_SPEC) -> List[Tuple[float, float]]:
    """Tile centres in the rotated frame whose origin is the image midpoint."""
    font_size = spec.font_size_for(width)
    step_x, step_y = spec.steps_for(font_size)
    span = max(width, height)
    xs = _axis_positions(width, span, step_x)
    ys = _axis_positions(height, span, step_y)
    return [(x, y) for y in ys for x in xs]


def to_image_space(point: Tuple[float, float], width: int, height: int,
                   spec: WatermarkSpec = DEFAULT_SPEC) -> Tuple[float, float]:
    """Map a rotated-frame point back to image pixel coordinates."""
    theta = math.radians(spec.rotation_deg)
    x, y = point
    return (
        width / 2 + x * math.cos(theta) - y * math.sin(theta),
        height / 2 + x * math.sin(theta) + y * math.cos(theta),
    )


def to_tile_space(point: Tuple[float, float], width: int, height: int,
                  spec: WatermarkSpec = DEFAULT_SPEC) -> Tuple[float, float]:
    """Inverse of to_image_space."""
    theta = math.radians(spec.rotation_deg)
    dx, dy = point[0] - width / 2, point[1] - height / 2
    return (
        dx * math.cos(theta) + dy * math.sin(theta),
        -dx * math.sin(theta) + dy * math.cos(theta),
    )


class WatermarkTiler:
    """Draws the rotated watermark lattice over a photo and re-encodes it as JPEG."""

    def __init__(self, spec: WatermarkSpec = DEFAULT_SPEC, font_path: Optional[str] = None):
        self.spec = spec
        self.font_path = font_path

    def apply(self, image: Union[bytes, Image.Image]) -> bytes:
        """
        Watermark `image` (encoded bytes or a decoded PIL image).

        Returns new JPEG bytes with the same pixel size; the input is never
        modified.

        Raises:
            DecodeError: the bytes are not a decodable raster.
            EncodeError: the image has no pixels or cannot be serialized.
        """
        source = image if isinstance(image, Image.Image) else decode_image(image)
        width, height = source.size
        if width <= 0 or height <= 0:
            raise EncodeError(f"cannot watermark a {width}x{height} image")

        spec = self.spec
        surface = PillowSurface(width, height)
        surface.draw_image(source, 0, 0)

        font_size = spec.font_size_for(width)
        font = load_font(font_size, bold=True, font_path=self.font_path)
        line_width = spec.line_width_for(font_size)
        centers = tile_centers(width, height, spec)

        surface.save()
        surface.translate(width / 2, height / 2)
        surface.rotate(math.radians(spec.rotation_deg))

        surface.set_line_dash(spec.dash_for(line_width))
        for x, y in centers:
            surface.stroke_text(spec.text, x, y, font, spec.ink, spec.stroke_alpha, line_width=line_width)

        # Faint fill keeps the mark readable over dark areas
        surface.set_line_dash([])
        for x, y in centers:
            surface.fill_text(spec.text, x, y, font, spec.ink, spec.fill_alpha)
        surface.restore()

        logger.info(
            "watermarked %sx%s image: font_size=%s tiles=%s", width, height, font_size, len(centers)
        )
        return surface.to_encoded_bytes("JPEG", quality=spec.quality)
