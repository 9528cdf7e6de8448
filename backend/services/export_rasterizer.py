"""
Card rasterization and export.

Turns a composition tree into pixels. Export always draws in the canonical
card space at pixel_ratio 1 on an opaque background, ignoring whatever scale a
preview displays the tree at, so the output is exactly the job's target size.
"""
import logging
import time
from typing import Optional, Set

from PIL import Image, ImageChops, ImageDraw, ImageOps

from domain.errors import ExportBusyError, ExportError
from domain.models import (
    CARD_HEIGHT,
    CARD_WIDTH,
    CardConfig,
    CardDownload,
    CompositionNode,
    ExportJob,
    LoadState,
)
from services.image_loader import ImageLoader
from services.layout_engine import BrandAssets, build_card_tree
from services.raster_surface import composite_clipped, encode_image, load_font
from services.readiness import await_all

logger = logging.getLogger(__name__)

DOWNLOAD_PREFIX = "anoma-card-"


def card_filename(now_ms: Optional[int] = None) -> str:
    """Download name for an exported card: anoma-card-{epoch millis}.png."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"{DOWNLOAD_PREFIX}{now_ms}.png"


class TreePainter:
    """Paints composition nodes onto an RGBA canvas at a given pixel ratio."""

    def __init__(self, ratio: float = 1.0, font_path: Optional[str] = None,
                 bold_font_path: Optional[str] = None):
        self.ratio = ratio
        self.font_path = font_path
        self.bold_font_path = bold_font_path

    def paint(self, canvas: Image.Image, node: CompositionNode) -> None:
        handler = getattr(self, f"_paint_{node.kind}", None)
        if handler is None:
            raise ExportError(f"unknown node kind: {node.kind}")
        handler(canvas, node)
        for child in node.children:
            self.paint(canvas, child)

    def _box(self, node: CompositionNode):
        r = self.ratio
        return (
            int(round(node.x * r)),
            int(round(node.y * r)),
            max(1, int(round(node.width * r))),
            max(1, int(round(node.height * r))),
        )

    def _font(self, node: CompositionNode):
        size = max(1, int(round((node.font_size or 16) * self.ratio)))
        path = self.bold_font_path if node.bold else self.font_path
        return load_font(size, bold=node.bold, font_path=str(path) if path else None)

    def _paint_frame(self, canvas: Image.Image, node: CompositionNode) -> None:
        if node.fill is not None:
            self._paint_rect(canvas, node)

    def _paint_rect(self, canvas: Image.Image, node: CompositionNode) -> None:
        x, y, w, h = self._box(node)
        layer = Image.new("RGBA", (w, h), (0, 0, 0, 0))
        ImageDraw.Draw(layer).rounded_rectangle(
            (0, 0, w - 1, h - 1),
            radius=node.radius * self.ratio,
            fill=node.fill,
            outline=node.outline,
            width=max(1, int(round(node.outline_width * self.ratio))),
        )
        composite_clipped(canvas, layer, x, y)

    def _paint_ellipse(self, canvas: Image.Image, node: CompositionNode) -> None:
        x, y, w, h = self._box(node)
        layer = Image.new("RGBA", (w, h), (0, 0, 0, 0))
        ImageDraw.Draw(layer).ellipse(
            (0, 0, w - 1, h - 1),
            fill=node.fill,
            outline=node.outline,
            width=max(1, int(round(node.outline_width * self.ratio))),
        )
        composite_clipped(canvas, layer, x, y)

    def _paint_text(self, canvas: Image.Image, node: CompositionNode) -> None:
        if not node.text:
            return
        x, y, w, h = self._box(node)
        font = self._font(node)
        left, _, right, _ = font.getbbox(node.text)
        # Text may run past its box (the badge pill width is estimated)
        layer_w = max(w, int(right - left) + 2)
        if node.align == "center":
            anchor, ax, layer_x = "mm", layer_w / 2, x + (w - layer_w) // 2
        elif node.align == "right":
            anchor, ax, layer_x = "rm", layer_w, x + w - layer_w
        else:
            anchor, ax, layer_x = "lm", 0, x
        layer = Image.new("RGBA", (layer_w, h), (0, 0, 0, 0))
        ImageDraw.Draw(layer).text(
            (ax, h / 2), node.text, font=font, fill=node.fill or (255, 255, 255), anchor=anchor
        )
        composite_clipped(canvas, layer, layer_x, y)

    def _paint_image(self, canvas: Image.Image, node: CompositionNode) -> None:
        resource = node.image
        if resource is None or resource.load_state is not LoadState.LOADED:
            # Missing or failed images render as their placeholder label
            if node.placeholder_text:
                self._paint_text(canvas, CompositionNode(
                    kind="text", x=node.x, y=node.y, width=node.width, height=node.height,
                    text=node.placeholder_text, font_size=28, fill=node.fill, align="center",
                ))
            return
        x, y, w, h = self._box(node)
        fitted = ImageOps.fit(resource.image.convert("RGBA"), (w, h), method=Image.Resampling.LANCZOS)
        if node.radius:
            mask = Image.new("L", (w, h), 0)
            ImageDraw.Draw(mask).rounded_rectangle((0, 0, w - 1, h - 1), radius=node.radius * self.ratio, fill=255)
            alpha = fitted.getchannel("A")
            fitted.putalpha(ImageChops.multiply(alpha, mask))
        composite_clipped(canvas, fitted, x, y)


def render_tree(tree: CompositionNode, width: int, height: int, background=None,
                ratio: float = 1.0, painter: Optional[TreePainter] = None) -> Image.Image:
    """Rasterize `tree` in canonical space onto a canvas of width x height (times ratio)."""
    size = (int(round(width * ratio)), int(round(height * ratio)))
    canvas = Image.new("RGBA", size, background if background is not None else (0, 0, 0, 0))
    (painter or TreePainter(ratio=ratio)).paint(canvas, tree)
    return canvas


def render_preview(tree: CompositionNode, painter: Optional[TreePainter] = None) -> Image.Image:
    """
    Draw the tree as a preview shows it: canonical layout, then the display
    scale applied as a final resize. Does not wait for images.
    """
    full = render_tree(tree, CARD_WIDTH, CARD_HEIGHT, painter=painter)
    if tree.scale == 1.0:
        return full
    size = (max(1, int(round(CARD_WIDTH * tree.scale))), max(1, int(round(CARD_HEIGHT * tree.scale))))
    return full.resize(size, resample=Image.Resampling.LANCZOS)


class ExportRasterizer:
    """
    Exports composition trees as PNG bytes.

    At most one export per tree runs at a time; a second request for a tree
    that is still exporting is rejected with ExportBusyError.
    """

    def __init__(self, loader: Optional[ImageLoader] = None,
                 font_path: Optional[str] = None, bold_font_path: Optional[str] = None):
        self.loader = loader or ImageLoader()
        self.font_path = font_path
        self.bold_font_path = bold_font_path
        self._active: Set[int] = set()

    @property
    def in_flight(self) -> int:
        return len(self._active)

    def is_exporting(self, tree: CompositionNode) -> bool:
        return id(tree) in self._active

    async def export(self, job: ExportJob) -> bytes:
        """
        Wait for every embedded image to settle, then rasterize and encode.

        Raises:
            ExportBusyError: the same tree is already being exported.
            ExportError: rasterization or encoding failed; nothing is returned.
        """
        key = id(job.source_tree)
        if key in self._active:
            raise ExportBusyError("export already in progress for this card")
        self._active.add(key)
        try:
            resources = job.source_tree.image_resources()
            self.loader.start_all(resources)
            await await_all(resources)
            try:
                image = self.rasterize(job)
                data = encode_image(image, fmt="PNG")
            except ExportError:
                raise
            except Exception as exc:
                logger.exception("card export failed")
                raise ExportError(f"export failed: {exc}") from exc
            logger.info("exported card %sx%s (%s bytes)", image.width, image.height, len(data))
            return data
        finally:
            self._active.discard(key)

    def rasterize(self, job: ExportJob) -> Image.Image:
        """
        Paint the tree in canonical space at pixel ratio 1; the tree's display
        scale is ignored, so the result is exactly target_width x target_height.
        """
        if job.pixel_ratio != 1:
            raise ExportError(f"exports are drawn at pixel ratio 1, got {job.pixel_ratio}")
        painter = TreePainter(font_path=self.font_path, bold_font_path=self.bold_font_path)
        canvas = render_tree(
            job.source_tree, job.target_width, job.target_height,
            background=job.background_color, painter=painter,
        )
        return canvas.convert("RGB")


async def export_card(
    config: CardConfig,
    rasterizer: ExportRasterizer,
    brand: Optional[BrandAssets] = None,
    now_ms: Optional[int] = None,
) -> CardDownload:
    """Build the full-size card for `config`, export it and name the download."""
    tree = build_card_tree(config, scale=1.0, brand=brand)
    data = await rasterizer.export(ExportJob(source_tree=tree))
    return CardDownload(filename=card_filename(now_ms), content=data)
