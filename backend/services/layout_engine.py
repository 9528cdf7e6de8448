"""
Layout engine service.

Projects a CardConfig onto the fixed card template. The same projection feeds
the scaled live preview and the full-resolution export, so both always agree.
Sections of the card are registered in drawing order.
"""
from dataclasses import dataclass
import math
from typing import Callable, List, Optional

from domain.models import (
    CARD_HEIGHT,
    CARD_WIDTH,
    DEFAULT_BADGE,
    CardConfig,
    CardLayout,
    CompositionNode,
    ImageResource,
)

ANOMA_RED = (229, 9, 20)
CARD_SURFACE = "#0b0b0b"
ARTWORK_SURFACE = "#050505"

# Canonical geometry (card pixels)
FRAME_INSET = 4
CONTENT_PAD_X = 24
CONTENT_PAD_TOP = 20
CONTENT_LEFT = FRAME_INSET + CONTENT_PAD_X
CONTENT_WIDTH = CARD_WIDTH - 2 * (FRAME_INSET + CONTENT_PAD_X)
HEADER_TOP = FRAME_INSET + CONTENT_PAD_TOP + 3 + 20
HEADER_HEIGHT = 44
ARTWORK_TOP = HEADER_TOP + HEADER_HEIGHT + 24
ARTWORK_FRACTION = 0.78
INFO_FRACTION = 0.70
INFO_PAD = 20
ROW_HEIGHT = 48
ROW_GAP = 8
FOOTER_HEIGHT = 24
FOOTER_TOP = CARD_HEIGHT - FRAME_INSET - 12 - FOOTER_HEIGHT

# Rough advance width used to size the badge pill without font metrics
_BADGE_FONT_SIZE = 20
_BADGE_CHAR_WIDTH = 0.6


def _white(alpha: float) -> tuple:
    return (255, 255, 255, int(round(255 * alpha)))


def _red(alpha: float) -> tuple:
    return ANOMA_RED + (int(round(255 * alpha)),)


@dataclass
class BrandAssets:
    """Optional brand rasters embedded in the card; drawn marks are used when absent."""
    logo: Optional[ImageResource] = None
    x_icon: Optional[ImageResource] = None
    discord_icon: Optional[ImageResource] = None

    @classmethod
    def from_settings(cls, settings) -> "BrandAssets":
        def _res(path, name):
            return ImageResource(str(path), name=name) if path else None

        return cls(
            logo=_res(settings.CARD_LOGO_PATH, "logo"),
            x_icon=_res(settings.CARD_X_ICON_PATH, "x_icon"),
            discord_icon=_res(settings.CARD_DISCORD_ICON_PATH, "discord_icon"),
        )

    def resources(self) -> List[ImageResource]:
        return [r for r in (self.logo, self.x_icon, self.discord_icon) if r is not None]


def badge_text(config: CardConfig) -> str:
    label = (config.badge_label or "").strip()
    return label or DEFAULT_BADGE


def is_ready(config: CardConfig) -> bool:
    return config.profile_image is not None and bool(config.twitter_handle or config.discord_handle)


def compute_card_layout(config: CardConfig) -> CardLayout:
    """Map the card fields onto template slots. Pure; handles are used verbatim."""
    slots = {
        "profile_image": config.profile_image,
        "badge": badge_text(config),
        "twitter": config.twitter_handle,
        "discord": config.discord_handle,
    }
    return CardLayout(slots=slots, ready=is_ready(config))


# ============================================
# Composition tree
# ============================================

SectionBuilder = Callable[[CardLayout, BrandAssets], List[CompositionNode]]

_section_registry: List[SectionBuilder] = []


def register_section(func: SectionBuilder) -> SectionBuilder:
    """Decorator to append a section builder; sections draw in registration order."""
    _section_registry.append(func)
    return func


def build_card_tree(
    config: CardConfig,
    scale: float = 1.0,
    brand: Optional[BrandAssets] = None,
) -> CompositionNode:
    """
    Build the card's composition tree in canonical 1140x1230 space.

    `scale` only records how a preview displays the tree; no coordinate in
    the tree depends on it.
    """
    layout = compute_card_layout(config)
    brand = brand or BrandAssets()
    root = CompositionNode(
        kind="frame",
        width=CARD_WIDTH,
        height=CARD_HEIGHT,
        name="card",
        scale=scale,
    )
    for builder in _section_registry:
        root.children.extend(builder(layout, brand))
    return root


def _mark_or_image(
    resource: Optional[ImageResource],
    x: float,
    y: float,
    size: float,
    name: str,
    glyph: Optional[str] = None,
) -> CompositionNode:
    if resource is not None:
        return CompositionNode(kind="image", x=x, y=y, width=size, height=size, name=name, image=resource)
    if glyph:
        return CompositionNode(
            kind="text", x=x, y=y, width=size, height=size, name=name,
            text=glyph, font_size=int(size * 0.8), bold=True, align="center", fill=_white(1.0),
        )
    return CompositionNode(kind="ellipse", x=x, y=y, width=size, height=size, name=name, fill=ANOMA_RED)


@register_section
def frame_section(layout: CardLayout, brand: BrandAssets) -> List[CompositionNode]:
    """Outer translucent frame, the dark card body and the red accent rule."""
    return [
        CompositionNode(
            kind="rect", width=CARD_WIDTH, height=CARD_HEIGHT, name="outer_frame",
            fill=_white(0.05), radius=28,
        ),
        CompositionNode(
            kind="rect", x=FRAME_INSET, y=FRAME_INSET,
            width=CARD_WIDTH - 2 * FRAME_INSET, height=CARD_HEIGHT - 2 * FRAME_INSET,
            name="card_body", fill=CARD_SURFACE, outline=_white(0.10), outline_width=1, radius=24,
        ),
        CompositionNode(
            kind="rect", x=CONTENT_LEFT, y=FRAME_INSET + CONTENT_PAD_TOP,
            width=CONTENT_WIDTH, height=3, name="accent", fill=ANOMA_RED, radius=1,
        ),
    ]


@register_section
def header_section(layout: CardLayout, brand: BrandAssets) -> List[CompositionNode]:
    """Brand mark and word on the left, badge pill on the right."""
    logo_size = 24
    nodes = [
        _mark_or_image(brand.logo, CONTENT_LEFT, HEADER_TOP + (HEADER_HEIGHT - logo_size) / 2, logo_size, "logo"),
        CompositionNode(
            kind="text", x=CONTENT_LEFT + logo_size + 12, y=HEADER_TOP, width=200, height=HEADER_HEIGHT,
            name="brand", text="anoma", font_size=24, bold=True, fill=_white(1.0),
        ),
    ]

    label = layout.slots["badge"]
    text_w = int(math.ceil(len(label) * _BADGE_FONT_SIZE * _BADGE_CHAR_WIDTH))
    pill_h = 40
    pill_w = 12 + 8 + 8 + text_w + 12
    pill_x = CONTENT_LEFT + CONTENT_WIDTH - pill_w
    pill_y = HEADER_TOP + (HEADER_HEIGHT - pill_h) / 2
    pill = CompositionNode(
        kind="rect", x=pill_x, y=pill_y, width=pill_w, height=pill_h, name="badge_pill",
        fill=_red(0.14), outline=_red(0.28), outline_width=1, radius=pill_h / 2,
    )
    pill.children = [
        CompositionNode(kind="ellipse", x=pill_x + 12, y=pill_y + 16, width=8, height=8, fill=ANOMA_RED),
        CompositionNode(
            kind="text", x=pill_x + 28, y=pill_y, width=text_w, height=pill_h, name="badge",
            text=label, font_size=_BADGE_FONT_SIZE, fill=_white(1.0),
        ),
    ]
    nodes.append(pill)
    return nodes


def artwork_box() -> tuple:
    size = int(round(CONTENT_WIDTH * ARTWORK_FRACTION))
    return ((CARD_WIDTH - size) // 2, ARTWORK_TOP, size)


@register_section
def artwork_section(layout: CardLayout, brand: BrandAssets) -> List[CompositionNode]:
    """Square profile photo with a red rim, or a placeholder when none is set."""
    x, y, size = artwork_box()
    rim = CompositionNode(
        kind="rect", x=x, y=y, width=size, height=size, name="artwork_rim",
        outline=_red(0.35), outline_width=2, radius=12,
    )
    well = CompositionNode(
        kind="rect", x=x, y=y, width=size, height=size, name="artwork",
        fill=ARTWORK_SURFACE, outline=_white(0.10), outline_width=1, radius=12,
    )
    photo = CompositionNode(
        kind="image", x=x, y=y, width=size, height=size, name="profile_image",
        image=layout.slots["profile_image"], radius=12, placeholder_text="PFP",
        fill=_white(0.5),
    )
    return [well, photo, rim]


def _handle_rows(layout: CardLayout) -> List[tuple]:
    rows = []
    if layout.slots["twitter"]:
        rows.append(("twitter", layout.slots["twitter"]))
    if layout.slots["discord"]:
        rows.append(("discord", layout.slots["discord"]))
    return rows


@register_section
def info_section(layout: CardLayout, brand: BrandAssets) -> List[CompositionNode]:
    """Community block with one row per non-empty handle."""
    _, art_y, art_size = artwork_box()
    width = int(round(CONTENT_WIDTH * INFO_FRACTION))
    x = (CARD_WIDTH - width) // 2
    y = art_y + art_size + 8
    rows = _handle_rows(layout)
    height = INFO_PAD + 48 + INFO_PAD
    if rows:
        height += 16 + len(rows) * ROW_HEIGHT + (len(rows) - 1) * ROW_GAP

    block = CompositionNode(
        kind="rect", x=x, y=y, width=width, height=height, name="info",
        fill=_white(0.05), outline=_white(0.10), outline_width=1, radius=12,
    )
    inner_x = x + INFO_PAD
    text_x = inner_x + 48 + 12
    block.children = [
        CompositionNode(
            kind="rect", x=inner_x, y=y + INFO_PAD, width=48, height=48,
            fill=_white(0.10), outline=_white(0.15), outline_width=1, radius=8,
        ),
        _mark_or_image(brand.logo, inner_x + 8, y + INFO_PAD + 8, 32, "info_logo"),
        CompositionNode(
            kind="text", x=text_x, y=y + INFO_PAD, width=width - (text_x - x) - INFO_PAD, height=26,
            text="Anoma Community", font_size=18, bold=True, fill=_white(1.0),
        ),
        CompositionNode(
            kind="text", x=text_x, y=y + INFO_PAD + 26, width=width - (text_x - x) - INFO_PAD, height=22,
            text="Card generated from your MG pfp.", font_size=16, fill=_white(0.6),
        ),
    ]

    icons = {
        "twitter": (brand.x_icon, 24, "X"),
        "discord": (brand.discord_icon, 28, "D"),
    }
    row_y = y + INFO_PAD + 48 + 16
    for slot, handle in rows:
        icon, icon_size, glyph = icons[slot]
        block.children.append(CompositionNode(
            kind="ellipse", x=inner_x, y=row_y, width=48, height=48,
            fill=_red(0.15), outline=_red(0.25), outline_width=1,
        ))
        offset = (48 - icon_size) / 2
        block.children.append(
            _mark_or_image(icon, inner_x + offset, row_y + offset, icon_size, f"{slot}_icon", glyph=glyph)
        )
        block.children.append(CompositionNode(
            kind="text", x=text_x, y=row_y, width=width - (text_x - x) - INFO_PAD, height=ROW_HEIGHT,
            name=slot, text=handle, font_size=20, bold=True, fill=_white(1.0),
        ))
        row_y += ROW_HEIGHT + ROW_GAP
    return [block]


@register_section
def footer_section(layout: CardLayout, brand: BrandAssets) -> List[CompositionNode]:
    return [
        CompositionNode(
            kind="text", x=CONTENT_LEFT, y=FOOTER_TOP, width=CONTENT_WIDTH, height=FOOTER_HEIGHT,
            name="footer_left", text="crafted for Anoma", font_size=16, fill=_white(0.5),
        ),
        CompositionNode(
            kind="text", x=CONTENT_LEFT, y=FOOTER_TOP, width=CONTENT_WIDTH, height=FOOTER_HEIGHT,
            name="footer_right", text="MG community card", font_size=16, fill=_white(0.5), align="right",
        ),
    ]
