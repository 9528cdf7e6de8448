"""
Core domain models for the card studio.
These are framework-agnostic and can be used across all services.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
import math
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple, Union

from domain.errors import LoadError


# Canonical card geometry shared by preview and export
CARD_WIDTH = 1140
CARD_HEIGHT = 1230
PREVIEW_SCALE = 0.6
EXPORT_BACKGROUND = "#0b0b0b"
DEFAULT_BADGE = "Seeker"


class LoadState(str, Enum):
    """Lifecycle of an image load."""
    PENDING = "pending"
    LOADED = "loaded"
    FAILED = "failed"


ResourceCallback = Callable[["ImageResource"], None]


class ImageResource:
    """
    A raster referenced by a card or a community upload.

    `ref` is a filesystem path, a `data:` URL, an http(s) URL or raw bytes.
    The resource settles exactly once, either LOADED (with a decoded image of
    positive size) or FAILED (with an error). Observers added before settling
    run once when it settles; observers added afterwards run immediately.
    """

    def __init__(self, ref: Union[str, bytes], name: Optional[str] = None):
        self.ref = ref
        self.name = name
        self.load_state = LoadState.PENDING
        self.image: Any = None
        self.error: Optional[BaseException] = None
        self._callbacks: List[ResourceCallback] = []

    def __repr__(self) -> str:
        ref = self.ref if isinstance(self.ref, str) else f"<{len(self.ref)} bytes>"
        if isinstance(ref, str) and len(ref) > 60:
            ref = ref[:57] + "..."
        return f"ImageResource({ref!r}, state={self.load_state.value})"

    @property
    def is_settled(self) -> bool:
        return self.load_state is not LoadState.PENDING

    @property
    def size(self) -> Tuple[int, int]:
        if self.image is None:
            return (0, 0)
        return self.image.size

    def add_done_callback(self, callback: ResourceCallback) -> None:
        if self.is_settled:
            callback(self)
            return
        self._callbacks.append(callback)

    def mark_loaded(self, image: Any) -> None:
        if self.is_settled:
            return
        width, height = image.size
        if width <= 0 or height <= 0:
            self.mark_failed(LoadError(f"image has no pixels: {width}x{height}"))
            return
        self.image = image
        self.load_state = LoadState.LOADED
        self._run_callbacks()

    def mark_failed(self, error: BaseException) -> None:
        if self.is_settled:
            return
        self.error = error
        self.load_state = LoadState.FAILED
        self._run_callbacks()

    def _run_callbacks(self) -> None:
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback(self)


@dataclass(frozen=True)
class CardConfig:
    """User-supplied card fields. Handles are stored already normalized."""
    profile_image: Optional[ImageResource] = None
    twitter_handle: str = ""
    discord_handle: str = ""
    badge_label: str = ""


@dataclass(frozen=True)
class WatermarkSpec:
    """Fixed parameters of the community watermark."""
    text: str = "DO NOT USE"
    rotation_deg: float = -30.0
    min_font_size: int = 24
    font_size_ratio: float = 0.08
    step_x_factor: float = 7.0
    step_y_factor: float = 4.5
    line_width_ratio: float = 0.06
    min_line_width: int = 2
    dash_factors: Tuple[float, float] = (1.2, 1.8)
    stroke_alpha: float = 0.35
    fill_alpha: float = 0.08
    ink: Tuple[int, int, int] = (255, 255, 255)
    quality: float = 0.92

    def font_size_for(self, width: int) -> int:
        return max(self.min_font_size, int(math.floor(width * self.font_size_ratio)))

    def line_width_for(self, font_size: int) -> int:
        return max(self.min_line_width, int(math.floor(font_size * self.line_width_ratio)))

    def steps_for(self, font_size: int) -> Tuple[float, float]:
        return font_size * self.step_x_factor, font_size * self.step_y_factor

    def dash_for(self, line_width: int) -> Tuple[float, float]:
        return line_width * self.dash_factors[0], line_width * self.dash_factors[1]


Color = Union[str, Tuple[int, ...]]


@dataclass
class CompositionNode:
    """
    A positioned element of a card, in canonical card pixels.

    `scale` is a display-only transform applied by previews; rasterizing for
    export ignores it.
    """
    kind: str  # "frame" | "rect" | "ellipse" | "text" | "image"
    x: float = 0
    y: float = 0
    width: float = 0
    height: float = 0
    name: Optional[str] = None
    fill: Optional[Color] = None
    outline: Optional[Color] = None
    outline_width: int = 0
    radius: float = 0
    text: Optional[str] = None
    font_size: Optional[int] = None
    bold: bool = False
    align: str = "left"  # "left" | "center" | "right"
    image: Optional[ImageResource] = None
    placeholder_text: Optional[str] = None
    children: List["CompositionNode"] = field(default_factory=list)
    scale: float = 1.0

    def walk(self) -> Iterator["CompositionNode"]:
        """Yield this node and every descendant, depth first."""
        yield self
        for child in self.children:
            yield from child.walk()

    def find(self, name: str) -> Optional["CompositionNode"]:
        for node in self.walk():
            if node.name == name:
                return node
        return None

    def image_resources(self) -> List[ImageResource]:
        seen: Dict[int, ImageResource] = {}
        for node in self.walk():
            if node.image is not None:
                seen.setdefault(id(node.image), node.image)
        return list(seen.values())


@dataclass
class CardLayout:
    """Slot values of a card plus whether it can be exported."""
    slots: Dict[str, Any]
    ready: bool


@dataclass
class ExportJob:
    """One export invocation over a composition tree."""
    source_tree: CompositionNode
    target_width: int = CARD_WIDTH
    target_height: int = CARD_HEIGHT
    background_color: Color = EXPORT_BACKGROUND
    pixel_ratio: float = 1.0


@dataclass
class CardDownload:
    """Encoded card ready to be saved by the client."""
    filename: str
    content: bytes
    media_type: str = "image/png"


@dataclass
class CommunityItem:
    """A listing record for a watermarked community upload."""
    id: str
    username: str
    image_path: str  # Object key in storage
    created_at: datetime = field(default_factory=datetime.utcnow)


@dataclass(frozen=True)
class AppState:
    """
    Everything the card generator screen holds.

    Replaced wholesale by the transitions in services.card_state; never
    mutated in place.
    """
    card: CardConfig = field(default_factory=CardConfig)
    export_in_flight: bool = False
    message: Optional[str] = None
