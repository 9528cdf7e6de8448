"""
Community wall service.

Uploads are checked against an allow-list, watermarked, written to object
storage under a fresh key and then recorded in the listing. Nothing reaches
storage unless the watermark succeeded, and a listing failure removes the
stored object again.
"""
from dataclasses import dataclass
from io import BytesIO
import logging
from pathlib import PurePath
import secrets
import time
from typing import Callable, List, Optional
from urllib.parse import quote

from domain.errors import RemoteWriteError, ValidationError
from domain.models import CommunityItem
from repositories.community import DEFAULT_PAGE_SIZE, DEFAULT_USERNAME, CommunityRepository
from services.watermark import WatermarkTiler
from storage.file_storage import FileStorage

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = frozenset({"png", "jpg", "jpeg"})
ALLOWED_MIME_TYPES = frozenset({"image/png", "image/jpeg"})
MAX_USERNAME_LENGTH = 40
GRID_FILL = 0.28
GRID_STROKE = 0.85

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"
# Characters JavaScript's encodeURIComponent leaves alone
_URI_COMPONENT_SAFE = "-_.!~*'()"


def file_extension(filename: Optional[str]) -> str:
    return PurePath(filename or "").suffix.lstrip(".").lower()


def validate_upload(filename: Optional[str], content_type: Optional[str], data: Optional[bytes] = None) -> str:
    """
    Check an upload against the allow-list before anything else runs.

    Returns the lower-cased extension.

    Raises:
        ValidationError: extension or MIME type not allowed, or empty payload.
    """
    ext = file_extension(filename)
    mime = (content_type or "").split(";")[0].strip().lower()
    if ext not in ALLOWED_EXTENSIONS or mime not in ALLOWED_MIME_TYPES:
        raise ValidationError("Only PNG, JPG, JPEG files are allowed.")
    if data is not None and len(data) == 0:
        raise ValidationError("The uploaded file is empty.")
    return ext


def to_base36(value: int) -> str:
    if value < 0:
        raise ValueError("base36 value must be non-negative")
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_object_key(
    filename: Optional[str],
    now_ms: Optional[int] = None,
    randbits: Callable[[int], int] = secrets.randbits,
    ext: Optional[str] = None,
) -> str:
    """
    Build `{epoch_ms}-{base36 suffix}.{ext}`.

    `ext` overrides the filename's extension; with neither, jpg is used.
    """
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    ext = (ext or file_extension(filename) or "jpg").lstrip(".").lower()
    suffix = to_base36(randbits(52)).rjust(6, "0")
    return f"{now_ms}-{suffix}.{ext}"


def normalize_username(raw: Optional[str]) -> str:
    name = (raw or "").strip()[:MAX_USERNAME_LENGTH]
    return name or DEFAULT_USERNAME


def _check_intensity(name: str, value: Optional[float]) -> None:
    if value is not None and not 0.0 <= value <= 1.0:
        raise ValidationError(f"{name} must be between 0 and 1, got {value}")


def build_viewer_url(
    object_key: str,
    base: str,
    fill: Optional[float] = None,
    stroke: Optional[float] = None,
) -> str:
    """Reference to the external viewing proxy for a stored object."""
    _check_intensity("fill", fill)
    _check_intensity("stroke", stroke)
    url = f"{base}?path={quote(object_key, safe=_URI_COMPONENT_SAFE)}"
    if fill is not None:
        url += f"&fill={fill:g}"
    if stroke is not None:
        url += f"&stroke={stroke:g}"
    return url


@dataclass
class CommunityPost:
    """A listing record with its viewing-proxy references."""
    item: CommunityItem
    thumbnail_url: str
    viewer_url: str


class CommunityService:
    """Submission and read-back for the community wall."""

    def __init__(
        self,
        storage: FileStorage,
        repository: CommunityRepository,
        session_factory,
        tiler: Optional[WatermarkTiler] = None,
        viewer_base: str = "/api/wm",
        page_size: int = DEFAULT_PAGE_SIZE,
    ):
        self.storage = storage
        self.repository = repository
        self.session_factory = session_factory
        self.tiler = tiler or WatermarkTiler()
        self.viewer_base = viewer_base
        self.page_size = page_size

    def submit(
        self,
        username: Optional[str],
        filename: str,
        content_type: Optional[str],
        data: bytes,
    ) -> CommunityItem:
        """
        Validate, watermark, store and list one upload.

        Raises:
            ValidationError: rejected before any work is done.
            DecodeError / EncodeError: watermarking failed; nothing stored.
            RemoteWriteError: storage or listing failed; nothing left behind.
        """
        validate_upload(filename, content_type, data)
        watermarked = self.tiler.apply(data)

        # The stored artifact is always JPEG
        key = generate_object_key(filename, ext="jpg")
        self.storage.save_object(key, BytesIO(watermarked))
        try:
            with self.session_factory() as session:
                item = self.repository.add_item(session, normalize_username(username), key)
        except RemoteWriteError:
            logger.error("listing write failed; removing stored object %s", key)
            self.storage.delete_object(key)
            raise
        logger.info("community upload stored: key=%s user=%s", key, item.username)
        return item

    def list_posts(self, limit: Optional[int] = None) -> List[CommunityPost]:
        with self.session_factory() as session:
            items = self.repository.list_recent(session, limit or self.page_size)
        return [self.to_post(item) for item in items]

    def to_post(self, item: CommunityItem) -> CommunityPost:
        return CommunityPost(
            item=item,
            thumbnail_url=build_viewer_url(item.image_path, self.viewer_base, fill=GRID_FILL, stroke=GRID_STROKE),
            viewer_url=build_viewer_url(item.image_path, self.viewer_base),
        )
