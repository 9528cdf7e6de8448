"""
Asynchronous image loading.

Every ImageResource is loaded by its own asyncio task. The loader fetches and
decodes the bytes itself (file path, data: URL, http(s) URL or raw bytes), so
the decoded pixels are always readable when a card is rasterized. Failures
settle the resource as FAILED instead of raising.
"""
import asyncio
import base64
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional
from urllib.parse import unquote_to_bytes

import requests

from domain.errors import DecodeError, LoadError
from domain.models import ImageResource
from services.raster_surface import decode_image
from settings import settings

logger = logging.getLogger(__name__)

USER_AGENT = "card-studio/1.0 (image-fetch)"

_session = requests.Session()
_session.headers.update({"User-Agent": USER_AGENT})


def _decode_data_url(ref: str) -> bytes:
    header, sep, payload = ref.partition(",")
    if not sep:
        raise LoadError("malformed data URL")
    if header.endswith(";base64"):
        try:
            return base64.b64decode(payload, validate=False)
        except ValueError as exc:
            raise LoadError(f"bad base64 payload: {exc}") from exc
    return unquote_to_bytes(payload)


def read_image_bytes(ref, timeout: Optional[float] = None) -> bytes:
    """Resolve an image reference to raw bytes. Raises LoadError."""
    if isinstance(ref, (bytes, bytearray)):
        return bytes(ref)
    if not isinstance(ref, str) or not ref:
        raise LoadError(f"unsupported image reference: {ref!r}")
    if ref.startswith("data:"):
        return _decode_data_url(ref)
    if ref.startswith(("http://", "https://")):
        try:
            resp = _session.get(ref, timeout=timeout or settings.IMAGE_FETCH_TIMEOUT)
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise LoadError(f"fetch failed for {ref}: {exc}") from exc
        return resp.content
    try:
        return Path(ref).read_bytes()
    except (OSError, ValueError) as exc:
        raise LoadError(f"cannot read {ref}: {exc}") from exc


def _load_sync(ref, timeout: Optional[float]):
    data = read_image_bytes(ref, timeout=timeout)
    try:
        return decode_image(data)
    except DecodeError as exc:
        raise LoadError(str(exc)) from exc


class ImageLoader:
    """Starts at most one load task per resource; tasks always run to completion."""

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout
        self._tasks: Dict[int, asyncio.Task] = {}

    def start(self, resource: ImageResource) -> Optional[asyncio.Task]:
        """Schedule the load of `resource` on the running loop. No-op once settled."""
        if resource.is_settled:
            return None
        task = self._tasks.get(id(resource))
        if task is None:
            task = asyncio.get_running_loop().create_task(self._load(resource))
            self._tasks[id(resource)] = task
            task.add_done_callback(lambda _t, key=id(resource): self._tasks.pop(key, None))
        return task

    def start_all(self, resources: Iterable[ImageResource]) -> List[asyncio.Task]:
        tasks = [self.start(r) for r in resources]
        return [t for t in tasks if t is not None]

    async def _load(self, resource: ImageResource) -> ImageResource:
        try:
            # Blocking I/O and decoding happen off the loop; settling happens on it
            image = await asyncio.to_thread(_load_sync, resource.ref, self.timeout)
        except LoadError as exc:
            logger.warning("image load failed for %r: %s", resource, exc)
            resource.mark_failed(exc)
        except Exception as exc:
            logger.exception("unexpected error loading %r", resource)
            resource.mark_failed(LoadError(f"unexpected load failure: {exc}"))
        else:
            resource.mark_loaded(image)
        return resource


async def load_image(ref, name: Optional[str] = None, loader: Optional[ImageLoader] = None) -> ImageResource:
    """Create a resource for `ref` and wait for it to settle."""
    resource = ImageResource(ref, name=name)
    task = (loader or ImageLoader()).start(resource)
    if task is not None:
        await task
    return resource
