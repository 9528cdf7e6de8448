"""
Readiness barrier for image loads.

Joins a set of independently loading ImageResources. Each resource gets one
watch that settles on success or failure; the barrier returns once every
watch has settled and never raises.
"""
import asyncio
import logging
from typing import Iterable, List

from domain.models import ImageResource, LoadState

logger = logging.getLogger(__name__)


def _watch(resource: ImageResource, loop: asyncio.AbstractEventLoop) -> asyncio.Future:
    watch = loop.create_future()

    def _settle(res: ImageResource) -> None:
        if watch.done():
            return
        if res.load_state is LoadState.FAILED:
            logger.warning("image failed to load, using placeholder: %r (%s)", res, res.error)
        watch.set_result(res.load_state)

    resource.add_done_callback(_settle)
    return watch


async def await_all(resources: Iterable[ImageResource]) -> List[LoadState]:
    """
    Wait until every resource has either loaded or failed.

    Returns the terminal state of each distinct resource, in input order.
    Already-settled resources count immediately; an empty input returns
    without suspending.
    """
    unique = list({id(r): r for r in resources}.values())
    if not unique:
        return []
    if all(r.is_settled for r in unique):
        return [r.load_state for r in unique]

    loop = asyncio.get_running_loop()
    watches = [_watch(r, loop) for r in unique]
    return list(await asyncio.gather(*watches))
