"""Off-loop execution of blocking image transforms.

Decoding, resampling and encoding a large image can take hundreds of
milliseconds, so every transform runs in a dedicated thread pool. At most
``max_concurrent`` transforms are in flight; a request that cannot get a
slot within ``queue_timeout`` seconds fails with :class:`TimeoutError`,
which the API reports as 503.
"""

from __future__ import annotations

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    from thumbnailx.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TransformPool:
    """Slot-limited thread pool for :class:`~thumbnailx.imaging.image.ThumbnailImage` work.

    The counters are only touched from the event loop thread.
    """

    def __init__(self, settings: Settings) -> None:
        self._slots = asyncio.Semaphore(settings.max_concurrent)
        self._executor = ThreadPoolExecutor(
            max_workers=settings.max_concurrent,
            thread_name_prefix="thumbnail-transform",
        )
        self._queue_timeout = settings.queue_timeout
        self._waiting = 0
        self._running = 0

    @asynccontextmanager
    async def _slot(self) -> AsyncIterator[None]:
        self._waiting += 1
        try:
            async with asyncio.timeout(self._queue_timeout):
                await self._slots.acquire()
        except TimeoutError:
            logger.warning(
                "No transform slot free after %.1fs (%d running, %d waiting)",
                self._queue_timeout,
                self._running,
                self._waiting,
            )
            raise
        finally:
            self._waiting -= 1

        self._running += 1
        try:
            yield
        finally:
            self._running -= 1
            self._slots.release()

    async def run(self, func: Callable[..., T], *args: object) -> T:
        """Run ``func(*args)`` on a transform thread once a slot is free.

        Raises:
            TimeoutError: If no slot frees up within ``queue_timeout``.
        """
        async with self._slot():
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(self._executor, func, *args)

    @property
    def active_count(self) -> int:
        """Transforms currently running on a worker thread."""
        return self._running

    @property
    def queue_depth(self) -> int:
        """Requests waiting for a free slot."""
        return self._waiting

    def shutdown(self) -> None:
        """Finish running transforms and drop queued ones."""
        self._executor.shutdown(wait=True, cancel_futures=True)
