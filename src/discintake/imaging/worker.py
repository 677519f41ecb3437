"""Off-loop transform dispatch.

Architecture:
    asyncio caller -> TransformRequest -> ThreadPoolExecutor(N, FIFO) -> transform_image

Requests and responses are immutable (``bytes`` in, ``bytes`` out), so the
worker thread never shares mutable state with the event loop. With the
default single worker, requests are served strictly first-in first-out.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from discintake.imaging.transform import transform_image

if TYPE_CHECKING:
    from discintake.models import EditSpec

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransformRequest:
    source: bytes = field(repr=False)
    spec: EditSpec
    max_edge_px: int
    jpeg_quality: float


def _handle(request: TransformRequest) -> bytes:
    return transform_image(request.source, request.spec, request.max_edge_px, request.jpeg_quality)


class TransformWorker:
    """Runs image transforms on a dedicated thread pool."""

    def __init__(self, max_workers: int = 1) -> None:
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="image-transform",
        )
        self._active_count: int = 0
        self._queue_depth: int = 0
        self._counter_lock = threading.Lock()

    async def submit(self, request: TransformRequest) -> bytes:
        """Run one transform request and return the encoded JPEG bytes.

        Raises:
            ProcessingFailed: If the source cannot be decoded or encoded.
        """
        with self._counter_lock:
            self._queue_depth += 1
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, self._run, request)

    def _run(self, request: TransformRequest) -> bytes:
        with self._counter_lock:
            self._queue_depth -= 1
            self._active_count += 1
        try:
            return _handle(request)
        finally:
            with self._counter_lock:
                self._active_count -= 1

    @property
    def active_count(self) -> int:
        """Number of transforms currently running."""
        with self._counter_lock:
            return self._active_count

    @property
    def queue_depth(self) -> int:
        """Number of transforms waiting for a worker thread."""
        with self._counter_lock:
            return self._queue_depth

    def shutdown(self) -> None:
        """Shut down the thread pool executor."""
        self._executor.shutdown(wait=True)
        logger.info("Transform worker stopped")
