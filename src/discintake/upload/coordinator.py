"""Durable uploads: timeout-bounded primary transport, pre-signed fallback, retries.

Each call to :meth:`UploadCoordinator.upload` ends in exactly one of a
resolved :class:`UploadResult` or a raised :class:`UploadExhausted`.
"""

from __future__ import annotations

import asyncio
import contextlib
import io
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, TypeVar

from discintake.errors import NetworkTimeout, UploadExhausted
from discintake.models import UploadResult
from discintake.upload.keys import build_object_key, random_suffix
from discintake.upload.retry import RetryPolicy

if TYPE_CHECKING:
    from discintake.upload.storage import ObjectStorage

logger = logging.getLogger(__name__)

T = TypeVar("T")

ProgressCallback = Callable[[float], None]

PROGRESS_START: float = 0.05
PROGRESS_CEILING: float = 0.89
_PROGRESS_TARGET: float = 0.9
_PROGRESS_EASING: float = 0.2


def materialize(payload: Any) -> bytes:
    """Realize ``payload`` into a stable, fully in-memory ``bytes`` buffer.

    Streaming a freshly produced buffer straight into a transport can hang
    some HTTP stacks, so uploads only ever receive fully materialized bytes.
    """
    if isinstance(payload, bytes):
        return payload
    if isinstance(payload, bytearray | memoryview):
        return bytes(payload)
    if isinstance(payload, io.IOBase) or hasattr(payload, "read"):
        if getattr(payload, "seekable", lambda: False)():
            payload.seek(0)
        data = payload.read()
        if not isinstance(data, bytes | bytearray):
            raise TypeError("stream must be opened in binary mode")
        return bytes(data)
    raise TypeError(f"Cannot materialize {type(payload).__name__} into bytes")


def _utcnow() -> datetime:
    return datetime.now(UTC)


class UploadCoordinator:
    """Uploads processed images for one owner with retry and fallback."""

    def __init__(
        self,
        storage: ObjectStorage,
        owner_id: str,
        policy: RetryPolicy | None = None,
        progress_interval: float = 0.6,
        cache_control: str = "31536000, immutable",
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if not owner_id:
            raise ValueError("owner_id is required")
        self._storage = storage
        self._owner_id = owner_id
        self._policy = policy or RetryPolicy()
        self._progress_interval = progress_interval
        self._cache_control = cache_control
        self._clock = clock

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    async def upload(
        self,
        data: bytes,
        on_progress: ProgressCallback | None = None,
        content_type: str = "image/jpeg",
        ext: str = "jpg",
    ) -> UploadResult:
        """Upload ``data`` and return its public URL and storage key.

        Raises:
            TypeError: If ``data`` has not been materialized to ``bytes``.
            UploadExhausted: If every attempt failed on both transports.
        """
        if not isinstance(data, bytes):
            raise TypeError("upload() requires materialized bytes")

        ticker: asyncio.Task[None] | None = None
        if on_progress is not None:
            on_progress(PROGRESS_START)
            ticker = asyncio.create_task(self._tick(on_progress))

        try:
            result = await self._run_attempts(data, content_type, ext)
        finally:
            if ticker is not None:
                ticker.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await ticker

        if on_progress is not None:
            on_progress(1.0)
        return result

    async def _run_attempts(self, data: bytes, content_type: str, ext: str) -> UploadResult:
        last_error: BaseException | None = None
        for attempt in self._policy.attempts():
            now = self._clock()
            nonce = random_suffix()
            key = build_object_key(self._owner_id, now, attempt=attempt, nonce=nonce, ext=ext)
            try:
                await self._call(self._storage.put_object, key, data, content_type, self._cache_control)
                return self._resolve(key)
            except Exception as exc:
                logger.warning("Primary upload failed (attempt %s/%s): %s", attempt, self._policy.max_retries, exc)
                last_error = exc

            # Fallback: direct write through a one-time pre-signed ticket.
            signed_key = build_object_key(self._owner_id, now, attempt=attempt, signed=True, nonce=nonce, ext=ext)
            try:
                ticket = await self._call(self._storage.create_signed_upload_ticket, signed_key, content_type)
                await self._call(self._storage.put_via_ticket, ticket, data, content_type)
                return self._resolve(ticket.path)
            except Exception as exc:
                logger.warning("Signed upload failed (attempt %s/%s): %s", attempt, self._policy.max_retries, exc)
                last_error = exc

            if self._policy.has_next(attempt):
                await asyncio.sleep(self._policy.backoff(attempt))
        raise UploadExhausted(self._policy.max_retries, last_error)

    async def _call(self, func: Callable[..., T], *args: object) -> T:
        try:
            return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=self._policy.timeout)
        except TimeoutError:
            raise NetworkTimeout(f"{func.__name__} timed out after {self._policy.timeout}s") from None

    def _resolve(self, key: str) -> UploadResult:
        url = self._storage.get_public_url(key)
        logger.info("Uploaded %s", key)
        return UploadResult(url=url, key=key)

    async def _tick(self, on_progress: ProgressCallback) -> None:
        fraction = PROGRESS_START
        while True:
            await asyncio.sleep(self._progress_interval)
            fraction = min(PROGRESS_CEILING, fraction + (_PROGRESS_TARGET - fraction) * _PROGRESS_EASING)
            on_progress(fraction)
