"""Image intake orchestration.

Per item, steps run strictly in sequence:

    capture -> normalize -> transform (worker) -> materialize -> upload -> done

Items run concurrently with each other. Every state change goes through the
:class:`ItemStateTracker`, which ignores updates for removed items, so a
late completion can never bring a removed item back. Each run is tagged
with the item's generation; applying an edit starts a new generation, and
a superseded run's late results are dropped the same way.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine, Iterable
from typing import TYPE_CHECKING, Any

import httpx

from discintake.config import Settings, get_settings
from discintake.errors import IntakeError, ProcessingFailed, SourceUnavailable
from discintake.imaging.geometry import round_half_away
from discintake.imaging.normalize import Converter, convert_heif, is_legacy_format, normalize
from discintake.imaging.preview import PreviewRenderer
from discintake.imaging.worker import TransformRequest, TransformWorker
from discintake.intake.capture import CaptureAdapter, Selection
from discintake.intake.editor import EditorSession
from discintake.intake.tracker import ItemStateTracker, Snapshot, items_from_remote
from discintake.models import EditSpec, ItemStatus, RemoteImage, SelectedFile, UploadItem
from discintake.upload.coordinator import UploadCoordinator, materialize
from discintake.upload.retry import RetryPolicy

if TYPE_CHECKING:
    from discintake.upload.storage import ObjectStorage

logger = logging.getLogger(__name__)

# Progress milestones, in percent.
NORMALIZE_PROGRESS = 10
EDIT_PROGRESS = 10
UPLOAD_PROGRESS = 60
UPLOAD_PROGRESS_CAP = 99


class IntakePipeline:
    """Image intake and upload for one owner's editing session."""

    def __init__(
        self,
        storage: ObjectStorage,
        owner_id: str,
        settings: Settings | None = None,
        *,
        initial_items: Iterable[RemoteImage] = (),
        http_client: httpx.AsyncClient | None = None,
        worker: TransformWorker | None = None,
        converter: Converter = convert_heif,
        uploader: UploadCoordinator | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self.tracker = ItemStateTracker(items_from_remote(initial_items))
        self._capture = CaptureAdapter(self.tracker, self._settings.max_items, self._settings.max_file_bytes)
        self._uploader = uploader or UploadCoordinator(
            storage,
            owner_id,
            policy=RetryPolicy.from_settings(self._settings),
            progress_interval=self._settings.progress_interval,
            cache_control=self._settings.cache_control,
        )
        self._owns_worker = worker is None
        self._worker = worker or TransformWorker(self._settings.transform_workers)
        self._converter = converter
        self._http_client = http_client
        self._tasks: set[asyncio.Task[None]] = set()

    async def __aenter__(self) -> IntakePipeline:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # -- Session surface ----------------------------------------------------

    @property
    def items(self) -> Snapshot:
        return self.tracker.items

    def overall_percent(self) -> int:
        return self.tracker.overall_percent()

    def results(self) -> list[RemoteImage]:
        return self.tracker.results()

    def subscribe(self, listener: Callable[[Snapshot], None]) -> Callable[[], None]:
        return self.tracker.subscribe(listener)

    def subscribe_announcements(self, listener: Callable[[str], None]) -> Callable[[], None]:
        return self.tracker.subscribe_announcements(listener)

    def add_files(self, files: Iterable[SelectedFile]) -> Selection:
        """Accept picked files and start processing them in the background.

        Must be called from within a running event loop.
        """
        selection = self._capture.accept(files)
        for item, file in zip(selection.items, selection.files, strict=True):
            self._spawn(self._process_new(item.id, item.generation, file))
        return selection

    def remove(self, item_id: str) -> bool:
        """Remove one item. Already uploaded objects are left in storage."""
        return self.tracker.remove(item_id)

    def cancel_all(self) -> list[str]:
        """Remove every item that has not finished uploading."""
        removed = self.tracker.cancel_all()
        self.tracker.announce("Canceled pending uploads")
        return removed

    async def wait_idle(self) -> None:
        """Wait until every in-flight item pipeline has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        await self.wait_idle()
        if self._owns_worker:
            await asyncio.to_thread(self._worker.shutdown)

    # -- Editing ------------------------------------------------------------

    async def open_editor(self, item_id: str) -> EditorSession:
        """Open an item for re-framing.

        Items without local bytes are fetched from their public URL first.

        Raises:
            KeyError: If the item is not in the list.
            SourceUnavailable: If there is nothing to edit from.
            ProcessingFailed: If the source cannot be decoded.
        """
        item = self.tracker.get(item_id)
        if item is None:
            raise KeyError(f"Unknown item: {item_id}")
        source = item.source
        if source is None:
            if item.remote_url is None:
                raise SourceUnavailable(f"Item {item_id} has no image to edit")
            source = await self._fetch(item.remote_url)
            self.tracker.update(item_id, source=source)

        renderer = await asyncio.to_thread(
            PreviewRenderer,
            source,
            self._settings.max_edge_px,
            (self._settings.preview_width, self._settings.preview_height),
        )
        return EditorSession(item_id, source, renderer, self._apply_edit)

    async def _apply_edit(self, item_id: str, source: bytes, spec: EditSpec) -> UploadItem | None:
        item = self.tracker.restart(item_id, status=ItemStatus.PROCESSING, progress=EDIT_PROGRESS, error=None)
        if item is None:
            return None
        run = item.generation
        await self._guarded(item_id, run, self._process_and_upload(item_id, run, source, spec, "Photo updated"))
        return self.tracker.get(item_id)

    async def _fetch(self, url: str) -> bytes:
        try:
            if self._http_client is not None:
                response = await self._http_client.get(url)
            else:
                async with httpx.AsyncClient(timeout=self._settings.upload_timeout) as client:
                    response = await client.get(url)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise SourceUnavailable(f"Could not fetch {url}: {exc}") from exc
        return response.content

    # -- Item pipeline ------------------------------------------------------

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _process_new(self, item_id: str, run: int, file: SelectedFile) -> None:
        async def _run() -> None:
            work = file
            if is_legacy_format(file.content_type, file.name):
                if self.tracker.advance(item_id, NORMALIZE_PROGRESS, ItemStatus.PROCESSING, generation=run) is None:
                    return
                work = await asyncio.to_thread(normalize, file, self._settings.heif_quality, self._converter)
                if work is not file and self.tracker.update(item_id, source=work.data, generation=run) is None:
                    return
            await self._process_and_upload(item_id, run, work.data, EditSpec.DEFAULT, "Photo uploaded")

        await self._guarded(item_id, run, _run())

    async def _guarded(self, item_id: str, run: int, coro: Coroutine[Any, Any, None]) -> None:
        try:
            await coro
        except ProcessingFailed as exc:
            self._fail(item_id, run, exc, "Processing failed")
        except IntakeError as exc:
            self._fail(item_id, run, exc, "Upload failed")
        except Exception as exc:
            logger.exception("Unexpected failure while processing item %s", item_id)
            self._fail(item_id, run, exc, "Upload failed")

    async def _process_and_upload(
        self,
        item_id: str,
        run: int,
        source: bytes,
        spec: EditSpec,
        done_message: str,
    ) -> None:
        request = TransformRequest(
            source=source,
            spec=spec,
            max_edge_px=self._settings.max_edge_px,
            jpeg_quality=self._settings.jpeg_quality,
        )
        processed = await self._worker.submit(request)

        if self.tracker.update(item_id, status=ItemStatus.UPLOADING, progress=UPLOAD_PROGRESS, generation=run) is None:
            logger.info("Item %s removed or re-edited before upload; skipping", item_id)
            return

        def _on_progress(fraction: float) -> None:
            percent = UPLOAD_PROGRESS + round_half_away(fraction * (100 - UPLOAD_PROGRESS))
            self.tracker.advance(item_id, min(UPLOAD_PROGRESS_CAP, percent), generation=run)

        result = await self._uploader.upload(materialize(processed), on_progress=_on_progress)

        changes: dict[str, object] = {
            "status": ItemStatus.DONE,
            "progress": 100,
            "remote_url": result.url,
            "storage_key": result.key,
            "error": None,
        }
        if not self._settings.retain_source_bytes:
            changes["source"] = None
        if self.tracker.update(item_id, generation=run, **changes) is None:
            logger.info("Item %s removed or re-edited during upload; discarding %s", item_id, result.key)
            return
        self.tracker.announce(done_message)

    def _fail(self, item_id: str, run: int, exc: BaseException, message: str) -> None:
        logger.warning("%s for item %s: %s", message, item_id, exc)
        failed = self.tracker.update(
            item_id, status=ItemStatus.ERROR, error=str(exc) or message, progress=0, generation=run
        )
        if failed is not None:
            self.tracker.announce(message)
