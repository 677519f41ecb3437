"""Tests for editor sessions opened from the intake pipeline."""

from __future__ import annotations

import asyncio
import io
import time
from collections.abc import Callable
from dataclasses import dataclass

import httpx
import pytest
from PIL import Image

from conftest import make_image_bytes, make_settings
from discintake.errors import SourceUnavailable
from discintake.intake.pipeline import IntakePipeline
from discintake.models import EditSpec, ItemStatus, RemoteImage, SelectedFile
from discintake.upload.storage import InMemoryObjectStorage

PhotoFactory = Callable[..., SelectedFile]
REMOTE_URL = "https://cdn.test/listing-images/user-1/a.jpg"


@dataclass
class SlowFirstUploadStorage(InMemoryObjectStorage):
    """Blocks only the very first ``put_object`` call."""

    first_delay: float = 0.5
    started: int = 0

    def put_object(self, key: str, data: bytes, content_type: str, cache_control: str) -> None:
        with self._lock:
            self.started += 1
            slow = self.started == 1
        if slow:
            time.sleep(self.first_delay)
        super().put_object(key, data, content_type, cache_control)


def _remote_client(payload: bytes) -> httpx.AsyncClient:
    def _handler(request: httpx.Request) -> httpx.Response:
        if str(request.url) == REMOTE_URL:
            return httpx.Response(200, content=payload, headers={"Content-Type": "image/jpeg"})
        return httpx.Response(404)

    return httpx.AsyncClient(transport=httpx.MockTransport(_handler))


async def _uploaded(pipeline: IntakePipeline, photo: PhotoFactory) -> str:
    pipeline.add_files([photo()])
    await pipeline.wait_idle()
    (item,) = pipeline.items
    assert item.status is ItemStatus.DONE
    return item.id


class TestEditorSession:
    async def test_frame_follows_parameter_changes(self, storage: InMemoryObjectStorage, photo: PhotoFactory) -> None:
        async with IntakePipeline(storage, "user-1", make_settings()) as pipeline:
            item_id = await _uploaded(pipeline, photo)

            with await pipeline.open_editor(item_id) as session:
                assert session.spec == EditSpec.DEFAULT
                assert session.frame.size == (800, 600)

                assert session.rotate().size == (600, 800)
                assert session.spec.rotation == 90

                session.set_zoom(2.0)
                session.set_pan(x=0.0)
                assert session.spec == EditSpec(rotation=90, zoom=2.0, pan_x=0.0, pan_y=0.5)

    async def test_apply_reuploads_under_a_new_key(self, storage: InMemoryObjectStorage, photo: PhotoFactory) -> None:
        messages: list[str] = []
        async with IntakePipeline(storage, "user-1", make_settings()) as pipeline:
            pipeline.subscribe_announcements(messages.append)
            item_id = await _uploaded(pipeline, photo)
            before = pipeline.tracker.get(item_id)

            session = await pipeline.open_editor(item_id)
            session.rotate()
            after = await session.apply()

            assert after is not None
            assert after.status is ItemStatus.DONE
            assert after.progress == 100
            assert after.storage_key != before.storage_key  # type: ignore[union-attr]
            assert len(storage.objects) == 2
            edited = Image.open(io.BytesIO(storage.objects[after.storage_key].data))  # type: ignore[index]
            assert edited.size == (300, 400)
            assert session.closed
            assert messages[-1] == "Photo updated"

    async def test_close_discards_the_edit(self, storage: InMemoryObjectStorage, photo: PhotoFactory) -> None:
        async with IntakePipeline(storage, "user-1", make_settings()) as pipeline:
            item_id = await _uploaded(pipeline, photo)

            session = await pipeline.open_editor(item_id)
            session.rotate()
            session.close()

            assert session.spec == EditSpec.DEFAULT
            assert len(storage.objects) == 1
            with pytest.raises(RuntimeError, match="closed"):
                await session.apply()
            with pytest.raises(RuntimeError, match="closed"):
                session.rotate()

    async def test_failed_reedit_keeps_previous_upload(
        self, storage: InMemoryObjectStorage, photo: PhotoFactory
    ) -> None:
        async with IntakePipeline(storage, "user-1", make_settings()) as pipeline:
            item_id = await _uploaded(pipeline, photo)
            before = pipeline.tracker.get(item_id)
            assert before is not None

            storage.primary_failures = -1
            storage.fallback_failures = -1
            session = await pipeline.open_editor(item_id)
            after = await session.apply()

            assert after is not None
            assert after.status is ItemStatus.ERROR
            assert after.remote_url == before.remote_url
            assert after.storage_key == before.storage_key
            assert after.editable

    async def test_remote_item_is_fetched_for_editing(self, storage: InMemoryObjectStorage) -> None:
        payload = make_image_bytes(640, 480, fmt="JPEG")
        initial = [RemoteImage(url=REMOTE_URL, key="user-1/a.jpg")]

        async with (
            _remote_client(payload) as client,
            IntakePipeline(storage, "user-1", make_settings(), initial_items=initial, http_client=client) as pipeline,
        ):
            assert not pipeline.items[0].editable

            with await pipeline.open_editor("init-0") as session:
                assert session.frame.size == (800, 600)

            assert pipeline.tracker.get("init-0").source == payload  # type: ignore[union-attr]

    async def test_missing_remote_raises_source_unavailable(self, storage: InMemoryObjectStorage) -> None:
        initial = [RemoteImage(url="https://cdn.test/gone.jpg", key="user-1/gone.jpg")]

        async with (
            _remote_client(b"") as client,
            IntakePipeline(storage, "user-1", make_settings(), initial_items=initial, http_client=client) as pipeline,
        ):
            with pytest.raises(SourceUnavailable):
                await pipeline.open_editor("init-0")
            assert not pipeline.items[0].editable

    async def test_unknown_item(self, storage: InMemoryObjectStorage) -> None:
        async with IntakePipeline(storage, "user-1", make_settings()) as pipeline:
            with pytest.raises(KeyError):
                await pipeline.open_editor("nope")

    async def test_edit_during_first_upload_wins(self, photo: PhotoFactory) -> None:
        storage = SlowFirstUploadStorage()
        async with IntakePipeline(storage, "user-1", make_settings()) as pipeline:
            pipeline.add_files([photo()])
            while storage.started == 0:
                await asyncio.sleep(0.01)
            (item,) = pipeline.items
            assert item.status is ItemStatus.UPLOADING

            session = await pipeline.open_editor(item.id)
            session.rotate()
            edited = await session.apply()
            assert edited is not None
            assert edited.status is ItemStatus.DONE

            await pipeline.wait_idle()
            final = pipeline.tracker.get(item.id)

            assert final is not None
            assert final.status is ItemStatus.DONE
            assert final.progress == 100
            assert final.storage_key == edited.storage_key
            assert final.remote_url == edited.remote_url
            assert final.generation == 1
            assert len(storage.objects) == 2
            framed = Image.open(io.BytesIO(storage.objects[final.storage_key].data))  # type: ignore[index]
            assert framed.size == (300, 400)
