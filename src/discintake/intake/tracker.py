"""Per-item lifecycle state for an intake session.

The item list is the only state shared between concurrently running item
pipelines. Every mutation is a locked read-modify-write of the whole list,
keyed by item id, followed by a change notification carrying the complete
snapshot.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from dataclasses import replace
from typing import Any

from discintake.imaging.geometry import round_half_away
from discintake.models import ItemStatus, RemoteImage, UploadItem

logger = logging.getLogger(__name__)

Snapshot = tuple[UploadItem, ...]
ChangeListener = Callable[[Snapshot], None]
AnnouncementListener = Callable[[str], None]


def items_from_remote(records: Iterable[RemoteImage]) -> list[UploadItem]:
    """Synthesize finished items from persisted ``{url, key}`` records."""
    return [
        UploadItem(
            id=f"init-{idx}",
            name=record.key or f"image-{idx}.jpg",
            status=ItemStatus.DONE,
            progress=100,
            remote_url=record.url,
            storage_key=record.key,
        )
        for idx, record in enumerate(records)
    ]


class ItemStateTracker:
    """Ordered, observable list of upload items."""

    def __init__(self, initial: Iterable[UploadItem] = ()) -> None:
        self._items: list[UploadItem] = list(initial)
        self._lock = threading.Lock()
        self._listeners: list[ChangeListener] = []
        self._announcement_listeners: list[AnnouncementListener] = []

    # -- Queries ------------------------------------------------------------

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def __contains__(self, item_id: object) -> bool:
        return self.get(item_id) is not None  # type: ignore[arg-type]

    @property
    def items(self) -> Snapshot:
        with self._lock:
            return tuple(self._items)

    def get(self, item_id: str) -> UploadItem | None:
        with self._lock:
            return next((item for item in self._items if item.id == item_id), None)

    def overall_percent(self) -> int:
        """Mean progress over all items; finished items count as 100."""
        with self._lock:
            if not self._items:
                return 0
            total = sum(100 if item.status is ItemStatus.DONE else item.progress for item in self._items)
            return round_half_away(total / len(self._items))

    def results(self) -> list[RemoteImage]:
        """Stored ``{url, key}`` pairs of finished items, in display order."""
        return [item.remote for item in self.items if item.status is ItemStatus.DONE and item.remote is not None]

    # -- Mutations ----------------------------------------------------------

    def add(self, items: Iterable[UploadItem]) -> Snapshot:
        new_items = list(items)
        with self._lock:
            known = {item.id for item in self._items}
            duplicate = next((item.id for item in new_items if item.id in known), None)
            if duplicate is not None:
                raise ValueError(f"Duplicate item id: {duplicate}")
            self._items = [*self._items, *new_items]
            snapshot = tuple(self._items)
        self._notify(snapshot)
        return snapshot

    def update(self, item_id: str, *, generation: int | None = None, **changes: Any) -> UploadItem | None:
        """Replace fields of one item.

        Returns the new item, or None (and notifies nobody) when the item
        is no longer in the list or, with ``generation`` given, when a newer
        processing run has started since.
        """
        if "progress" in changes:
            changes["progress"] = _clamp_progress(changes["progress"])
        return self._mutate(item_id, lambda item: replace(item, **changes), generation)

    def advance(
        self,
        item_id: str,
        progress: float,
        status: ItemStatus | None = None,
        *,
        generation: int | None = None,
    ) -> UploadItem | None:
        """Raise an item's progress, never lowering it."""

        def _advance(item: UploadItem) -> UploadItem:
            changes: dict[str, Any] = {"progress": max(item.progress, _clamp_progress(progress))}
            if status is not None:
                changes["status"] = status
            return replace(item, **changes)

        return self._mutate(item_id, _advance, generation)

    def restart(self, item_id: str, **changes: Any) -> UploadItem | None:
        """Start a new processing run: bump the item's generation and apply ``changes``."""
        if "progress" in changes:
            changes["progress"] = _clamp_progress(changes["progress"])
        return self._mutate(item_id, lambda item: replace(item, generation=item.generation + 1, **changes))

    def remove(self, item_id: str) -> bool:
        with self._lock:
            remaining = [item for item in self._items if item.id != item_id]
            if len(remaining) == len(self._items):
                return False
            self._items = remaining
            snapshot = tuple(self._items)
        self._notify(snapshot)
        return True

    def cancel_all(self) -> list[str]:
        """Remove every item that has not finished uploading."""
        with self._lock:
            removed = [item.id for item in self._items if item.status is not ItemStatus.DONE]
            self._items = [item for item in self._items if item.status is ItemStatus.DONE]
            snapshot = tuple(self._items)
        self._notify(snapshot)
        return removed

    # -- Observers ----------------------------------------------------------

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        """Register a change listener; returns a callable that unsubscribes it."""
        self._listeners.append(listener)
        return lambda: self._discard(self._listeners, listener)

    def subscribe_announcements(self, listener: AnnouncementListener) -> Callable[[], None]:
        self._announcement_listeners.append(listener)
        return lambda: self._discard(self._announcement_listeners, listener)

    def announce(self, message: str) -> None:
        """Publish a short status message for assistive technology."""
        logger.debug("Announcement: %s", message)
        for listener in list(self._announcement_listeners):
            try:
                listener(message)
            except Exception:
                logger.exception("Announcement listener failed")

    # -- Internal -----------------------------------------------------------

    def _mutate(
        self,
        item_id: str,
        change: Callable[[UploadItem], UploadItem],
        generation: int | None = None,
    ) -> UploadItem | None:
        with self._lock:
            index = next((i for i, item in enumerate(self._items) if item.id == item_id), None)
            if index is None:
                return None
            if generation is not None and self._items[index].generation != generation:
                return None
            updated = change(self._items[index])
            self._items = [*self._items[:index], updated, *self._items[index + 1 :]]
            snapshot = tuple(self._items)
        self._notify(snapshot)
        return updated

    def _notify(self, snapshot: Snapshot) -> None:
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Change listener failed")

    @staticmethod
    def _discard(listeners: list[Any], listener: object) -> None:
        if listener in listeners:
            listeners.remove(listener)


def _clamp_progress(value: float) -> int:
    return max(0, min(100, round_half_away(value)))
