"""Camera/gallery selection handling."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from discintake.errors import CapacityExceeded
from discintake.models import ItemStatus, SelectedFile, UploadItem

if TYPE_CHECKING:
    from discintake.intake.tracker import ItemStateTracker

logger = logging.getLogger(__name__)

INITIAL_PROGRESS: int = 5


@dataclass(frozen=True)
class Selection:
    """Outcome of one picker selection."""

    items: tuple[UploadItem, ...] = ()
    files: tuple[SelectedFile, ...] = field(default=(), repr=False)
    skipped: int = 0
    warning: CapacityExceeded | None = None


def _usable(file: SelectedFile, max_file_bytes: int | None) -> bool:
    if file.size == 0:
        return False
    if (file.content_type or "").lower().startswith("video/"):
        return False
    return max_file_bytes is None or file.size <= max_file_bytes


def _new_item_id() -> str:
    return uuid.uuid4().hex


class CaptureAdapter:
    """Turns picker results into tracked upload items, within capacity."""

    def __init__(self, tracker: ItemStateTracker, max_items: int, max_file_bytes: int | None = None) -> None:
        self._tracker = tracker
        self._max_items = max_items
        self._max_file_bytes = max_file_bytes

    @property
    def room(self) -> int:
        return max(0, self._max_items - len(self._tracker))

    def accept(self, files: Iterable[SelectedFile]) -> Selection:
        """Create items for as many usable files as there is room for.

        Files are taken in the order presented. A selection that does not
        fully fit yields a :class:`CapacityExceeded` warning instead of an
        exception; nothing is evicted to make room.
        """
        offered = list(files)
        usable = [f for f in offered if _usable(f, self._max_file_bytes)]
        skipped = len(offered) - len(usable)
        if skipped:
            logger.info("Skipped %s empty, video or oversized file(s)", skipped)
        if not usable:
            return Selection(skipped=skipped)

        room = self.room
        if room == 0:
            warning = CapacityExceeded(self._max_items, len(usable), 0)
            logger.warning("Selection rejected: %s", warning)
            self._tracker.announce(str(warning))
            return Selection(skipped=skipped, warning=warning)

        accepted = usable[:room]
        warning = None
        if len(usable) > room:
            warning = CapacityExceeded(self._max_items, len(usable), room)
            logger.warning("Selection truncated to %s of %s file(s): %s", room, len(usable), warning)

        items = tuple(
            UploadItem(
                id=_new_item_id(),
                name=f.name or "photo.jpg",
                size_bytes=f.size,
                status=ItemStatus.PROCESSING,
                progress=INITIAL_PROGRESS,
                source=f.data,
            )
            for f in accepted
        )
        self._tracker.add(items)
        if warning is not None:
            self._tracker.announce(str(warning))
        self._tracker.announce(f"{len(items)} photo{'s' if len(items) > 1 else ''} added")
        return Selection(items=items, files=tuple(accepted), skipped=skipped, warning=warning)
