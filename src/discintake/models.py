"""Core data types shared by the intake pipeline."""

from __future__ import annotations

import mimetypes
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import ClassVar


class ItemStatus(StrEnum):
    QUEUED = "queued"
    PROCESSING = "processing"
    UPLOADING = "uploading"
    DONE = "done"
    ERROR = "error"


_RIGHT_ANGLES = (0, 90, 180, 270)


@dataclass(frozen=True)
class EditSpec:
    """Live-editable transform parameters for one image.

    ``pan_x``/``pan_y`` are the normalized crop-center position inside the
    source image; ``zoom`` of 1 means no zoom.
    """

    rotation: int = 0
    zoom: float = 1.0
    pan_x: float = 0.5
    pan_y: float = 0.5

    DEFAULT: ClassVar[EditSpec]

    def __post_init__(self) -> None:
        rotation = self.rotation % 360
        if rotation not in _RIGHT_ANGLES:
            raise ValueError(f"rotation must be a multiple of 90 degrees, got {self.rotation}")
        object.__setattr__(self, "rotation", rotation)
        object.__setattr__(self, "zoom", max(1.0, float(self.zoom)))
        object.__setattr__(self, "pan_x", min(1.0, max(0.0, float(self.pan_x))))
        object.__setattr__(self, "pan_y", min(1.0, max(0.0, float(self.pan_y))))

    @property
    def quarter_turned(self) -> bool:
        """True when the rotation swaps width and height."""
        return self.rotation % 180 != 0

    def rotated(self) -> EditSpec:
        """Return a copy turned a further 90 degrees clockwise."""
        return EditSpec(self.rotation + 90, self.zoom, self.pan_x, self.pan_y)


EditSpec.DEFAULT = EditSpec()


@dataclass(frozen=True)
class RemoteImage:
    """A stored image as persisted on the listing record."""

    url: str
    key: str | None = None


@dataclass(frozen=True)
class UploadResult:
    url: str
    key: str


@dataclass(frozen=True)
class SelectedFile:
    """A file handed over by a camera or gallery picker."""

    name: str
    content_type: str
    data: bytes = field(repr=False)

    @property
    def size(self) -> int:
        return len(self.data)

    @classmethod
    def from_path(cls, path: str | Path) -> SelectedFile:
        path = Path(path)
        content_type, _ = mimetypes.guess_type(path.name)
        return cls(
            name=path.name,
            content_type=content_type or "application/octet-stream",
            data=path.read_bytes(),
        )


@dataclass(frozen=True)
class UploadItem:
    """One user-selected or already-stored image.

    Instances are immutable snapshots; the tracker swaps in a new instance
    for every state change. ``generation`` counts processing runs: an edit
    starts a new run, and updates from older runs are dropped.
    """

    id: str
    name: str
    size_bytes: int = 0
    status: ItemStatus = ItemStatus.QUEUED
    progress: int = 0
    remote_url: str | None = None
    storage_key: str | None = None
    error: str | None = None
    generation: int = 0
    source: bytes | None = field(default=None, repr=False, compare=False)

    @property
    def editable(self) -> bool:
        return self.source is not None

    @property
    def remote(self) -> RemoteImage | None:
        if self.remote_url is None:
            return None
        return RemoteImage(url=self.remote_url, key=self.storage_key)
