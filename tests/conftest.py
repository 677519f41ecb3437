"""Shared fixtures: in-memory images, storage and fast settings."""

from __future__ import annotations

import io
from collections.abc import Callable

import pytest
from PIL import Image

from discintake.config import Settings
from discintake.models import SelectedFile
from discintake.upload.storage import InMemoryObjectStorage

ImageFactory = Callable[..., bytes]


def make_image_bytes(
    width: int,
    height: int,
    top: tuple[int, int, int] = (220, 30, 30),
    bottom: tuple[int, int, int] = (30, 30, 220),
    fmt: str = "PNG",
) -> bytes:
    """Two-band test image: ``top`` colour above ``bottom`` colour."""
    image = Image.new("RGB", (width, height), bottom)
    image.paste(top, (0, 0, width, height // 2))
    buffer = io.BytesIO()
    image.save(buffer, format=fmt)
    return buffer.getvalue()


def make_gradient_bytes(width: int, height: int) -> bytes:
    """Smooth horizontal/vertical gradient, friendly to resampling comparisons."""
    image = Image.new("RGB", (width, height))
    dx = max(1, width - 1)
    dy = max(1, height - 1)
    image.putdata([(x * 255 // dx, y * 255 // dy, 128) for y in range(height) for x in range(width)])
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def make_settings(**overrides: object) -> Settings:
    defaults: dict[str, object] = {
        "max_items": 10,
        "max_edge_px": 400,
        "backoff_step": 0.0,
        "progress_interval": 0.01,
        "upload_timeout": 5.0,
        "use_in_memory_storage": True,
    }
    defaults.update(overrides)
    return Settings(**defaults)  # type: ignore[arg-type]


@pytest.fixture()
def image_bytes() -> ImageFactory:
    return make_image_bytes


@pytest.fixture()
def photo() -> Callable[..., SelectedFile]:
    def _photo(
        name: str = "disc.png", width: int = 800, height: int = 600, content_type: str = "image/png"
    ) -> SelectedFile:
        return SelectedFile(name=name, content_type=content_type, data=make_image_bytes(width, height))

    return _photo


@pytest.fixture()
def storage() -> InMemoryObjectStorage:
    return InMemoryObjectStorage()


@pytest.fixture()
def settings() -> Settings:
    return make_settings()
