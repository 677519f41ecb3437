"""Live preview rendering for the photo editor.

The source is decoded once and reduced to a display copy of at most about
twice the preview surface; every repaint works on that copy. Repaints go
through the same :func:`plan_preview`/:func:`render` path as the final
transform, with the plan rescaled to the display copy and a cheaper
resampling filter.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

from PIL import Image

from discintake.imaging.geometry import plan_preview, scale_plan
from discintake.imaging.transform import decode_image, render

if TYPE_CHECKING:
    from discintake.models import EditSpec

PREVIEW_SURFACE: tuple[int, int] = (800, 600)
DISPLAY_OVERSAMPLE: int = 2


def display_factor(source_size: tuple[int, int], surface: tuple[int, int]) -> int:
    """Integer reduction that brings the longest source edge near ``DISPLAY_OVERSAMPLE`` surfaces."""
    limit = DISPLAY_OVERSAMPLE * max(surface)
    return max(1, math.ceil(max(source_size) / limit))


class PreviewRenderer:
    """Synchronous, low-latency preview of an edit."""

    def __init__(
        self,
        source: bytes,
        max_edge_px: int,
        surface: tuple[int, int] = PREVIEW_SURFACE,
        resample: Image.Resampling = Image.Resampling.BILINEAR,
    ) -> None:
        decoded = decode_image(source)
        self._source_size = decoded.size
        self._factor = display_factor(decoded.size, surface)
        if self._factor > 1:
            self._bitmap: Image.Image | None = decoded.reduce(self._factor)
            decoded.close()
        else:
            self._bitmap = decoded
        self._max_edge_px = max_edge_px
        self._surface = surface
        self._resample = resample

    @property
    def source_size(self) -> tuple[int, int]:
        self._require_bitmap()
        return self._source_size

    @property
    def display_size(self) -> tuple[int, int]:
        return self._require_bitmap().size

    def render(self, spec: EditSpec) -> Image.Image:
        """Repaint the preview for ``spec``."""
        bitmap = self._require_bitmap()
        width, height = self._source_size
        plan = plan_preview(width, height, spec, self._surface, self._max_edge_px)
        return render(bitmap, scale_plan(plan, self._factor, bitmap.size), resample=self._resample)

    def close(self) -> None:
        """Release the display bitmap."""
        if self._bitmap is not None:
            self._bitmap.close()
            self._bitmap = None

    def _require_bitmap(self) -> Image.Image:
        if self._bitmap is None:
            raise RuntimeError("Preview renderer is closed")
        return self._bitmap
