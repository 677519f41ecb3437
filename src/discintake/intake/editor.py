"""Interactive re-framing of one item."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import replace
from typing import TYPE_CHECKING

from discintake.models import EditSpec

if TYPE_CHECKING:
    from PIL import Image

    from discintake.imaging.preview import PreviewRenderer
    from discintake.models import UploadItem

logger = logging.getLogger(__name__)

ApplyEdit = Callable[[str, bytes, EditSpec], Awaitable["UploadItem | None"]]


class EditorSession:
    """An item opened in the editor.

    Every parameter change repaints :attr:`frame` synchronously. The edit
    only takes effect on :meth:`apply`; closing without applying discards it.
    """

    def __init__(self, item_id: str, source: bytes, renderer: PreviewRenderer, apply_edit: ApplyEdit) -> None:
        self.item_id = item_id
        self._source = source
        self._renderer = renderer
        self._apply_edit = apply_edit
        self._closed = False
        self.spec = EditSpec.DEFAULT
        self.frame: Image.Image = renderer.render(self.spec)

    def __enter__(self) -> EditorSession:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    def rotate(self) -> Image.Image:
        """Turn the image a further 90 degrees clockwise."""
        return self._repaint(self.spec.rotated())

    def set_zoom(self, zoom: float) -> Image.Image:
        return self._repaint(replace(self.spec, zoom=zoom))

    def set_pan(self, x: float | None = None, y: float | None = None) -> Image.Image:
        return self._repaint(
            replace(
                self.spec,
                pan_x=self.spec.pan_x if x is None else x,
                pan_y=self.spec.pan_y if y is None else y,
            )
        )

    async def apply(self) -> UploadItem | None:
        """Commit the current edit: re-process and re-upload the item.

        Returns the item's final state, or None if it was removed meanwhile.
        """
        self._ensure_open()
        spec = self.spec
        self.close()
        logger.info("Applying edit to %s: %s", self.item_id, spec)
        return await self._apply_edit(self.item_id, self._source, spec)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.spec = EditSpec.DEFAULT
        self._renderer.close()

    def _repaint(self, spec: EditSpec) -> Image.Image:
        self._ensure_open()
        self.spec = spec
        self.frame = self._renderer.render(spec)
        return self.frame

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError("Editor session is closed")
