"""Full-resolution crop, rotate, resize and encode.

``transform_image`` is a pure function of its inputs and is what the
transform worker runs off the event loop.
"""

from __future__ import annotations

import io
import logging
from typing import TYPE_CHECKING

from PIL import Image, ImageOps

from discintake.errors import ProcessingFailed
from discintake.imaging.geometry import RenderPlan, plan_transform

if TYPE_CHECKING:
    from discintake.models import EditSpec

logger = logging.getLogger(__name__)

# Canvas rotation is clockwise; Pillow's ROTATE_* constants are counter-clockwise.
_CLOCKWISE: dict[int, Image.Transpose] = {
    90: Image.Transpose.ROTATE_270,
    180: Image.Transpose.ROTATE_180,
    270: Image.Transpose.ROTATE_90,
}

_DECODE_ERRORS = (OSError, ValueError, SyntaxError, Image.DecompressionBombError)


def decode_image(data: bytes) -> Image.Image:
    """Decode raw bytes into an upright RGB image.

    Raises:
        ProcessingFailed: If the bytes are not a decodable image.
    """
    try:
        with Image.open(io.BytesIO(data)) as opened:
            opened.load()
            upright = ImageOps.exif_transpose(opened)
            return upright.convert("RGB")
    except _DECODE_ERRORS as exc:
        raise ProcessingFailed(f"Could not decode image: {exc}") from exc


def render(image: Image.Image, plan: RenderPlan, resample: Image.Resampling = Image.Resampling.LANCZOS) -> Image.Image:
    """Apply a render plan: crop, rotate clockwise, then cover-resample."""
    region = image.crop(plan.crop.box)
    transpose = _CLOCKWISE.get(plan.rotation)
    if transpose is not None:
        region = region.transpose(transpose)
    return region.resize(plan.size, resample=resample, box=plan.cover)


def encode_jpeg(image: Image.Image, quality: float) -> bytes:
    """Encode as baseline JPEG; ``quality`` is a 0..1 float."""
    buffer = io.BytesIO()
    pil_quality = max(1, min(95, round(quality * 100)))
    try:
        image.save(buffer, format="JPEG", quality=pil_quality)
    except (OSError, ValueError) as exc:
        raise ProcessingFailed(f"Could not encode image: {exc}") from exc
    return buffer.getvalue()


def transform_image(data: bytes, spec: EditSpec, max_edge_px: int, jpeg_quality: float) -> bytes:
    """Decode, crop to 4:3, rotate, cap the longest edge and re-encode.

    Raises:
        ProcessingFailed: On any decode, transform or encode failure.
    """
    image = decode_image(data)
    try:
        plan = plan_transform(image.width, image.height, spec, max_edge_px)
        output = render(image, plan)
    except (OSError, ValueError) as exc:
        raise ProcessingFailed(f"Could not transform image: {exc}") from exc
    logger.debug(
        "Transformed %sx%s -> %sx%s (rotation=%s, zoom=%.2f)",
        image.width,
        image.height,
        output.width,
        output.height,
        spec.rotation,
        spec.zoom,
    )
    return encode_jpeg(output, jpeg_quality)
