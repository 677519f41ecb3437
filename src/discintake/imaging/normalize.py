"""Legacy camera format normalization.

HEIC/HEIF photos straight from phone cameras are converted to JPEG before
any further processing. Conversion is best-effort: when it fails the
original file continues down the pipeline unchanged.
"""

from __future__ import annotations

import io
import logging
import re
from collections.abc import Callable
from pathlib import PurePath

from PIL import Image

from discintake.errors import ConversionFailed
from discintake.models import SelectedFile

logger = logging.getLogger(__name__)

Converter = Callable[[bytes, float], bytes]

_LEGACY_TYPE = re.compile(r"heic|heif", re.IGNORECASE)
_LEGACY_SUFFIX = re.compile(r"\.(heic|heif)$", re.IGNORECASE)

_heif_registered = False


def is_legacy_format(content_type: str, name: str) -> bool:
    return bool(_LEGACY_TYPE.search(content_type or "") or _LEGACY_SUFFIX.search(name or ""))


def _register_heif_opener() -> None:
    global _heif_registered
    if _heif_registered:
        return
    import pillow_heif  # registers HEIC/HEIF opener with Pillow

    pillow_heif.register_heif_opener()
    _heif_registered = True


def convert_heif(data: bytes, quality: float) -> bytes:
    """Convert HEIC/HEIF bytes to JPEG.

    Raises:
        ConversionFailed: If the bytes cannot be decoded or re-encoded.
    """
    try:
        _register_heif_opener()
        with Image.open(io.BytesIO(data)) as image:
            buffer = io.BytesIO()
            image.convert("RGB").save(buffer, format="JPEG", quality=max(1, min(95, round(quality * 100))))
    except Exception as exc:
        raise ConversionFailed(str(exc)) from exc
    return buffer.getvalue()


def jpeg_name(name: str) -> str:
    """Swap the file extension for ``.jpg``."""
    stem = PurePath(name or "image").stem or "image"
    return f"{stem}.jpg"


def normalize(file: SelectedFile, quality: float, converter: Converter = convert_heif) -> SelectedFile:
    """Return a broadly decodable version of ``file``.

    Non-legacy formats are returned untouched. Legacy formats are converted
    with ``converter``; on :class:`ConversionFailed` the original is returned.
    """
    if not is_legacy_format(file.content_type, file.name):
        return file
    try:
        converted = converter(file.data, quality)
    except ConversionFailed as exc:
        logger.warning("HEIC conversion failed for %s: %s", file.name, exc)
        return file
    return SelectedFile(name=jpeg_name(file.name), content_type="image/jpeg", data=converted)
