"""Tiny blurred placeholders shown while listing photos load."""

from __future__ import annotations

import asyncio
import base64
import io
import logging
from collections.abc import Awaitable, Callable

import httpx
from PIL import Image, ImageOps

logger = logging.getLogger(__name__)

PLACEHOLDER_SIZE: tuple[int, int] = (24, 18)
PLACEHOLDER_QUALITY: int = 40
TRANSPARENT_PIXEL = "data:image/gif;base64,R0lGODlhAQABAAAAACw="

BlurGenerator = Callable[[str], Awaitable[str]]


def encode_placeholder(data: bytes) -> str:
    """Cover-fit image bytes to the placeholder size and return a WebP data URL."""
    with Image.open(io.BytesIO(data)) as image:
        tiny = ImageOps.fit(image.convert("RGB"), PLACEHOLDER_SIZE, method=Image.Resampling.BILINEAR)
    buffer = io.BytesIO()
    tiny.save(buffer, format="WEBP", quality=PLACEHOLDER_QUALITY)
    return "data:image/webp;base64," + base64.b64encode(buffer.getvalue()).decode("ascii")


async def generate_blur_data_url(url: str, http_client: httpx.AsyncClient) -> str:
    """Fetch a public image and build its placeholder.

    Raises:
        httpx.HTTPError: If the image cannot be fetched.
        OSError: If the fetched bytes are not an image.
    """
    response = await http_client.get(url, headers={"Accept": "image/*"})
    response.raise_for_status()
    return await asyncio.to_thread(encode_placeholder, response.content)


class BlurPlaceholderCache:
    """Process-lifetime cache of placeholders keyed by image URL.

    Entries are never evicted. Failed generations cache a transparent pixel
    so a broken image is not refetched on every render.
    """

    def __init__(self, generator: BlurGenerator) -> None:
        self._generator = generator
        self._entries: dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, url: object) -> bool:
        return url in self._entries

    async def get(self, url: str | None) -> str | None:
        if not url:
            return None
        cached = self._entries.get(url)
        if cached is not None:
            return cached
        try:
            placeholder = await self._generator(url)
        except (httpx.HTTPError, OSError) as exc:
            logger.warning("Blur placeholder failed for %s: %s", url, exc)
            placeholder = TRANSPARENT_PIXEL
        self._entries[url] = placeholder
        return placeholder
