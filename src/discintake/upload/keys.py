"""Object key construction.

Keys are namespaced by owner (storage policies authorize on the first path
segment) and partitioned by upload date:

    {owner}/{yyyy}/{mm}/{dd}/{epoch_ms}-{random}[-a{attempt}][-signed].{ext}
"""

from __future__ import annotations

import secrets
import string
from datetime import datetime

_ALPHABET = string.ascii_lowercase + string.digits
_RANDOM_LENGTH = 11


def random_suffix(length: int = _RANDOM_LENGTH) -> str:
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def build_object_key(
    owner_id: str,
    now: datetime,
    *,
    attempt: int = 1,
    signed: bool = False,
    ext: str = "jpg",
    nonce: str | None = None,
) -> str:
    """Build a time-partitioned, randomized key scoped under ``owner_id``.

    The attempt tag is only added from the second attempt on; ``signed``
    marks keys written through a pre-signed upload ticket.
    """
    owner = owner_id.strip().strip("/")
    if not owner:
        raise ValueError("owner_id must not be empty")
    stamp = int(now.timestamp() * 1000)
    name = f"{stamp}-{nonce or random_suffix()}"
    if attempt > 1:
        name += f"-a{attempt}"
    if signed:
        name += "-signed"
    return f"{owner}/{now.year:04d}/{now.month:02d}/{now.day:02d}/{name}.{ext.lstrip('.')}"
