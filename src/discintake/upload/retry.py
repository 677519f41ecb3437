"""Retry policy for durable uploads."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from discintake.config import Settings


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded attempts with linear backoff.

    Attempts are numbered from 1. Each attempt tries the primary transport
    and then the fallback; ``timeout`` bounds every single transport call.
    """

    max_retries: int = 3
    backoff_step: float = 0.8
    timeout: float = 30.0

    def __post_init__(self) -> None:
        if self.max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        if self.backoff_step < 0:
            raise ValueError("backoff_step must not be negative")
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")

    @classmethod
    def from_settings(cls, settings: Settings) -> RetryPolicy:
        return cls(
            max_retries=settings.max_retries,
            backoff_step=settings.backoff_step,
            timeout=settings.upload_timeout,
        )

    def attempts(self) -> range:
        return range(1, self.max_retries + 1)

    def has_next(self, attempt: int) -> bool:
        return attempt < self.max_retries

    def backoff(self, attempt: int) -> float:
        """Seconds to wait after a failed ``attempt`` before the next one."""
        return attempt * self.backoff_step
