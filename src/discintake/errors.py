"""Failure taxonomy for the image intake pipeline.

Per-item failures never escape to the hosting page: the pipeline catches
them and records the message on the item instead.
"""

from __future__ import annotations


class IntakeError(Exception):
    """Base class for all intake pipeline errors."""


class CapacityExceeded(IntakeError):
    """A selection offered more files than the remaining room."""

    def __init__(self, max_items: int, requested: int, accepted: int) -> None:
        self.max_items = max_items
        self.requested = requested
        self.accepted = accepted
        super().__init__(f"You can upload up to {max_items} photos.")


class ConversionFailed(IntakeError):
    """Converting a legacy camera format failed. Recovered locally."""


class ProcessingFailed(IntakeError):
    """Decoding, cropping or encoding an image failed."""


class StorageError(IntakeError):
    """An object storage transport call failed."""


class NetworkTimeout(StorageError):
    """A transport call did not finish within its timeout."""


class UploadExhausted(IntakeError):
    """Every upload attempt, primary and fallback, failed."""

    def __init__(self, attempts: int, last_error: BaseException | None) -> None:
        self.attempts = attempts
        self.last_error = last_error
        detail = str(last_error) if last_error is not None else "unknown error"
        super().__init__(f"Upload failed after {attempts} attempt(s): {detail}")


class SourceUnavailable(IntakeError):
    """An item has neither local bytes nor a remote URL to edit from."""
