"""Library-level exception types.

This module defines the errors raised by buckets and storage backends, so
callers can tell an exhausted quota apart from an infrastructure failure.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, NotRequired, TypedDict

if TYPE_CHECKING:
    from leakybucket.adapters.base import BucketState


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and callers.

    Fields are optional; each error fills in what it knows.
    """

    code: str
    message: str
    hint: str
    backend: str
    bucket: str
    requested: int
    remaining: int
    retry_after: float
    raw_value: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for bucket/storage failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


@dataclass
class BucketFullError(AppError):
    """Raised when the requested amount exceeds the remaining quota.

    The bucket is left untouched. ``state`` holds the snapshot observed at the
    time of the rejection (after any window rollover) so callers can inspect
    ``remaining`` and ``reset`` without another round trip.
    """

    code: str = "bucket_full"
    message: str = "Bucket is full for the current window"
    details: ErrorDetails | None = None
    state: BucketState | None = None


class StorageAppError(AppError):
    """Raised when a storage backend fails (connectivity, protocol, bad data)."""


class ValidationAppError(AppError):
    """Raised when configuration or backend selection is invalid."""
