"""Bucket and storage interfaces.

Callers should depend on these abstractions (not the concrete backends) so
the same quota semantics work whether state lives in process memory or in a
shared Redis instance.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class BucketState:
    """Snapshot of a bucket returned from every ``add``.

    Attributes:
        capacity: Maximum units per window.
        remaining: Units still available in the current window.
        reset: UNIX epoch seconds when the current window ends.
    """

    capacity: int
    remaining: int
    reset: float


class AbstractBucket(ABC):
    """A named fixed-window quota tracker.

    The window refills in full once ``reset`` has passed; there is no partial
    refill inside a window.
    """

    @property
    @abstractmethod
    def capacity(self) -> int:
        """Maximum units per window."""
        raise NotImplementedError

    @property
    @abstractmethod
    def remaining(self) -> int:
        """Units left in the last observed window."""
        raise NotImplementedError

    @property
    @abstractmethod
    def reset(self) -> float:
        """UNIX epoch seconds when the last observed window ends."""
        raise NotImplementedError

    def state(self) -> BucketState:
        return BucketState(capacity=self.capacity, remaining=self.remaining, reset=self.reset)

    @abstractmethod
    def add(self, amount: int) -> BucketState:
        """Consume ``amount`` units from the bucket.

        Rolls the window forward first when it has elapsed.

        Args:
            amount: Units to consume (>= 0).

        Returns:
            BucketState after the units were consumed.

        Raises:
            BucketFullError: If ``amount`` exceeds the remaining quota. The
                bucket is not modified and the error carries the state.
            StorageAppError: If the backend fails.
            ValueError: If ``amount`` is negative.
        """
        raise NotImplementedError


class AbstractStorage(ABC):
    """Factory handing out buckets by name."""

    @abstractmethod
    def create(self, name: str, capacity: int, rate: float) -> AbstractBucket:
        """Return the bucket called ``name``, creating it on first use.

        Repeat calls return a handle to the existing bucket. ``capacity`` and
        ``rate`` are only applied when the bucket is first created; the
        existing window state wins afterwards.

        Args:
            name: Bucket identifier.
            capacity: Maximum units per window (>= 0).
            rate: Window length in seconds (> 0).

        Returns:
            The bucket handle.

        Raises:
            StorageAppError: If the backend fails.
            ValueError: If the arguments are invalid.
        """
        raise NotImplementedError


def validate_bucket_args(name: str, capacity: int, rate: float) -> None:
    """Validate ``create`` arguments shared by all backends.

    Raises:
        ValueError: If name is empty, capacity is negative or rate is not positive.
    """
    if not name:
        raise ValueError("name must be a non-empty string")
    if capacity < 0:
        raise ValueError("capacity must be >= 0")
    if rate <= 0:
        raise ValueError("rate must be > 0")


def validate_amount(amount: int) -> None:
    if amount < 0:
        raise ValueError("amount must be >= 0")
