"""In-memory fixed-window bucket storage.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: the table and each bucket are guarded by their own lock.
- Idle buckets are only reclaimed when ``clean()`` is called.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from leakybucket.adapters.base import (
    AbstractBucket,
    AbstractStorage,
    BucketState,
    validate_amount,
    validate_bucket_args,
)
from leakybucket.core.errors import BucketFullError
from leakybucket.core.logging import hash_bucket_name

logger = logging.getLogger(__name__)

IDLE_RETENTION_SECONDS = 3600


class InMemoryBucket(AbstractBucket):
    """Bucket whose state lives entirely in this process."""

    def __init__(
        self,
        name: str,
        *,
        capacity: int,
        rate: float,
        clock: Callable[[], float],
    ) -> None:
        now = clock()
        self._name = name
        self._capacity = capacity
        self._remaining = capacity
        self._rate = rate
        self._reset = now + rate
        self._updated = now
        self._clock = clock
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def remaining(self) -> int:
        return self._remaining

    @property
    def reset(self) -> float:
        return self._reset

    @property
    def rate(self) -> float:
        return self._rate

    @property
    def updated(self) -> float:
        """Wall-clock time of the last ``add``, used for idle eviction."""
        return self._updated

    def add(self, amount: int) -> BucketState:
        return self.add_at(amount, self._clock())

    def add_at(self, amount: int, when: float) -> BucketState:
        """Consume ``amount`` units as if the call happened at ``when``.

        Lets callers replay historical events in order. A timestamp past the
        current window rolls it forward; a timestamp that belongs to an
        older, already elapsed window realigns the window to start at
        ``when`` without refilling it.

        Args:
            amount: Units to consume (>= 0).
            when: Reference UNIX time in seconds.

        Returns:
            BucketState after the units were consumed.

        Raises:
            BucketFullError: If ``amount`` exceeds the remaining quota.
            ValueError: If ``amount`` is negative.
        """
        validate_amount(amount)

        with self._lock:
            self._updated = self._clock()

            if when >= self._reset:
                self._reset = when + self._rate
                self._remaining = self._capacity
                logger.debug(
                    "bucket.window_reset",
                    extra={"bucket": hash_bucket_name(self._name), "reset": self._reset},
                )

            if when < self._reset - self._rate:
                self._reset = when + self._rate

            if amount > self._remaining:
                state = self.state()
                logger.info(
                    "bucket.full",
                    extra={
                        "backend": "memory",
                        "bucket": hash_bucket_name(self._name),
                        "requested": amount,
                        "remaining": state.remaining,
                    },
                )
                raise BucketFullError(
                    details={
                        "backend": "memory",
                        "requested": amount,
                        "remaining": state.remaining,
                        "retry_after": max(0.0, state.reset - when),
                    },
                    state=state,
                )

            self._remaining -= amount
            return self.state()


class InMemoryStorage(AbstractStorage):
    """Bucket factory keeping every bucket in a local table.

    Each instance owns its own table; there is no process-wide registry.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.time,
        idle_retention_seconds: float = IDLE_RETENTION_SECONDS,
    ) -> None:
        """Initialize the in-memory storage.

        Args:
            clock: Time source function returning UNIX time in seconds.
            idle_retention_seconds: How long a bucket may go without ``add``
                before ``clean()`` evicts it.

        Raises:
            ValueError: If idle_retention_seconds is not positive.
        """
        if idle_retention_seconds <= 0:
            raise ValueError("idle_retention_seconds must be > 0")

        self._clock = clock
        self._idle_retention = idle_retention_seconds
        self._lock = threading.RLock()
        self._buckets: dict[str, InMemoryBucket] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._buckets)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._buckets

    def create(self, name: str, capacity: int, rate: float) -> InMemoryBucket:
        validate_bucket_args(name, capacity, rate)

        with self._lock:
            bucket = self._buckets.get(name)
            if bucket is not None:
                if bucket.capacity != capacity or bucket.rate != rate:
                    logger.warning(
                        "bucket.config_mismatch",
                        extra={
                            "bucket": hash_bucket_name(name),
                            "capacity": bucket.capacity,
                            "requested_capacity": capacity,
                            "rate": bucket.rate,
                            "requested_rate": rate,
                        },
                    )
                return bucket

            bucket = InMemoryBucket(name, capacity=capacity, rate=rate, clock=self._clock)
            self._buckets[name] = bucket

        logger.debug(
            "bucket.created",
            extra={"backend": "memory", "bucket": hash_bucket_name(name), "capacity": capacity},
        )
        return bucket

    def clean(self, name: str | None = None) -> int:
        """Evict every bucket idle for longer than the retention window.

        The sweep always covers the whole table; ``name`` does not narrow it.

        Returns:
            Number of buckets evicted.
        """
        cutoff = self._clock() - self._idle_retention

        with self._lock:
            stale = [key for key, bucket in self._buckets.items() if bucket.updated < cutoff]
            for key in stale:
                del self._buckets[key]
            tracked = len(self._buckets)

        if stale:
            logger.info("storage.clean", extra={"evicted": len(stale), "tracked": tracked})
        return len(stale)
