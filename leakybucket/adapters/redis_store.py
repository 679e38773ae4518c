"""Redis-backed fixed-window bucket storage.

Bucket state is projected onto one integer counter per bucket name: consuming
quota increments the counter and the window rolls over when the key's TTL
lapses. Redis is the only source of truth; a ``RedisBucket`` caches the last
observed projection for ``capacity``/``remaining``/``reset`` readers and
re-synchronizes on every ``add``.

Each logical operation borrows a single pooled connection and hands it back
on every exit path.
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from typing import Any, Callable, Iterator

import redis

from leakybucket.adapters.base import (
    AbstractBucket,
    AbstractStorage,
    BucketState,
    validate_amount,
    validate_bucket_args,
)
from leakybucket.core.errors import BucketFullError, StorageAppError
from leakybucket.core.logging import hash_bucket_name

logger = logging.getLogger(__name__)


# INCRBY the key and give it a TTL when it has none (fresh key, or a key left
# without expiry by an older writer). Both happen in one atomic script so a
# crash can never leave a counter that never expires.
# Returns [counter, ttl_ms]
LUA_INCRBY_AND_PEXPIRE = """
local counter = redis.call("INCRBY", KEYS[1], ARGV[1])
local ttl = redis.call("PTTL", KEYS[1])
if ttl < 0 then
  redis.call("PEXPIRE", KEYS[1], ARGV[2])
  ttl = tonumber(ARGV[2])
end
return {counter, ttl}
"""


def _to_milliseconds(seconds: float) -> int:
    return max(1, int(round(seconds * 1000)))


def _parse_counter(raw: Any, key: str) -> int:
    """Parse a stored counter value; a missing key counts as zero.

    Raises:
        StorageAppError: If the stored value is not an integer.
    """
    if raw is None:
        return 0
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise StorageAppError(
            code="storage_malformed_value",
            message="Stored bucket counter is not an integer",
            details={
                "backend": "redis",
                "bucket": hash_bucket_name(key),
                "raw_value": repr(raw)[:32],
            },
        ) from exc


def _storage_error(exc: redis.RedisError, key: str, operation: str) -> StorageAppError:
    logger.warning(
        "storage.error",
        extra={
            "backend": "redis",
            "bucket": hash_bucket_name(key),
            "operation": operation,
            "error_type": type(exc).__name__,
        },
    )
    return StorageAppError(
        code="storage_unavailable",
        message=f"Redis {operation} failed: {exc}",
        details={"backend": "redis", "bucket": hash_bucket_name(key)},
    )


class RedisBucket(AbstractBucket):
    """Handle on a bucket whose authoritative state lives in Redis.

    A handle may be shared between threads: ``add`` is serialized per handle
    so the cached projection always comes from a single round trip.
    """

    def __init__(
        self,
        storage: RedisStorage,
        key: str,
        *,
        capacity: int,
        rate: float,
        remaining: int,
        reset: float,
    ) -> None:
        self._storage = storage
        self._key = key
        self._capacity = capacity
        self._rate = rate
        self._remaining = remaining
        self._reset = reset
        self._lock = threading.Lock()

    @property
    def key(self) -> str:
        return self._key

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def remaining(self) -> int:
        return self._remaining

    @property
    def reset(self) -> float:
        return self._reset

    def _project(self, counter: int) -> int:
        # Concurrent writers may push the counter past capacity.
        return self._capacity - min(counter, self._capacity)

    def _refresh_stale_reset(self, conn: redis.Redis) -> None:
        """Re-read the key TTL when the cached reset is already in the past.

        A key found without any expiry gets one, otherwise the bucket would
        stay full forever.
        """
        now = self._storage.clock()
        if self._reset > now:
            return

        ttl_ms = conn.pttl(self._key)
        if ttl_ms == -1:
            ttl_ms = _to_milliseconds(self._rate)
            conn.pexpire(self._key, ttl_ms)
            logger.warning(
                "bucket.ttl_repaired",
                extra={"backend": "redis", "bucket": hash_bucket_name(self._key)},
            )
        self._reset = now + max(ttl_ms, 0) / 1000.0

    def add(self, amount: int) -> BucketState:
        validate_amount(amount)

        with self._lock:
            try:
                with self._storage.connection() as conn:
                    counter = _parse_counter(conn.get(self._key), self._key)
                    self._remaining = self._project(counter)

                    if amount > self._remaining:
                        self._refresh_stale_reset(conn)
                        state = self.state()
                        logger.info(
                            "bucket.full",
                            extra={
                                "backend": "redis",
                                "bucket": hash_bucket_name(self._key),
                                "requested": amount,
                                "remaining": state.remaining,
                            },
                        )
                        raise BucketFullError(
                            details={
                                "backend": "redis",
                                "requested": amount,
                                "remaining": state.remaining,
                                "retry_after": max(0.0, state.reset - self._storage.clock()),
                            },
                            state=state,
                        )

                    counter, ttl_ms = self._storage.incr_script(
                        keys=[self._key],
                        args=[amount, _to_milliseconds(self._rate)],
                        client=conn,
                    )
            except redis.RedisError as exc:
                raise _storage_error(exc, self._key, "add") from exc

            self._reset = self._storage.clock() + int(ttl_ms) / 1000.0
            self._remaining = self._project(int(counter))
            return self.state()


class RedisStorage(AbstractStorage):
    """Bucket factory projecting buckets onto Redis counters with a TTL.

    Capacity and rate are never stored remotely; every ``create`` supplies
    them again.
    """

    def __init__(
        self,
        pool: redis.ConnectionPool,
        *,
        key_prefix: str = "",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._pool = pool
        self._key_prefix = key_prefix
        self.clock = clock
        # Registering only computes the SHA; the script is loaded lazily.
        self.incr_script = redis.Redis(connection_pool=pool).register_script(
            LUA_INCRBY_AND_PEXPIRE
        )

    @classmethod
    def from_url(
        cls,
        url: str,
        *,
        max_connections: int = 5,
        socket_timeout: float | None = None,
        key_prefix: str = "",
    ) -> RedisStorage:
        """Build a pooled storage for ``url`` and PING it.

        Pooled connections only surface connection errors on first use, so
        the PING makes an invalid address fail here instead of on first add.

        Raises:
            StorageAppError: If Redis cannot be reached.
        """
        pool = redis.ConnectionPool.from_url(
            url,
            max_connections=max_connections,
            socket_timeout=socket_timeout,
        )
        storage = cls(pool, key_prefix=key_prefix)
        storage.ping()
        # Never log the URL itself, it may carry credentials.
        conn_kwargs = pool.connection_kwargs
        logger.info(
            "storage.connected",
            extra={
                "backend": "redis",
                "host": conn_kwargs.get("host", conn_kwargs.get("path")),
                "port": conn_kwargs.get("port"),
                "db": conn_kwargs.get("db", 0),
                "max_connections": max_connections,
            },
        )
        return storage

    @contextmanager
    def connection(self) -> Iterator[redis.Redis]:
        """Borrow one pooled connection for a short sequence of commands."""
        client = redis.Redis(connection_pool=self._pool, single_connection_client=True)
        try:
            yield client
        finally:
            client.close()

    def key_for(self, name: str) -> str:
        if self._key_prefix:
            return f"{self._key_prefix}:{name}"
        return name

    def ping(self) -> None:
        try:
            with self.connection() as conn:
                conn.ping()
        except redis.RedisError as exc:
            raise _storage_error(exc, "", "ping") from exc

    def create(self, name: str, capacity: int, rate: float) -> RedisBucket:
        validate_bucket_args(name, capacity, rate)
        key = self.key_for(name)

        try:
            with self.connection() as conn:
                raw = conn.get(key)
                if raw is None:
                    remaining = capacity
                    reset = self.clock() + rate
                else:
                    counter = _parse_counter(raw, key)
                    ttl_ms = conn.pttl(key)
                    remaining = capacity - min(counter, capacity)
                    reset = self.clock() + max(ttl_ms, 0) / 1000.0
        except redis.RedisError as exc:
            raise _storage_error(exc, key, "create") from exc

        logger.debug(
            "bucket.created",
            extra={
                "backend": "redis",
                "bucket": hash_bucket_name(key),
                "capacity": capacity,
                "existing": raw is not None,
            },
        )
        return RedisBucket(
            self,
            key,
            capacity=capacity,
            rate=rate,
            remaining=remaining,
            reset=reset,
        )
