"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
Environment defaults are set before any import that might load settings.
"""

import os
from typing import Iterator

os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("BUCKET_BACKEND", "memory")

import fakeredis  # noqa: E402
import pytest  # noqa: E402
import redis  # noqa: E402


class FakeClock:
    """Deterministic clock used to drive window rollover."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.current = start

    def __call__(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def redis_pool() -> Iterator[redis.ConnectionPool]:
    """Connection pool whose connections talk to an isolated fake server."""
    server = fakeredis.FakeServer()
    pool = redis.ConnectionPool(connection_class=fakeredis.FakeRedisConnection, server=server)
    yield pool
    pool.disconnect()


@pytest.fixture
def redis_client(redis_pool: redis.ConnectionPool) -> redis.Redis:
    """Direct client on the same fake server, for inspecting raw keys."""
    return redis.Redis(connection_pool=redis_pool)
