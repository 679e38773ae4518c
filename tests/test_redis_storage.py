"""Tests for the Redis-backed bucket storage (against fakeredis)."""

import logging
import threading
import time

import pytest
import redis

from leakybucket.adapters.base import BucketState
from leakybucket.adapters.redis_store import RedisStorage
from leakybucket.core.errors import BucketFullError, StorageAppError


def test_create_fresh_bucket_does_not_touch_redis(redis_pool, redis_client, clock) -> None:
    storage = RedisStorage(redis_pool, clock=clock)

    bucket = storage.create("k", 5, 60)

    assert bucket.state() == BucketState(capacity=5, remaining=5, reset=1060.0)
    assert redis_client.exists("k") == 0


def test_fixed_window_scenario(redis_pool, redis_client, clock) -> None:
    storage = RedisStorage(redis_pool, clock=clock)
    bucket = storage.create("k", 10, 1)

    assert bucket.add(4) == BucketState(capacity=10, remaining=6, reset=1001.0)

    with pytest.raises(BucketFullError) as exc_info:
        bucket.add(7)
    assert exc_info.value.state == BucketState(capacity=10, remaining=6, reset=1001.0)
    assert int(redis_client.get("k")) == 4


def test_first_add_sets_expiry_in_milliseconds(redis_pool, redis_client, clock) -> None:
    storage = RedisStorage(redis_pool, clock=clock)

    storage.create("k", 3, 2.5).add(1)

    ttl = redis_client.pttl("k")
    assert 0 < ttl <= 2500


def test_later_adds_do_not_extend_window(redis_pool, redis_client, clock) -> None:
    storage = RedisStorage(redis_pool, clock=clock)
    bucket = storage.create("k", 10, 60)
    bucket.add(1)
    redis_client.pexpire("k", 5000)

    bucket.add(1)

    assert redis_client.pttl("k") <= 5000


def test_drain_then_reject(redis_pool, clock) -> None:
    bucket = RedisStorage(redis_pool, clock=clock).create("k", 3, 60)

    assert bucket.add(3).remaining == 0

    with pytest.raises(BucketFullError) as exc_info:
        bucket.add(1)
    assert exc_info.value.state.remaining == 0
    assert exc_info.value.details["backend"] == "redis"


def test_window_rolls_over_when_key_expires(redis_pool) -> None:
    storage = RedisStorage(redis_pool)
    bucket = storage.create("k", 2, 0.05)
    bucket.add(2)
    with pytest.raises(BucketFullError):
        bucket.add(1)

    time.sleep(0.15)

    assert bucket.add(1).remaining == 1


def test_create_reconstructs_existing_state(redis_pool, redis_client, clock) -> None:
    redis_client.set("k", 3, px=4000)
    storage = RedisStorage(redis_pool, clock=clock)

    bucket = storage.create("k", 10, 60)

    assert bucket.remaining == 7
    assert 1000.0 < bucket.reset <= 1004.0


def test_handles_share_remote_state(redis_pool, clock) -> None:
    storage = RedisStorage(redis_pool, clock=clock)
    first = storage.create("k", 10, 60)
    second = storage.create("k", 10, 60)

    first.add(4)

    assert second.add(0).remaining == 6


def test_counter_overflow_is_clamped(redis_pool, redis_client, clock) -> None:
    redis_client.set("k", 50, px=60000)
    storage = RedisStorage(redis_pool, clock=clock)

    bucket = storage.create("k", 10, 60)

    assert bucket.remaining == 0
    with pytest.raises(BucketFullError) as exc_info:
        bucket.add(1)
    assert exc_info.value.state.remaining == 0
    assert bucket.add(0).remaining == 0


def test_malformed_counter_is_storage_error(redis_pool, redis_client, clock) -> None:
    storage = RedisStorage(redis_pool, clock=clock)
    bucket = storage.create("k", 10, 60)
    redis_client.set("k", "not-a-number")

    with pytest.raises(StorageAppError) as exc_info:
        bucket.add(1)
    assert exc_info.value.code == "storage_malformed_value"

    with pytest.raises(StorageAppError):
        storage.create("k", 10, 60)


def test_orphaned_key_without_ttl_gets_expiry_on_add(redis_pool, redis_client, clock) -> None:
    redis_client.set("k", 2)
    bucket = RedisStorage(redis_pool, clock=clock).create("k", 10, 60)

    bucket.add(1)

    assert redis_client.pttl("k") > 0
    assert int(redis_client.get("k")) == 3


def test_full_orphaned_key_gets_expiry_on_rejection(redis_pool, redis_client, clock) -> None:
    redis_client.set("k", 10)
    bucket = RedisStorage(redis_pool, clock=clock).create("k", 10, 60)

    with pytest.raises(BucketFullError) as exc_info:
        bucket.add(1)

    assert redis_client.pttl("k") > 0
    assert exc_info.value.state.reset == 1060.0


def test_rejection_refreshes_stale_reset_when_key_is_gone(redis_pool, redis_client, clock) -> None:
    bucket = RedisStorage(redis_pool, clock=clock).create("k", 1, 10)
    bucket.add(1)
    redis_client.delete("k")
    clock.advance(20)

    with pytest.raises(BucketFullError) as exc_info:
        bucket.add(2)

    assert exc_info.value.state == BucketState(capacity=1, remaining=1, reset=1020.0)


def test_rejection_keeps_future_reset(redis_pool, redis_client, clock) -> None:
    bucket = RedisStorage(redis_pool, clock=clock).create("k", 1, 10)
    bucket.add(1)
    redis_client.pexpire("k", 3000)

    with pytest.raises(BucketFullError) as exc_info:
        bucket.add(1)

    assert exc_info.value.state.reset == 1010.0


def test_key_prefix_namespaces_keys(redis_pool, redis_client, clock) -> None:
    storage = RedisStorage(redis_pool, key_prefix="rl", clock=clock)

    bucket = storage.create("k", 5, 60)
    bucket.add(2)

    assert bucket.key == "rl:k"
    assert int(redis_client.get("rl:k")) == 2
    assert redis_client.exists("k") == 0


def test_connections_are_released(redis_pool, clock) -> None:
    bucket = RedisStorage(redis_pool, clock=clock).create("k", 1, 60)
    bucket.add(1)
    with pytest.raises(BucketFullError):
        bucket.add(1)

    assert len(redis_pool._in_use_connections) == 0


def test_connections_are_released_after_storage_error(redis_pool, redis_client, clock) -> None:
    storage = RedisStorage(redis_pool, clock=clock)
    bucket = storage.create("k", 5, 60)
    redis_client.set("k", "garbage")

    with pytest.raises(StorageAppError):
        bucket.add(1)
    with pytest.raises(StorageAppError):
        storage.create("k", 5, 60)

    assert len(redis_pool._in_use_connections) == 0


def test_shared_handle_keeps_cached_state_consistent(redis_pool, redis_client) -> None:
    bucket = RedisStorage(redis_pool).create("shared", 1_000, 60)
    observed: list[int] = []
    lock = threading.Lock()

    def _worker() -> None:
        for _ in range(25):
            state = bucket.add(1)
            with lock:
                observed.append(state.remaining)

    threads = [threading.Thread(target=_worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    # Every add saw its own increment, and the cache ends on the last one.
    assert sorted(observed) == list(range(900, 1_000))
    assert bucket.remaining == 1_000 - int(redis_client.get("shared")) == 900


def test_from_url_does_not_log_credentials(monkeypatch, caplog) -> None:
    monkeypatch.setattr(RedisStorage, "ping", lambda self: None)

    with caplog.at_level(logging.DEBUG, logger="leakybucket"):
        RedisStorage.from_url("redis://:hunter2@cache:6379/3")

    connected = [r for r in caplog.records if r.getMessage() == "storage.connected"]
    assert connected
    assert connected[0].host == "cache"
    assert connected[0].db == 3
    for record in caplog.records:
        assert "hunter2" not in repr(record.__dict__)


def test_two_storages_serialize_at_counter_level(redis_pool, redis_client) -> None:
    process_a = RedisStorage(redis_pool)
    process_b = RedisStorage(redis_pool)
    accepted: list[int] = []
    lock = threading.Lock()

    def _worker(storage: RedisStorage) -> None:
        bucket = storage.create("shared", 10_000, 60)
        for _ in range(25):
            bucket.add(2)
            with lock:
                accepted.append(2)

    threads = [
        threading.Thread(target=_worker, args=(storage,))
        for storage in (process_a, process_b, process_a, process_b)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert int(redis_client.get("shared")) == sum(accepted) == 200


def test_unreachable_redis_raises_storage_error(clock) -> None:
    pool = redis.ConnectionPool(host="127.0.0.1", port=1, socket_connect_timeout=0.5)
    storage = RedisStorage(pool, clock=clock)

    with pytest.raises(StorageAppError) as exc_info:
        storage.create("k", 1, 60)
    assert exc_info.value.code == "storage_unavailable"
    assert isinstance(exc_info.value.__cause__, redis.ConnectionError)


def test_from_url_fails_fast_on_unreachable_redis() -> None:
    with pytest.raises(StorageAppError):
        RedisStorage.from_url("redis://127.0.0.1:1/0", socket_timeout=0.5)


@pytest.mark.parametrize(
    "args",
    [
        ("", 1, 60),
        ("k", -1, 60),
        ("k", 1, -5),
    ],
)
def test_invalid_create_args(redis_pool, args: tuple) -> None:
    with pytest.raises(ValueError):
        RedisStorage(redis_pool).create(*args)


def test_invalid_add_args(redis_pool) -> None:
    bucket = RedisStorage(redis_pool).create("k", 1, 60)

    with pytest.raises(ValueError):
        bucket.add(-1)
