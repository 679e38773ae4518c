"""Storage adapters - interchangeable bucket backends (memory, redis)."""

from leakybucket.adapters.base import AbstractBucket, AbstractStorage, BucketState
from leakybucket.adapters.factory import create_storage
from leakybucket.adapters.in_memory import InMemoryBucket, InMemoryStorage
from leakybucket.adapters.redis_store import RedisBucket, RedisStorage

__all__ = [
    "AbstractBucket",
    "AbstractStorage",
    "BucketState",
    "InMemoryBucket",
    "InMemoryStorage",
    "RedisBucket",
    "RedisStorage",
    "create_storage",
]
