"""Fixed-window quota buckets with in-memory and Redis storage backends."""

from leakybucket.adapters import (
    AbstractBucket,
    AbstractStorage,
    BucketState,
    InMemoryBucket,
    InMemoryStorage,
    RedisBucket,
    RedisStorage,
    create_storage,
)
from leakybucket.core.errors import (
    AppError,
    BucketFullError,
    StorageAppError,
    ValidationAppError,
)

__all__ = [
    "AbstractBucket",
    "AbstractStorage",
    "AppError",
    "BucketFullError",
    "BucketState",
    "InMemoryBucket",
    "InMemoryStorage",
    "RedisBucket",
    "RedisStorage",
    "StorageAppError",
    "ValidationAppError",
    "create_storage",
]
