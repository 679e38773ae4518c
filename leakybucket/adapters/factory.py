"""Factory for creating bucket storage instances."""

from leakybucket.adapters.base import AbstractStorage
from leakybucket.adapters.in_memory import InMemoryStorage
from leakybucket.adapters.redis_store import RedisStorage
from leakybucket.core.config import StorageSettings, get_settings
from leakybucket.core.errors import ValidationAppError


def create_storage(storage_settings: StorageSettings | None = None) -> AbstractStorage:
    """Instantiate the storage backend named in configuration.

    Reads configuration from leakybucket.core.config.get_settings() (Pydantic
    Settings) unless explicit settings are passed.

    Returns:
        AbstractStorage: Configured storage instance.

    Raises:
        ValidationAppError: If the backend is unknown or misconfigured.
        StorageAppError: If the redis backend cannot be reached.
    """
    cfg = storage_settings or get_settings().storage
    backend = cfg.backend.lower()

    if backend == "memory":
        return InMemoryStorage(idle_retention_seconds=cfg.idle_retention_seconds)

    if backend == "redis":
        if not cfg.redis_url:
            raise ValidationAppError(
                code="storage_missing_redis_url",
                message="Redis backend requires BUCKET_REDIS_URL environment variable",
            )
        return RedisStorage.from_url(
            cfg.redis_url,
            max_connections=cfg.redis_max_connections,
            socket_timeout=cfg.redis_socket_timeout,
            key_prefix=cfg.key_prefix,
        )

    raise ValidationAppError(
        code="storage_unknown_backend",
        message=(
            f"Unknown storage backend: '{backend}'. Supported backends: memory, redis"
        ),
    )
