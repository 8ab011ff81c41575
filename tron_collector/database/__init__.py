"""Block storage and persistence routing."""

from tron_collector.database.backends import (
    REDIS_KEYS,
    MemoryBackend,
    RedisBackend,
    StorageBackend,
    StorageError,
)
from tron_collector.database.router import PersistenceRouter, StorageMode

__all__ = [
    "REDIS_KEYS",
    "MemoryBackend",
    "RedisBackend",
    "StorageBackend",
    "StorageError",
    "PersistenceRouter",
    "StorageMode",
]
