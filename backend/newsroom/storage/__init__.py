import logging

from newsroom.storage.base import KeyValueStore, WriteBatch
from newsroom.storage.memory import MemoryKeyValueStore
from newsroom.storage.repository import EntityRepository, generate_id, now_ms

logger = logging.getLogger(__name__)


def create_store(settings) -> KeyValueStore:
    """Instantiate the backend named by STORAGE_BACKEND."""
    backend = settings.STORAGE_BACKEND
    if backend == "memory":
        store = MemoryKeyValueStore()
    elif backend == "redis":
        from newsroom.storage.redis_store import RedisKeyValueStore

        store = RedisKeyValueStore(settings.REDIS_URL)
    elif backend == "sql":
        from newsroom.storage.sql import SqlKeyValueStore

        store = SqlKeyValueStore(settings.DATABASE_URL)
    else:
        raise ValueError(f"Unknown storage backend: {backend}")

    logger.info(f"Using {backend} storage backend")
    return store


__all__ = [
    "KeyValueStore",
    "WriteBatch",
    "MemoryKeyValueStore",
    "EntityRepository",
    "create_store",
    "generate_id",
    "now_ms",
]
