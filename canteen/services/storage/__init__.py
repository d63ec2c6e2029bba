"""
Key-Value Store Factory

Provides a single entry point for obtaining the durable key-value store.
The factory lets the rest of the application stay agnostic about which
backend is in use.

Usage:
    from canteen.services.storage import get_key_value_store

    store = get_key_value_store()
    await store.set("canteen_menu_catalog", "{}")

Backend selection (STORAGE_BACKEND, or ENV_MODE when unset):
    - memory → MockKeyValueStore (nothing persisted)
    - file   → FileKeyValueStore (default in development)
    - redis  → RedisKeyValueStore (default in staging/production)
    - sql    → SqlKeyValueStore

Version: 1.0.0
"""

import logging
from functools import lru_cache

from canteen.core.config import StorageBackend, get_settings
from canteen.services.storage.base import BaseKeyValueStore, StorageResult
from canteen.services.storage.mock import MockKeyValueStore
from canteen.services.storage.file import FileKeyValueStore

logger = logging.getLogger(__name__)


def build_key_value_store(backend: StorageBackend) -> BaseKeyValueStore:
    """
    Instantiate a backend by name.

    Redis and SQL are imported lazily so a development setup does not need
    their drivers importable at startup.
    """
    settings = get_settings()

    if backend == StorageBackend.MEMORY:
        return MockKeyValueStore(failure_rate=settings.mock_failure_rate)
    if backend == StorageBackend.FILE:
        return FileKeyValueStore()
    if backend == StorageBackend.REDIS:
        from canteen.services.storage.redis import RedisKeyValueStore
        return RedisKeyValueStore()
    if backend == StorageBackend.SQL:
        from canteen.services.storage.sql import SqlKeyValueStore
        return SqlKeyValueStore()

    raise ValueError(f"Unknown storage backend: {backend!r}")


@lru_cache()
def get_key_value_store() -> BaseKeyValueStore:
    """
    Get the configured key-value store instance.

    The instance is cached so every caller shares one connection pool.

    Returns:
        BaseKeyValueStore: Configured backend
    """
    settings = get_settings()
    backend = settings.resolved_storage_backend

    logger.info(
        f"Key-Value Store: using {backend.value} backend "
        f"({settings.env_mode.value} mode)"
    )
    return build_key_value_store(backend)


def reset_key_value_store() -> None:
    """
    Clear the cached store instance.

    Useful for testing or when configuration changes at runtime.
    """
    get_key_value_store.cache_clear()
    logger.debug("Key-value store cache cleared")


__all__ = [
    "get_key_value_store",
    "reset_key_value_store",
    "build_key_value_store",
    "BaseKeyValueStore",
    "StorageResult",
    "MockKeyValueStore",
    "FileKeyValueStore",
]
