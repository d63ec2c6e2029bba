"""
Redis Key-Value Store

Production backend using redis-py's asyncio client. Several API workers
can share one catalog through the same Redis instance.

Requirements:
    - REDIS_URL must point to a reachable Redis server

Version: 1.0.0
"""

import logging
import time
from typing import Optional

from redis import asyncio as aioredis
from redis.exceptions import RedisError

from canteen.core.config import get_settings
from canteen.core.exceptions import PersistenceError
from canteen.services.storage.base import BaseKeyValueStore, StorageResult

logger = logging.getLogger(__name__)


class RedisKeyValueStore(BaseKeyValueStore):
    """
    Redis-backed key-value store.

    Every key is prefixed with REDIS_KEY_PREFIX so the catalog can share a
    database with other applications.

    Example:
        >>> store = RedisKeyValueStore()
        >>> await store.set("canteen_menu_catalog", "{}")
    """

    def __init__(self, client: Optional[aioredis.Redis] = None, key_prefix: Optional[str] = None):
        settings = get_settings()
        self.key_prefix = settings.redis_key_prefix if key_prefix is None else key_prefix
        self._client = client or aioredis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_timeout=settings.redis_socket_timeout,
        )

        logger.info(f"RedisKeyValueStore initialized (prefix={self.key_prefix!r})")

    @property
    def provider_name(self) -> str:
        """Return the provider name."""
        return "redis"

    def _full_key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    async def get(self, key: str) -> Optional[str]:
        try:
            value = await self._client.get(self._full_key(key))
        except RedisError as e:
            logger.error(f"Redis read of {key!r} failed: {e}")
            raise PersistenceError(str(e), key=key, operation="get") from e

        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    async def set(self, key: str, value: str) -> StorageResult:
        start = time.perf_counter()
        try:
            await self._client.set(self._full_key(key), value)
        except RedisError as e:
            logger.error(f"Redis write of {key!r} failed: {e}")
            return StorageResult(
                success=False,
                key=key,
                error_message=str(e),
                response_time_ms=(time.perf_counter() - start) * 1000,
            )

        return StorageResult(
            success=True,
            key=key,
            response_time_ms=(time.perf_counter() - start) * 1000,
        )

    async def remove(self, key: str) -> StorageResult:
        start = time.perf_counter()
        try:
            await self._client.delete(self._full_key(key))
        except RedisError as e:
            logger.error(f"Redis delete of {key!r} failed: {e}")
            return StorageResult(success=False, key=key, error_message=str(e))

        return StorageResult(
            success=True,
            key=key,
            response_time_ms=(time.perf_counter() - start) * 1000,
        )

    async def health_check(self) -> bool:
        try:
            return bool(await self._client.ping())
        except RedisError as e:
            logger.error(f"Redis health check failed: {e}")
            return False

    async def close(self) -> None:
        await self._client.aclose()
