"""
SQL Key-Value Store

Stores each slot as a row of the kv_entries table through the SQLAlchemy
async engine. The default URL is a local SQLite file (aiosqlite); any async
driver SQLAlchemy supports works, e.g. postgresql+psycopg.

Tables are created on first use.

Version: 1.0.0
"""

import logging
import time
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from canteen.core.config import get_settings
from canteen.core.exceptions import PersistenceError
from canteen.database import create_engine, create_session_maker, init_db
from canteen.models import KeyValueEntry
from canteen.services.storage.base import BaseKeyValueStore, StorageResult

logger = logging.getLogger(__name__)


class SqlKeyValueStore(BaseKeyValueStore):
    """
    SQL-backed key-value store.

    Example:
        >>> store = SqlKeyValueStore("sqlite+aiosqlite:///data/canteen.db")
        >>> await store.set("canteen_menu_catalog", "{}")
    """

    def __init__(self, database_url: Optional[str] = None, engine: Optional[AsyncEngine] = None):
        settings = get_settings()
        self.database_url = database_url or settings.database_url
        self._engine = engine or create_engine(self.database_url, echo=settings.database_echo)
        self._session_maker = create_session_maker(self._engine)
        self._initialized = False

        logger.info(f"SqlKeyValueStore initialized ({self._engine.url.get_backend_name()})")

    @property
    def provider_name(self) -> str:
        """Return the provider name."""
        return "sql"

    async def init(self) -> None:
        """Create the kv_entries table if it does not exist."""
        if self._initialized:
            return
        await init_db(self._engine)
        self._initialized = True
        logger.debug("kv_entries table ready")

    async def get(self, key: str) -> Optional[str]:
        try:
            await self.init()
            async with self._session_maker() as session:
                entry = await session.get(KeyValueEntry, key)
        except SQLAlchemyError as e:
            logger.error(f"SQL read of {key!r} failed: {e}")
            raise PersistenceError(str(e), key=key, operation="get") from e

        return entry.value if entry else None

    async def set(self, key: str, value: str) -> StorageResult:
        start = time.perf_counter()
        try:
            await self.init()
            async with self._session_maker() as session:
                await session.merge(KeyValueEntry(key=key, value=value))
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"SQL write of {key!r} failed: {e}")
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
            await self.init()
            async with self._session_maker() as session:
                await session.execute(delete(KeyValueEntry).where(KeyValueEntry.key == key))
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"SQL delete of {key!r} failed: {e}")
            return StorageResult(success=False, key=key, error_message=str(e))

        return StorageResult(
            success=True,
            key=key,
            response_time_ms=(time.perf_counter() - start) * 1000,
        )

    async def health_check(self) -> bool:
        try:
            await self.init()
            async with self._session_maker() as session:
                await session.execute(select(1))
        except SQLAlchemyError as e:
            logger.error(f"Database health check failed: {e}")
            return False
        return True

    async def close(self) -> None:
        await self._engine.dispose()
