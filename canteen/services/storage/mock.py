"""
In-Memory Key-Value Store

Dict-backed implementation of the storage interface. Used by tests and by
STORAGE_BACKEND=memory to:
    - Run the API without touching the filesystem
    - Exercise failure paths deterministically (fail_reads / fail_writes)
    - Simulate a flaky backend (failure_rate, latency)

Nothing survives the process.

Version: 1.0.0
"""

import asyncio
import random
import logging
import time
from typing import Optional

from canteen.core.exceptions import PersistenceError
from canteen.services.storage.base import BaseKeyValueStore, StorageResult

logger = logging.getLogger(__name__)


class MockKeyValueStore(BaseKeyValueStore):
    """
    Mock implementation of the key-value store.

    Attributes:
        failure_rate: Probability of a simulated failure (0.0-1.0)
        min_latency: Minimum simulated response time in seconds
        max_latency: Maximum simulated response time in seconds
        fail_reads: Every get() raises PersistenceError while set
        fail_writes: Every set()/remove() fails while set

    Example:
        >>> store = MockKeyValueStore()
        >>> store.fail_writes = True
        >>> (await store.set("k", "v")).success
        False
    """

    def __init__(
        self,
        failure_rate: float = 0.0,
        min_latency: float = 0.0,
        max_latency: float = 0.0,
        initial: Optional[dict[str, str]] = None,
    ):
        self.failure_rate = failure_rate
        self.min_latency = min_latency
        self.max_latency = max_latency
        self.fail_reads = False
        self.fail_writes = False
        self._data: dict[str, str] = dict(initial or {})
        self.write_count = 0

        logger.info(
            f"MockKeyValueStore initialized "
            f"(failure_rate={failure_rate:.0%}, "
            f"latency={min_latency}-{max_latency}s)"
        )

    @property
    def provider_name(self) -> str:
        """Return the provider name."""
        return "memory"

    @property
    def data(self) -> dict[str, str]:
        """Copy of the raw stored text, keyed by slot."""
        return dict(self._data)

    async def _simulate_latency(self) -> float:
        """Sleep for a random latency and return it in milliseconds."""
        if self.max_latency <= 0:
            return 0.0
        latency = random.uniform(self.min_latency, self.max_latency)
        await asyncio.sleep(latency)
        return latency * 1000

    def _should_fail(self) -> bool:
        return self.failure_rate > 0 and random.random() < self.failure_rate

    async def get(self, key: str) -> Optional[str]:
        await self._simulate_latency()

        if self.fail_reads or self._should_fail():
            logger.debug(f"Mock: read of {key!r} failed")
            raise PersistenceError(f"Simulated read failure for {key!r}", key=key, operation="get")

        return self._data.get(key)

    async def set(self, key: str, value: str) -> StorageResult:
        latency_ms = await self._simulate_latency()

        if self.fail_writes or self._should_fail():
            logger.debug(f"Mock: write of {key!r} failed")
            return StorageResult(
                success=False,
                key=key,
                error_message="Simulated write failure",
                response_time_ms=latency_ms,
            )

        self._data[key] = value
        self.write_count += 1
        logger.debug(f"Mock: stored {len(value)} chars under {key!r}")
        return StorageResult(success=True, key=key, response_time_ms=latency_ms)

    async def remove(self, key: str) -> StorageResult:
        start = time.perf_counter()
        await self._simulate_latency()

        if self.fail_writes or self._should_fail():
            return StorageResult(
                success=False,
                key=key,
                error_message="Simulated remove failure",
                response_time_ms=(time.perf_counter() - start) * 1000,
            )

        self._data.pop(key, None)
        return StorageResult(
            success=True,
            key=key,
            response_time_ms=(time.perf_counter() - start) * 1000,
        )

    async def health_check(self) -> bool:
        """Mock health check is healthy unless reads are switched off."""
        return not self.fail_reads
