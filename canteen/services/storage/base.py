"""
Key-Value Storage Abstract Base Class

Defines the interface contract for the durable key-value store that holds
the menu catalog. Every backend (mock, file, Redis, SQL) implements these
methods so the MenuStore works identically regardless of which is active.

Contract:
    - get(key) returns the stored text or None when the slot is empty,
      and raises PersistenceError when the backend cannot be read
    - set(key, value) and remove(key) report failure through StorageResult
      instead of raising, the caller decides what a failure means
    - remove() of a missing key succeeds

Version: 1.0.0
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass
class StorageResult:
    """
    Standardized result of a write or remove.

    Attributes:
        success: Whether the operation was applied
        key: Storage slot involved
        error_message: Error description if the operation failed
        response_time_ms: Time taken by the backend
    """
    success: bool
    key: str
    error_message: Optional[str] = None
    response_time_ms: float = 0.0

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "success": self.success,
            "key": self.key,
            "error_message": self.error_message,
            "response_time_ms": self.response_time_ms,
        }


class BaseKeyValueStore(ABC):
    """
    Abstract base class for durable key-value stores.

    Example:
        >>> store = get_key_value_store()   # Returns the configured backend
        >>> result = await store.set("menu", "{}")
        >>> if result.success:
        ...     print(await store.get("menu"))
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """
        Return the name of the backend.

        Returns:
            str: Backend name (e.g., "memory", "file", "redis", "sql")
        """
        pass

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """
        Read the text stored under a key.

        Args:
            key: Storage slot

        Returns:
            str: Stored text, or None when nothing is stored

        Raises:
            PersistenceError: If the backend could not be read
        """
        pass

    @abstractmethod
    async def set(self, key: str, value: str) -> StorageResult:
        """
        Store text under a key, replacing any previous value.

        Args:
            key: Storage slot
            value: Text to store

        Returns:
            StorageResult: success is False if nothing was written
        """
        pass

    @abstractmethod
    async def remove(self, key: str) -> StorageResult:
        """
        Delete a key. Removing a missing key is a success.

        Args:
            key: Storage slot

        Returns:
            StorageResult: Standardized result
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """
        Verify the backend is reachable.

        Returns:
            bool: True if reads and writes can be served
        """
        pass

    async def close(self) -> None:
        """Release connections held by the backend."""
        return None
