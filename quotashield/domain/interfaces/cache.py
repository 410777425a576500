"""Interface for the persistent expiring key-value store.

Defines the contract for storing, retrieving, and sweeping cached call
outcomes. Expiry is checked on read; ``sweep_expired`` is the bulk path.
"""

import abc
from typing import Any, Optional

from quotashield.domain.models.cache import CacheStats
from quotashield.domain.models.common import CacheKey


class CacheStore(abc.ABC):
    """Abstract Base Class for TTL cache operations."""

    @abc.abstractmethod
    async def get(self, key: CacheKey) -> Optional[Any]:
        """Retrieves an item from the cache asynchronously.

        An expired entry is removed as a side effect of the read.

        Args:
            key: The cache key to retrieve.

        Returns:
            The cached item if found and not expired, otherwise None.
        """
        pass

    @abc.abstractmethod
    async def set(self, key: CacheKey, value: Any, ttl_ms: float) -> None:
        """Stores an item, overwriting any previous entry for the key.

        Args:
            key: The cache key to store the item under.
            value: The item to store.
            ttl_ms: Time-to-live in milliseconds (must be positive).

        Raises:
            StoreError: If the backing medium rejects the write.
        """
        pass

    @abc.abstractmethod
    async def delete(self, key: CacheKey) -> None:
        """Deletes an item from the cache if present."""
        pass

    @abc.abstractmethod
    async def clear(self, prefix: Optional[str] = None) -> int:
        """Clears all items, or only the items of one key prefix.

        Args:
            prefix: When given, only keys built with this prefix are removed.

        Returns:
            The number of removed entries.
        """
        pass

    @abc.abstractmethod
    async def stats(self) -> CacheStats:
        """Returns count, size and age information about stored entries."""
        pass

    @abc.abstractmethod
    async def sweep_expired(self) -> int:
        """Removes every expired entry and returns how many were removed."""
        pass
