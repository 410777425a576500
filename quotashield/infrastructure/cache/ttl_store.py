"""Persistent TTL store backed by ``diskcache``.

Each entry is a ``CacheEntry`` with its own creation and expiry timestamps.
diskcache's built-in expiry is not used: an entry only
disappears when a read finds it stale, when ``sweep_expired`` runs, or when
it is deleted/cleared explicitly.
"""

import logging
import pickle
import sqlite3
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterator, List, Optional, Tuple, Union

import diskcache as dc

from quotashield.domain.errors import StoreError
from quotashield.domain.interfaces.cache import CacheStore
from quotashield.domain.models.cache import CacheEntry, CacheStats
from quotashield.domain.models.common import CacheKey

logger = logging.getLogger(__name__)

DEFAULT_CACHE_DIR = Path.home() / ".quotashield" / "cache"
DEFAULT_TTL_MS = 60 * 60 * 1000  # 1 hour
# Seconds diskcache waits on the sqlite lock before raising Timeout
DEFAULT_DISK_TIMEOUT_S = 1

# Errors the backing medium may raise for a rejected read/write
_BACKEND_ERRORS = (dc.Timeout, sqlite3.Error, OSError, pickle.PicklingError)


def _epoch_ms() -> float:
    return time.time() * 1000


class DiskTTLStore(CacheStore):
    """Durable key-value map with per-entry expiration."""

    def __init__(
        self,
        directory: Union[str, Path] = DEFAULT_CACHE_DIR,
        clock: Callable[[], float] = _epoch_ms,
        disk_timeout_s: float = DEFAULT_DISK_TIMEOUT_S,
        size_limit: Optional[int] = None,
    ):
        """Opens (or creates) the store.

        Args:
            directory: Directory holding the diskcache database.
            clock: Returns the current time in epoch milliseconds.
            disk_timeout_s: sqlite lock timeout used by diskcache.
            size_limit: Optional byte limit passed to diskcache. When the
                limit is hit diskcache culls entries on write.
        """
        self.directory = Path(directory)
        self._clock = clock
        settings = {}
        if size_limit is not None:
            settings["size_limit"] = size_limit
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            # eviction_policy="none" keeps diskcache from dropping entries on its own
            self._cache = dc.Cache(
                str(self.directory),
                timeout=disk_timeout_s,
                eviction_policy="none" if size_limit is None else "least-recently-stored",
                **settings,
            )
        except _BACKEND_ERRORS as e:
            logger.error(f"Failed to open cache at {self.directory}: {e}")
            raise StoreError(f"Cannot open cache directory {self.directory}: {e}") from e
        logger.info(f"DiskTTLStore initialized at: {self._cache.directory}")

    # --- CacheStore Interface Implementation ---

    async def get(self, key: CacheKey) -> Optional[Any]:
        now = self._clock()
        try:
            entry = self._cache.get(key, default=None, retry=True)
        except _BACKEND_ERRORS as e:
            raise StoreError(f"Failed to read cache key '{key}': {e}", key=key) from e
        except (pickle.UnpicklingError, EOFError, AttributeError, ImportError) as e:
            logger.warning(f"Unreadable cache entry for key '{key}': {e}. Removing.")
            await self.delete(key)
            return None

        if entry is None:
            logger.debug(f"Cache miss for key: {key}")
            return None
        if not isinstance(entry, CacheEntry):
            logger.warning(f"Unexpected payload stored under key '{key}'. Removing.")
            await self.delete(key)
            return None
        if not entry.is_valid(now):
            logger.debug(f"Cache entry expired for key: {key}. Removing.")
            await self.delete(key)
            return None

        logger.debug(f"Cache hit for key: {key}")
        return entry.value

    async def set(self, key: CacheKey, value: Any, ttl_ms: float = DEFAULT_TTL_MS) -> None:
        if ttl_ms <= 0:
            raise ValueError(f"ttl_ms must be positive, got {ttl_ms}")
        now = self._clock()
        entry = CacheEntry(key=key, value=value, timestamp=now, expires_at=now + ttl_ms)
        try:
            self._cache.set(key, entry, retry=True)
        except _BACKEND_ERRORS + (TypeError, AttributeError) as e:
            logger.error(f"Failed to write cache key '{key}': {e}")
            raise StoreError(f"Failed to write cache key '{key}': {e}", key=key) from e
        logger.debug(f"Stored cache entry: key={key}, ttl={ttl_ms}ms")

    async def delete(self, key: CacheKey) -> None:
        try:
            self._cache.delete(key, retry=True)
        except _BACKEND_ERRORS as e:
            raise StoreError(f"Failed to delete cache key '{key}': {e}", key=key) from e

    async def clear(self, prefix: Optional[str] = None) -> int:
        if prefix is None:
            try:
                removed = self._cache.clear(retry=True)
            except _BACKEND_ERRORS as e:
                raise StoreError(f"Failed to clear cache: {e}") from e
            logger.info(f"Cleared cache ({removed} entries).")
            return removed

        marker = f"{prefix}_"
        matching = [k for k in self._list_keys() if isinstance(k, str) and k.startswith(marker)]
        for key in matching:
            await self.delete(CacheKey(key))
        logger.info(f"Cleared {len(matching)} cache entries with prefix '{prefix}'.")
        return len(matching)

    async def stats(self) -> CacheStats:
        count = 0
        total_size = 0
        oldest: Optional[float] = None
        newest: Optional[float] = None
        for _, entry in self._iter_entries():
            count += 1
            total_size += len(pickle.dumps(entry))
            oldest = entry.timestamp if oldest is None else min(oldest, entry.timestamp)
            newest = entry.timestamp if newest is None else max(newest, entry.timestamp)

        return CacheStats(
            count=count,
            total_size=total_size,
            oldest_entry=datetime.fromtimestamp(oldest / 1000) if oldest is not None else None,
            newest_entry=datetime.fromtimestamp(newest / 1000) if newest is not None else None,
        )

    async def sweep_expired(self) -> int:
        now = self._clock()
        expired: List[str] = [key for key, entry in self._iter_entries() if not entry.is_valid(now)]
        for key in expired:
            await self.delete(CacheKey(key))
        if expired:
            logger.info(f"Swept {len(expired)} expired cache entries.")
        return len(expired)

    def close(self) -> None:
        self._cache.close()

    # --- Internal helpers ---

    def _list_keys(self) -> List[Any]:
        try:
            return list(self._cache.iterkeys())
        except _BACKEND_ERRORS as e:
            raise StoreError(f"Failed to list cache keys: {e}") from e

    def _iter_entries(self) -> Iterator[Tuple[str, CacheEntry]]:
        """Yields (key, entry) pairs, skipping keys that vanished or hold foreign data."""
        for key in self._list_keys():
            try:
                entry = self._cache.get(key, default=None, retry=True)
            except _BACKEND_ERRORS as e:
                raise StoreError(f"Failed to read cache key '{key}': {e}", key=key) from e
            except (pickle.UnpicklingError, EOFError, AttributeError, ImportError) as e:
                logger.warning(f"Skipping unreadable cache entry '{key}': {e}")
                continue
            if isinstance(entry, CacheEntry):
                yield key, entry
