"""Domain models for the persistent TTL cache."""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from quotashield.domain.models.common import CacheKey


@dataclass
class CacheEntry:
    """A stored value together with its creation and expiry times.

    Both timestamps are epoch milliseconds. The entry is valid while
    ``now < expires_at``.
    """
    key: CacheKey
    value: Any
    timestamp: float
    expires_at: float

    def __post_init__(self) -> None:
        if self.expires_at <= self.timestamp:
            raise ValueError(
                f"Cache entry '{self.key}' must expire after it was created "
                f"(timestamp={self.timestamp}, expires_at={self.expires_at})"
            )

    def is_valid(self, now_ms: float) -> bool:
        return now_ms < self.expires_at


@dataclass
class CacheStats:
    """Diagnostic snapshot of the cache contents."""
    count: int
    total_size: int  # Bytes of serialized entries
    oldest_entry: Optional[datetime] = None
    newest_entry: Optional[datetime] = None
