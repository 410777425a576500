"""Defines common Value Objects used across the resilience contexts.

These objects represent simple values like cache keys, task ids and
backoff policies, keeping signatures readable across layers.
"""

from typing import NewType, TypedDict, Optional

# === Caching Context ===
CacheKey = NewType("CacheKey", str)              # Unique key for a cache entry

# === Task Queue Context ===
TaskId = NewType("TaskId", str)                  # Unique id of a queued task
TaskType = NewType("TaskType", str)              # Tag used for per-type statistics (e.g., 'lookup')


class BackoffPolicy(TypedDict):
    """Value Object representing retry backoff configuration."""
    max_attempts: int
    base_delay_s: float
    jitter_ratio: float


class QueuePolicy(TypedDict):
    """Value Object representing a task queue's configuration."""
    max_concurrency: int
    retry_delay_s: float
    max_retries: int
    max_pending: Optional[int]
