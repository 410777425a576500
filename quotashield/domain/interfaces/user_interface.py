"""Interface for presenting diagnostics to the user.

Defines the contract for showing messages, cache/queue statistics and the
quota cooldown notice, allowing different UI implementations.
"""

import abc
from typing import Any, Mapping, Optional

from quotashield.domain.models.cache import CacheStats
from quotashield.domain.models.task import QueueStats


class UserInterface(abc.ABC):
    """Abstract Base Class for user interaction."""

    @abc.abstractmethod
    def display_error(self, error_message: str, **kwargs: Any) -> None:
        """Displays an error message to the user."""
        pass

    @abc.abstractmethod
    def display_warning(self, warning_message: str, **kwargs: Any) -> None:
        """Displays a warning message to the user."""
        pass

    @abc.abstractmethod
    def display_info(self, info_message: str, **kwargs: Any) -> None:
        """Displays an informational message to the user."""
        pass

    @abc.abstractmethod
    def display_cache_stats(self, stats: CacheStats) -> None:
        """Shows entry count, size and age of the cache."""
        pass

    @abc.abstractmethod
    def display_queue_stats(self, stats_by_queue: Mapping[str, QueueStats]) -> None:
        """Shows one row of task statistics per queue."""
        pass

    @abc.abstractmethod
    def display_quota_notice(self, retry_after: Optional[int], remaining_seconds: int) -> None:
        """Shows the rate-limit cooldown with the time left before retrying.

        Args:
            retry_after: Total cooldown announced by the server, in seconds.
            remaining_seconds: Seconds left in the cooldown.
        """
        pass
