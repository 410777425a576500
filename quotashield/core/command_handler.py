"""Command Handler: Orchestrates CLI command execution.

Receives commands from the main entry point (main.py) and delegates the
work to the ResilienceContext (cache, queues, quota signal), reporting the
outcome through the UserInterface.
"""

import logging
from typing import Optional

from quotashield.core.context import ResilienceContext
from quotashield.domain.errors import StoreError
from quotashield.domain.interfaces.user_interface import UserInterface

logger = logging.getLogger(__name__)


class CommandHandler:
    """Handles incoming commands and delegates to the resilience context."""

    def __init__(self, context: ResilienceContext, ui: UserInterface):
        """Initializes the CommandHandler with the shared context and the UI."""
        self.context = context
        self.ui = ui

    async def handle_stats(self) -> None:
        """Handles the 'stats' command: cache table followed by queue table."""
        logger.info("Handling 'stats' command.")
        try:
            cache_stats = await self.context.store.stats()
        except StoreError as e:
            logger.error(f"Failed to read cache statistics: {e}", exc_info=True)
            self.ui.display_error(f"Failed to read cache statistics: {e}")
        else:
            self.ui.display_cache_stats(cache_stats)
        self.ui.display_queue_stats(self.context.queue_stats())

    async def handle_clear_cache(self, prefix: Optional[str] = None) -> None:
        """Handles the 'clear-cache' command."""
        scope = f"prefix '{prefix}'" if prefix else "all entries"
        logger.info(f"Handling 'clear-cache' command for {scope}")
        if prefix is not None and not prefix.strip():
            self.ui.display_error("Prefix must not be empty.")
            return
        try:
            removed = await self.context.store.clear(prefix)
        except StoreError as e:
            logger.error(f"Failed to clear cache ({scope}): {e}", exc_info=True)
            self.ui.display_error(f"Failed to clear cache: {e}")
            return
        self.ui.display_info(f"Cleared {removed} cache entries ({scope}).")

    async def handle_sweep(self) -> None:
        """Handles the 'sweep' command: drops entries whose TTL has passed."""
        logger.info("Handling 'sweep' command.")
        try:
            removed = await self.context.store.sweep_expired()
        except StoreError as e:
            logger.error(f"Failed to sweep expired entries: {e}", exc_info=True)
            self.ui.display_error(f"Failed to sweep cache: {e}")
            return
        self.ui.display_info(f"Removed {removed} expired cache entries.")

    def handle_quota_status(self, retry_after: Optional[int] = None) -> None:
        """Handles the 'quota-status' command.

        Args:
            retry_after: When given, starts a cooldown of that many seconds
                before rendering, as a rate-limited call would.
        """
        signal = self.context.quota_signal
        if retry_after is not None:
            if retry_after < 0:
                self.ui.display_error("Retry-after must be zero or more seconds.")
                return
            signal.set_quota_exceeded(True, retry_after)

        if not signal.is_quota_exceeded:
            self.ui.display_info("No active quota cooldown.")
            return
        self.ui.display_quota_notice(signal.retry_after, signal.remaining_seconds())
