"""Shared "quota exceeded" state.

One QuotaSignal is created by the composition root and handed to every
executor and to the UI that shows the cooldown. Setting it again while a
cooldown is showing just restarts the countdown.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QuotaState:
    """Snapshot delivered to subscribers."""
    is_quota_exceeded: bool
    retry_after: Optional[int] = None
    set_at: Optional[float] = None  # Monotonic seconds


QuotaListener = Callable[[QuotaState], None]


class QuotaSignal:
    """Observable holder of the process-wide quota cooldown."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._state = QuotaState(is_quota_exceeded=False)
        self._listeners: List[QuotaListener] = []

    @property
    def state(self) -> QuotaState:
        return self._state

    @property
    def is_quota_exceeded(self) -> bool:
        return self._state.is_quota_exceeded

    @property
    def retry_after(self) -> Optional[int]:
        return self._state.retry_after

    def remaining_seconds(self) -> int:
        """Seconds left in the current cooldown, 0 when none is active."""
        state = self._state
        if not state.is_quota_exceeded or state.retry_after is None or state.set_at is None:
            return 0
        elapsed = self._clock() - state.set_at
        return max(0, int(round(state.retry_after - elapsed)))

    def subscribe(self, listener: QuotaListener) -> Callable[[], None]:
        """Registers ``listener`` and returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def set_quota_exceeded(self, active: bool, retry_after_seconds: Optional[int] = None) -> None:
        if active:
            self._state = QuotaState(True, retry_after_seconds, self._clock())
            logger.warning(f"Quota exceeded. Retry after: {retry_after_seconds if retry_after_seconds is not None else 'unknown'}s")
        else:
            self._state = QuotaState(False)
            logger.info("Quota cooldown cleared.")
        self._notify()

    def clear_quota_exceeded(self) -> None:
        self.set_quota_exceeded(False)

    def _notify(self) -> None:
        state = self._state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception as e:
                logger.error(f"Quota listener {listener!r} failed: {e}", exc_info=True)
