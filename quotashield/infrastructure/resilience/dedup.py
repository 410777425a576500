"""In-flight request deduplication.

Concurrent calls that share a key are collapsed into one underlying call.
The key is registered when the call starts and removed the moment it
settles, so later callers (after settlement) trigger a fresh call.
"""

import asyncio
import functools
import logging
from typing import Any, Awaitable, Callable, Dict

logger = logging.getLogger(__name__)


class InFlightDeduplicator:
    """Maps a key to the pending outcome of the single call running for it."""

    def __init__(self, name: str = "default"):
        self.name = name
        self._in_flight: Dict[str, "asyncio.Future[Any]"] = {}
        self._waiters: Dict[str, int] = {}

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    def is_in_flight(self, key: str) -> bool:
        return key in self._in_flight

    def waiters(self, key: str) -> int:
        """Number of callers attached to the outstanding call for ``key``."""
        return self._waiters.get(key, 0)

    async def dedupe(self, key: str, op: Callable[[], Awaitable[Any]]) -> Any:
        """Runs ``op`` unless a call for ``key`` is already outstanding.

        The call runs as its own task, so cancelling any caller (the one that
        started it included) leaves the others attached. Every caller still
        waiting receives the same result, or the same exception.
        """
        task = self._in_flight.get(key)
        if task is not None:
            self._waiters[key] += 1
            logger.debug(f"[{self.name}] Joining in-flight call for key: {key} (waiters={self._waiters[key]})")
        else:
            task = asyncio.ensure_future(op())
            self._in_flight[key] = task
            self._waiters[key] = 1
            task.add_done_callback(functools.partial(self._settle, key))
            logger.debug(f"[{self.name}] Starting call for key: {key}")

        # shield: a cancelled caller must not cancel the shared call
        return await asyncio.shield(task)

    def _settle(self, key: str, task: "asyncio.Future[Any]") -> None:
        if self._in_flight.get(key) is task:
            self._in_flight.pop(key)
            waiters = self._waiters.pop(key, 0)
            logger.debug(f"[{self.name}] Call settled for key: {key} ({waiters} caller(s))")
        # Mark retrieved so a call whose callers all left does not warn on GC
        if not task.cancelled():
            task.exception()
