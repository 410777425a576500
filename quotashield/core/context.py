"""Resilience context: the shared collaborators of a running application.

One ResilienceContext is built per process. It owns the TTL store, the
in-flight deduplicator, the QuotaSignal, the retry and query executors and
the named task queues, and hands them to callers by reference.
"""

import functools
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional

from quotashield.domain.events.api_events import EventHandler
from quotashield.domain.interfaces.cache import CacheStore
from quotashield.domain.interfaces.session import SessionProvider
from quotashield.domain.models.task import QueueStats
from quotashield.infrastructure.cache.memoize import DEFAULT_EXPIRATION_MS, KeyFn, with_cache
from quotashield.infrastructure.cache.ttl_store import DiskTTLStore
from quotashield.infrastructure.config.settings import (
    get_cache_settings, get_query_settings, get_queue_settings, get_retry_settings,
)
from quotashield.infrastructure.queue.task_queue import (
    DEFAULT_QUEUE_POLICIES, ConcurrentTaskQueue, build_default_queues, with_concurrency_limit,
)
from quotashield.infrastructure.resilience.api_retry import BackoffRetryExecutor
from quotashield.infrastructure.resilience.dedup import InFlightDeduplicator
from quotashield.infrastructure.resilience.query_executor import RateLimitAwareQueryExecutor
from quotashield.infrastructure.resilience.quota_signal import QuotaSignal

logger = logging.getLogger(__name__)

AsyncFn = Callable[..., Awaitable[Any]]


@dataclass
class ResilienceContext:
    """Bundle of the cache, resilience and queue services."""
    store: CacheStore
    quota_signal: QuotaSignal
    retry_executor: BackoffRetryExecutor
    query_executor: RateLimitAwareQueryExecutor
    queues: Dict[str, ConcurrentTaskQueue] = field(default_factory=dict)
    deduplicator: InFlightDeduplicator = field(default_factory=lambda: InFlightDeduplicator("queries"))
    default_ttl_ms: float = DEFAULT_EXPIRATION_MS

    def queue(self, name: str) -> ConcurrentTaskQueue:
        try:
            return self.queues[name]
        except KeyError:
            raise KeyError(f"No task queue named '{name}'. Known queues: {sorted(self.queues)}") from None

    def cached_query(
        self,
        op: AsyncFn,
        context_label: str,
        *,
        key_prefix: Optional[str] = None,
        ttl_ms: Optional[float] = None,
        key_fn: Optional[KeyFn] = None,
        use_cache: bool = True,
        on_error: Optional[Callable[[str], None]] = None,
        queue_name: Optional[str] = None,
        priority: int = 0,
    ) -> AsyncFn:
        """Wraps a remote call with caching, dedup and rate-limit handling.

        Call order on a miss: cache lookup, in-flight dedup, optional queue
        slot, then the query executor (backoff, quota signal, auth refresh).

        Args:
            op: Async function performing the remote call.
            context_label: Human-readable description used in error
                messages, e.g. "fetching constituent".
            key_prefix: Cache key prefix; defaults to the function name.
            ttl_ms: Cache lifetime; defaults to the context's default TTL.
            key_fn: Custom cache key suffix builder.
            use_cache: When False only the executor (and queue) apply.
            on_error: Receives the translated error message on failure.
            queue_name: Name of a queue in ``queues`` to bound concurrency.
            priority: Priority of the queued task.

        Returns:
            An async function with the same signature as ``op``.

        Raises:
            KeyError: If ``queue_name`` is not a configured queue.
        """
        prefix = key_prefix or getattr(op, "__name__", "query")

        async def guarded(*args: Any, **kwargs: Any) -> Any:
            return await self.query_executor.execute_query(
                lambda: op(*args, **kwargs), context_label, on_error
            )

        functools.update_wrapper(guarded, op)
        target: AsyncFn = guarded
        if queue_name is not None:
            target = with_concurrency_limit(guarded, self.queue(queue_name), task_type=prefix, priority=priority)

        return with_cache(
            target,
            self.store,
            key_prefix=prefix,
            ttl_ms=ttl_ms if ttl_ms is not None else self.default_ttl_ms,
            key_fn=key_fn,
            use_cache=use_cache,
            deduplicator=self.deduplicator,
        )

    def queue_stats(self) -> Dict[str, QueueStats]:
        return {name: queue.stats() for name, queue in self.queues.items()}

    def close(self) -> None:
        closer = getattr(self.store, "close", None)
        if callable(closer):
            closer()


def build_context(
    session_provider: Optional[SessionProvider] = None,
    event_handler: Optional[EventHandler] = None,
    store: Optional[CacheStore] = None,
) -> ResilienceContext:
    """Builds a ResilienceContext from the loaded configuration.

    Args:
        session_provider: Optional credential source for auth refresh.
        event_handler: Optional sink receiving domain events.
        store: Store to use instead of the configured DiskTTLStore.
    """
    cache_settings = get_cache_settings()
    retry_policy = get_retry_settings()
    query_settings = get_query_settings()

    if store is None:
        store = DiskTTLStore(directory=cache_settings["directory"])
    quota_signal = QuotaSignal()
    retry_executor = BackoffRetryExecutor(
        max_attempts=retry_policy["max_attempts"],
        base_delay_s=retry_policy["base_delay_s"],
        jitter_ratio=retry_policy["jitter_ratio"],
        event_handler=event_handler,
    )
    query_executor = RateLimitAwareQueryExecutor(
        retry_executor=retry_executor,
        quota_signal=quota_signal,
        session_provider=session_provider,
        timeout_s=query_settings["timeout_s"],
        default_retry_after_s=query_settings["default_retry_after_s"],
        event_handler=event_handler,
    )
    queues = build_default_queues({name: get_queue_settings(name) for name in DEFAULT_QUEUE_POLICIES})
    for queue in queues.values():
        queue.event_handler = event_handler

    logger.info(f"Resilience context ready: queues={sorted(queues)}, cache={cache_settings['directory']}")
    return ResilienceContext(
        store=store,
        quota_signal=quota_signal,
        retry_executor=retry_executor,
        query_executor=query_executor,
        queues=queues,
        default_ttl_ms=cache_settings["default_ttl_ms"],
    )
