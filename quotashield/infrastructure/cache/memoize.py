"""Memoization of async calls on top of the TTL store.

``with_cache`` turns an async function into one whose results are stored
under ``<prefix>_<serialized arguments>`` for a fixed TTL. Concurrent calls
with the same key share one underlying call through an
InFlightDeduplicator. Failures are never cached, and store failures only
turn the call into a cache miss.
"""

import functools
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from quotashield.domain.errors import StoreError
from quotashield.domain.interfaces.cache import CacheStore
from quotashield.domain.models.common import CacheKey
from quotashield.infrastructure.resilience.dedup import InFlightDeduplicator

logger = logging.getLogger(__name__)

DEFAULT_EXPIRATION_MS = 60 * 60 * 1000  # 1 hour

AsyncFn = Callable[..., Awaitable[Any]]
KeyFn = Callable[..., Optional[str]]


def canonical_serialize(args: Tuple[Any, ...], kwargs: Optional[Dict[str, Any]] = None) -> str:
    """Deterministic JSON rendering of call arguments.

    Positional-only calls serialize as a JSON list (``["123"]``); keyword
    arguments are added under sorted keys.
    """
    payload: Any = list(args)
    if kwargs:
        payload = {"args": list(args), "kwargs": kwargs}
    return json.dumps(payload, sort_keys=True, default=str, separators=(",", ":"), ensure_ascii=False)


def build_cache_key(
    prefix: str,
    args: Tuple[Any, ...],
    kwargs: Optional[Dict[str, Any]] = None,
    key_fn: Optional[KeyFn] = None,
) -> CacheKey:
    suffix = key_fn(*args, **(kwargs or {})) if key_fn is not None else None
    if suffix is None:
        suffix = canonical_serialize(args, kwargs)
    return CacheKey(f"{prefix}_{suffix}")


def with_cache(
    op: AsyncFn,
    store: CacheStore,
    *,
    key_prefix: Optional[str] = None,
    ttl_ms: float = DEFAULT_EXPIRATION_MS,
    key_fn: Optional[KeyFn] = None,
    use_cache: bool = True,
    dedupe: bool = True,
    deduplicator: Optional[InFlightDeduplicator] = None,
) -> AsyncFn:
    """Wraps ``op`` with read-through caching.

    Args:
        op: The async function to memoize.
        store: TTL store holding the results.
        key_prefix: Key prefix; defaults to the function name.
        ttl_ms: Lifetime of a stored result in milliseconds.
        key_fn: Builds the key suffix from the call arguments. Returning
            None falls back to canonical serialization.
        use_cache: When False the wrapper calls straight through.
        dedupe: Collapse concurrent identical calls into one.
        deduplicator: Dedup map to use; a private one is created when
            omitted and ``dedupe`` is True.

    Returns:
        An async function with the same signature as ``op``.
    """
    if ttl_ms <= 0:
        raise ValueError(f"ttl_ms must be positive, got {ttl_ms}")
    prefix = key_prefix or getattr(op, "__name__", "call")
    in_flight = deduplicator if deduplicator is not None else (InFlightDeduplicator(prefix) if dedupe else None)

    async def load(key: CacheKey, args: Tuple[Any, ...], kwargs: Dict[str, Any]) -> Any:
        try:
            cached = await store.get(key)
        except StoreError as e:
            logger.warning(f"Error reading from cache for key {key}: {e}")
            cached = None
        if cached is not None:
            return cached

        logger.debug(f"Cache miss for key: {key}, fetching fresh data")
        result = await op(*args, **kwargs)
        try:
            await store.set(key, result, ttl_ms)
        except StoreError as e:
            logger.warning(f"Failed to cache result for key {key}: {e}")
        return result

    @functools.wraps(op)
    async def wrapper(*args: Any, **kwargs: Any) -> Any:
        if not use_cache:
            return await op(*args, **kwargs)
        key = build_cache_key(prefix, args, kwargs, key_fn)
        if in_flight is None:
            return await load(key, args, kwargs)
        return await in_flight.dedupe(key, lambda: load(key, args, kwargs))

    wrapper.cache_prefix = prefix  # type: ignore[attr-defined]
    wrapper.deduplicator = in_flight  # type: ignore[attr-defined]
    return wrapper


def cached(store: CacheStore, **options: Any) -> Callable[[AsyncFn], AsyncFn]:
    """Decorator form of ``with_cache``.

    Example:
        @cached(store, key_prefix="constituent", ttl_ms=300_000)
        async def fetch_constituent(constituent_id: str) -> dict:
            ...
    """
    def decorator(op: AsyncFn) -> AsyncFn:
        return with_cache(op, store, **options)

    return decorator
