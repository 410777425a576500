import asyncio

import pytest

from quotashield.domain.errors import StoreError
from quotashield.infrastructure.cache.memoize import (
    build_cache_key, cached, canonical_serialize, with_cache,
)
from quotashield.infrastructure.resilience.dedup import InFlightDeduplicator


class CountingOp:
    """Async callable recording its calls."""

    def __init__(self, result=None, error=None, delay=0.0):
        self.calls = []
        self.result = result
        self.error = error
        self.delay = delay
        self.__name__ = "fetch_gift"

    async def __call__(self, *args, **kwargs):
        self.calls.append((args, kwargs))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result if self.result is not None else {"args": list(args)}


def test_canonical_serialize_is_stable():
    assert canonical_serialize(("123",)) == '["123"]'
    assert canonical_serialize((1, 2), {"b": 2, "a": 1}) == '{"args":[1,2],"kwargs":{"a":1,"b":2}}'
    assert canonical_serialize((), {"b": 2, "a": 1}) == canonical_serialize((), {"a": 1, "b": 2})


def test_build_cache_key_uses_prefix_and_key_fn():
    assert build_cache_key("gift", ("123",)) == 'gift_["123"]'
    assert build_cache_key("gift", ("123",), key_fn=lambda gift_id: f"id:{gift_id}") == "gift_id:123"
    # A key_fn returning None falls back to serialization
    assert build_cache_key("gift", ("123",), key_fn=lambda gift_id: None) == 'gift_["123"]'


@pytest.mark.asyncio
async def test_second_call_within_ttl_is_served_from_cache(store):
    op = CountingOp(result={"id": "123"})
    fetch = with_cache(op, store, key_prefix="gift", ttl_ms=60_000)

    first = await fetch("123")
    second = await fetch("123")

    assert first == second == {"id": "123"}
    assert len(op.calls) == 1
    assert await store.get('gift_["123"]') == {"id": "123"}


@pytest.mark.asyncio
async def test_expired_result_triggers_new_call(store, clock):
    op = CountingOp(result="value")
    fetch = with_cache(op, store, key_prefix="gift", ttl_ms=1000)

    await fetch("1")
    clock.advance(1000)
    await fetch("1")

    assert len(op.calls) == 2


@pytest.mark.asyncio
async def test_distinct_arguments_use_distinct_entries(store):
    op = CountingOp()
    fetch = with_cache(op, store, key_prefix="gift")

    assert await fetch("1") == {"args": ["1"]}
    assert await fetch("2") == {"args": ["2"]}
    assert await fetch(page=2) == {"args": []}
    assert len(op.calls) == 3


@pytest.mark.asyncio
async def test_failures_are_not_cached(store):
    op = CountingOp(error=RuntimeError("boom"))
    fetch = with_cache(op, store, key_prefix="gift")

    with pytest.raises(RuntimeError):
        await fetch("1")
    op.error = None
    op.result = "ok"

    assert await fetch("1") == "ok"
    assert len(op.calls) == 2


@pytest.mark.asyncio
async def test_store_read_failure_is_a_miss(store, mocker):
    op = CountingOp(result="fresh")
    mocker.patch.object(store, "get", side_effect=StoreError("disk unavailable"))
    fetch = with_cache(op, store, key_prefix="gift")

    assert await fetch("1") == "fresh"
    assert len(op.calls) == 1


@pytest.mark.asyncio
async def test_store_write_failure_still_returns_result(store, mocker):
    op = CountingOp(result="fresh")
    mocker.patch.object(store, "set", side_effect=StoreError("disk full"))
    fetch = with_cache(op, store, key_prefix="gift")

    assert await fetch("1") == "fresh"
    assert await fetch("1") == "fresh"
    assert len(op.calls) == 2


@pytest.mark.asyncio
async def test_use_cache_false_always_calls_through(store):
    op = CountingOp(result="v")
    fetch = with_cache(op, store, key_prefix="gift", use_cache=False)

    await fetch("1")
    await fetch("1")

    assert len(op.calls) == 2
    assert (await store.stats()).count == 0


@pytest.mark.asyncio
async def test_prefix_defaults_to_function_name(store):
    op = CountingOp(result="v")
    fetch = with_cache(op, store)

    await fetch("9")

    assert fetch.cache_prefix == "fetch_gift"
    assert await store.get('fetch_gift_["9"]') == "v"


@pytest.mark.asyncio
async def test_concurrent_identical_calls_share_one_load(store):
    """Five simultaneous calls for the same id produce a single remote call."""
    op = CountingOp(result={"id": "123"}, delay=0.05)
    fetch = with_cache(op, store, key_prefix="gift")

    results = await asyncio.gather(*(fetch("123") for _ in range(5)))

    assert len(op.calls) == 1
    assert all(result == {"id": "123"} for result in results)
    assert fetch.deduplicator.in_flight_count == 0


@pytest.mark.asyncio
async def test_concurrent_callers_all_receive_the_failure(store):
    op = CountingOp(error=ValueError("bad id"), delay=0.02)
    fetch = with_cache(op, store, key_prefix="gift")

    results = await asyncio.gather(*(fetch("x") for _ in range(3)), return_exceptions=True)

    assert len(op.calls) == 1
    assert all(isinstance(r, ValueError) for r in results)


@pytest.mark.asyncio
async def test_shared_deduplicator_is_used(store):
    shared = InFlightDeduplicator("shared")
    op = CountingOp(result="v")
    fetch = with_cache(op, store, key_prefix="gift", deduplicator=shared)
    assert fetch.deduplicator is shared


@pytest.mark.asyncio
async def test_cached_decorator(store):
    calls = []

    @cached(store, key_prefix="constituent", ttl_ms=300_000)
    async def fetch_constituent(constituent_id: str) -> dict:
        calls.append(constituent_id)
        return {"id": constituent_id}

    assert await fetch_constituent("7") == {"id": "7"}
    assert await fetch_constituent("7") == {"id": "7"}
    assert calls == ["7"]
    assert fetch_constituent.__name__ == "fetch_constituent"


def test_non_positive_ttl_rejected(store):
    with pytest.raises(ValueError):
        with_cache(CountingOp(), store, ttl_ms=0)
