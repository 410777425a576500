import pickle
from datetime import datetime

import diskcache as dc
import pytest

from quotashield.domain.errors import StoreError
from quotashield.domain.models.cache import CacheEntry
from quotashield.infrastructure.cache.ttl_store import DiskTTLStore

ONE_HOUR_MS = 60 * 60 * 1000


@pytest.mark.asyncio
async def test_entry_expires_after_ttl(store: DiskTTLStore, clock):
    """A one hour entry is served before the hour is up and gone after it."""
    await store.set("gift_123", {"amount": 50}, ONE_HOUR_MS)

    clock.advance(59 * 60 * 1000)
    assert await store.get("gift_123") == {"amount": 50}

    clock.advance(2 * 60 * 1000)
    assert await store.get("gift_123") is None
    # The stale read removed the entry from disk
    assert (await store.stats()).count == 0


@pytest.mark.asyncio
async def test_entry_invalid_exactly_at_expiry(store: DiskTTLStore, clock):
    await store.set("k", "v", 1000)
    clock.advance(1000)
    assert await store.get("k") is None


@pytest.mark.asyncio
async def test_get_missing_key_returns_none(store: DiskTTLStore):
    assert await store.get("nothing_here") is None


@pytest.mark.asyncio
async def test_set_overwrites_existing_entry(store: DiskTTLStore, clock):
    await store.set("k", "old", 1000)
    clock.advance(900)
    await store.set("k", "new", 1000)
    clock.advance(900)
    assert await store.get("k") == "new"


@pytest.mark.asyncio
async def test_set_rejects_non_positive_ttl(store: DiskTTLStore):
    with pytest.raises(ValueError):
        await store.set("k", "v", 0)


@pytest.mark.asyncio
async def test_values_survive_reopening(tmp_path, clock):
    first = DiskTTLStore(directory=tmp_path / "persist", clock=clock)
    await first.set("constituent_42", ["a", "b"], ONE_HOUR_MS)
    first.close()

    second = DiskTTLStore(directory=tmp_path / "persist", clock=clock)
    try:
        assert await second.get("constituent_42") == ["a", "b"]
    finally:
        second.close()


@pytest.mark.asyncio
async def test_delete_removes_entry(store: DiskTTLStore):
    await store.set("k", "v", ONE_HOUR_MS)
    await store.delete("k")
    await store.delete("k")  # Deleting a missing key is a no-op
    assert await store.get("k") is None


@pytest.mark.asyncio
async def test_clear_without_prefix_removes_everything(store: DiskTTLStore):
    await store.set("gift_1", 1, ONE_HOUR_MS)
    await store.set("action_1", 2, ONE_HOUR_MS)

    removed = await store.clear()

    assert removed == 2
    assert (await store.stats()).count == 0


@pytest.mark.asyncio
async def test_clear_with_prefix_only_removes_matching_keys(store: DiskTTLStore):
    await store.set("gift_1", 1, ONE_HOUR_MS)
    await store.set('gift_["2"]', 2, ONE_HOUR_MS)
    await store.set("giftaid_1", 3, ONE_HOUR_MS)
    await store.set("action_1", 4, ONE_HOUR_MS)

    removed = await store.clear("gift")

    assert removed == 2
    assert await store.get("gift_1") is None
    assert await store.get("giftaid_1") == 3
    assert await store.get("action_1") == 4


@pytest.mark.asyncio
async def test_sweep_expired_removes_only_stale_entries(store: DiskTTLStore, clock):
    await store.set("short", 1, 1000)
    await store.set("long", 2, ONE_HOUR_MS)
    clock.advance(5000)

    removed = await store.sweep_expired()

    assert removed == 1
    assert await store.get("long") == 2
    assert (await store.stats()).count == 1


@pytest.mark.asyncio
async def test_stats_reports_count_size_and_ages(store: DiskTTLStore, clock):
    empty = await store.stats()
    assert empty.count == 0
    assert empty.total_size == 0
    assert empty.oldest_entry is None and empty.newest_entry is None

    first_ms = clock()
    await store.set("a", "x" * 100, ONE_HOUR_MS)
    clock.advance(10_000)
    await store.set("b", "y", ONE_HOUR_MS)

    stats = await store.stats()
    assert stats.count == 2
    assert stats.total_size > 100
    assert stats.oldest_entry == datetime.fromtimestamp(first_ms / 1000)
    assert stats.newest_entry == datetime.fromtimestamp((first_ms + 10_000) / 1000)


@pytest.mark.asyncio
async def test_foreign_payload_is_treated_as_miss(store: DiskTTLStore):
    store._cache.set("raw", "not a cache entry")
    assert await store.get("raw") is None
    assert "raw" not in store._cache


@pytest.mark.asyncio
async def test_backend_read_failure_raises_store_error(store: DiskTTLStore, mocker):
    mocker.patch.object(store._cache, "get", side_effect=dc.Timeout("locked"))
    with pytest.raises(StoreError):
        await store.get("k")


@pytest.mark.asyncio
async def test_unpicklable_value_raises_store_error(store: DiskTTLStore):
    with pytest.raises(StoreError):
        await store.set("k", lambda: None, ONE_HOUR_MS)


def test_cache_entry_requires_expiry_after_creation():
    with pytest.raises(ValueError):
        CacheEntry(key="k", value=1, timestamp=100.0, expires_at=100.0)
    entry = CacheEntry(key="k", value=1, timestamp=100.0, expires_at=200.0)
    assert entry.is_valid(199.0)
    assert not entry.is_valid(200.0)
    # Entries are stored pickled
    assert pickle.loads(pickle.dumps(entry)) == entry
