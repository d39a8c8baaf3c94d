"""Tests for the catalog cache layer.

Tests:
- Monotonic-version guard
- TTL expiry and LRU eviction
- Tombstones
- Absorbing backend failures and timeouts
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from catalog_service.catalog.cache import CacheEntry, CatalogCache, InMemoryCacheBackend
from catalog_service.domain.exceptions import CacheUnavailableError, ItemNotFoundError
from tests.factories import HangingCacheBackend, make_item


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


# ============================================================================
# Backend Tests
# ============================================================================


class TestInMemoryCacheBackend:
    """Tests for the local TTL/LRU backend."""

    @pytest.mark.asyncio
    async def test_put_if_newer_rejects_equal_and_older_versions(self):
        backend = InMemoryCacheBackend()
        assert await backend.put_if_newer(CacheEntry.for_item(make_item(version=2))) is True

        assert await backend.put_if_newer(CacheEntry.for_item(make_item(version=2))) is False
        assert await backend.put_if_newer(CacheEntry.for_item(make_item(version=1))) is False
        assert (await backend.get("sku-1")).version == 2

        assert await backend.put_if_newer(CacheEntry.for_item(make_item(version=3))) is True
        assert (await backend.get("sku-1")).version == 3

    @pytest.mark.asyncio
    async def test_entries_expire_after_ttl(self):
        clock = FakeClock()
        backend = InMemoryCacheBackend(ttl_seconds=10, clock=clock)
        await backend.put_if_newer(CacheEntry.for_item(make_item()))

        clock.now = 9.9
        assert await backend.get("sku-1") is not None

        clock.now = 10.0
        assert await backend.get("sku-1") is None
        assert len(backend) == 0

    @pytest.mark.asyncio
    async def test_expired_entry_does_not_block_older_put(self):
        clock = FakeClock()
        backend = InMemoryCacheBackend(ttl_seconds=10, clock=clock)
        await backend.put_if_newer(CacheEntry.for_item(make_item(version=5)))

        clock.now = 11
        assert await backend.put_if_newer(CacheEntry.for_item(make_item(version=4))) is True

    @pytest.mark.asyncio
    async def test_least_recently_used_entry_evicted(self):
        backend = InMemoryCacheBackend(max_entries=2)
        await backend.put_if_newer(CacheEntry.for_item(make_item("sku-1")))
        await backend.put_if_newer(CacheEntry.for_item(make_item("sku-2")))
        await backend.get("sku-1")

        await backend.put_if_newer(CacheEntry.for_item(make_item("sku-3")))

        assert await backend.get("sku-2") is None
        assert await backend.get("sku-1") is not None
        assert await backend.get("sku-3") is not None
        assert backend.evictions == 1

    def test_rejects_zero_capacity(self):
        with pytest.raises(ValueError):
            InMemoryCacheBackend(max_entries=0)


# ============================================================================
# Cache Layer Tests
# ============================================================================


class TestCatalogCache:
    """Tests for the read-through cache."""

    @pytest.mark.asyncio
    async def test_get_or_load_reads_through_once(self, cache):
        loader = AsyncMock(return_value=make_item())

        first = await cache.get_or_load("sku-1", loader)
        second = await cache.get_or_load("sku-1", loader)

        assert first == second
        loader.assert_awaited_once_with("sku-1")
        assert cache.stats()["hits"] == 1
        assert cache.stats()["misses"] == 1

    @pytest.mark.asyncio
    async def test_slow_read_cannot_overwrite_newer_write(self, cache):
        """A read that loaded v1 must not replace v2 cached by a write."""
        await cache.refresh(make_item(version=2, stock_quantity=3))

        assert await cache.put(make_item(version=1)) is False

        entry = await cache.lookup("sku-1")
        assert entry.version == 2
        assert entry.item.stock_quantity == 3
        assert cache.stats()["rejected_puts"] == 1

    @pytest.mark.asyncio
    async def test_tombstone_reports_not_found(self, cache):
        await cache.put(make_item(version=1))
        await cache.put_tombstone("sku-1", 2)
        loader = AsyncMock(return_value=make_item(version=1))

        with pytest.raises(ItemNotFoundError):
            await cache.get_or_load("sku-1", loader)
        loader.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_tombstone_blocks_stale_snapshot(self, cache):
        await cache.put_tombstone("sku-1", 2)

        assert await cache.put(make_item(version=1)) is False
        assert (await cache.lookup("sku-1")).is_tombstone

    @pytest.mark.asyncio
    async def test_loader_not_found_propagates(self, cache):
        loader = AsyncMock(side_effect=ItemNotFoundError("sku-1"))

        with pytest.raises(ItemNotFoundError):
            await cache.get_or_load("sku-1", loader)

    @pytest.mark.asyncio
    async def test_invalidate_drops_entry(self, cache):
        await cache.put(make_item())

        assert await cache.invalidate("sku-1") is True
        assert await cache.lookup("sku-1") is None


class TestCacheFailures:
    """Backend failures never escape the cache layer."""

    @pytest.fixture
    def broken_backend(self):
        backend = AsyncMock()
        backend.get.side_effect = CacheUnavailableError("connection refused")
        backend.put_if_newer.side_effect = CacheUnavailableError("connection refused")
        backend.delete.side_effect = CacheUnavailableError("connection refused")
        return backend

    @pytest.mark.asyncio
    async def test_lookup_failure_is_a_miss(self, broken_backend):
        cache = CatalogCache(broken_backend)
        loader = AsyncMock(return_value=make_item())

        item = await cache.get_or_load("sku-1", loader)

        assert item.item_id == "sku-1"
        loader.assert_awaited_once()
        assert cache.stats()["errors"] == 2

    @pytest.mark.asyncio
    async def test_put_failure_returns_false(self, broken_backend):
        cache = CatalogCache(broken_backend)

        assert await cache.put(make_item()) is False
        broken_backend.delete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_refresh_failure_falls_back_to_invalidation(self):
        backend = AsyncMock()
        backend.put_if_newer.side_effect = CacheUnavailableError("timeout")
        cache = CatalogCache(backend)

        assert await cache.refresh(make_item(version=2)) is False
        backend.delete.assert_awaited_once_with("sku-1")

    @pytest.mark.asyncio
    async def test_invalidate_failure_returns_false(self, broken_backend):
        cache = CatalogCache(broken_backend)

        assert await cache.invalidate("sku-1") is False

    @pytest.mark.asyncio
    async def test_hanging_backend_times_out_as_a_miss(self):
        cache = CatalogCache(HangingCacheBackend(), timeout_seconds=0.05)
        loader = AsyncMock(return_value=make_item())

        item = await asyncio.wait_for(cache.get_or_load("sku-1", loader), timeout=1)

        assert item.item_id == "sku-1"
        loader.assert_awaited_once()
        assert cache.stats()["errors"] == 2

    @pytest.mark.asyncio
    async def test_hanging_backend_bounds_writes(self):
        cache = CatalogCache(HangingCacheBackend(), timeout_seconds=0.05)

        assert await asyncio.wait_for(cache.refresh(make_item(version=2)), timeout=1) is False
        assert await asyncio.wait_for(cache.invalidate("sku-1"), timeout=1) is False
        assert await asyncio.wait_for(cache.ping(), timeout=1) is False

    @pytest.mark.asyncio
    async def test_ping_reports_backend_health(self, cache):
        assert await cache.ping() is True
