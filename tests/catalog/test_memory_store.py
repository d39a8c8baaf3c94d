"""Tests for the in-memory store adapter.

Tests:
- Optimistic concurrency on updates and deletes
- Tombstones
- Outbox staging
- Search
"""

import asyncio
from dataclasses import replace
from decimal import Decimal

import pytest

from catalog_service.catalog.memory import InMemoryCatalogStore
from catalog_service.catalog.repository import ItemFilter, PaginationParams
from catalog_service.domain.events import ChangeEventKind
from catalog_service.domain.exceptions import (
    DuplicateItemError,
    ItemNotFoundError,
    ItemValidationError,
    VersionConflictError,
)
from tests.factories import make_draft


def set_stock(quantity: int):
    return lambda item: replace(item, stock_quantity=quantity)


# ============================================================================
# Versioning Tests
# ============================================================================


class TestVersioning:
    """Tests for compare-and-swap writes."""

    @pytest.mark.asyncio
    async def test_stale_update_conflicts(self):
        """sku-1 at v1, update to v2, then a write at stale v1 is rejected."""
        store = InMemoryCatalogStore()
        created = await store.create(make_draft("sku-1", price="10", stock_quantity=5))
        assert created.version == 1

        updated = await store.update("sku-1", set_stock(3), expected_version=1)
        assert updated.version == 2
        assert updated.stock_quantity == 3

        with pytest.raises(VersionConflictError) as exc_info:
            await store.update("sku-1", set_stock(1), expected_version=1)
        assert exc_info.value.current_version == 2

        current = await store.get("sku-1")
        assert current.version == 2
        assert current.stock_quantity == 3

    @pytest.mark.asyncio
    async def test_concurrent_updates_one_wins(self):
        """Two updates at the same expected version: one succeeds, one conflicts."""
        store = InMemoryCatalogStore()
        await store.create(make_draft("sku-1"))
        await store.update("sku-1", set_stock(3), expected_version=1)

        results = await asyncio.gather(
            store.update("sku-1", set_stock(2), expected_version=2),
            store.update("sku-1", set_stock(7), expected_version=2),
            return_exceptions=True,
        )

        successes = [r for r in results if not isinstance(r, Exception)]
        conflicts = [r for r in results if isinstance(r, VersionConflictError)]
        assert len(successes) == 1
        assert len(conflicts) == 1
        assert successes[0].version == 3
        assert (await store.get("sku-1")).version == 3

    @pytest.mark.asyncio
    async def test_sequential_updates_lose_nothing(self):
        """N updates with correct expected versions end at version N + 1."""
        store = InMemoryCatalogStore()
        await store.create(make_draft("sku-1", stock_quantity=0))

        for version in range(1, 11):
            await store.update("sku-1", set_stock(version), expected_version=version)

        item = await store.get("sku-1")
        assert item.version == 11
        assert item.stock_quantity == 10

    @pytest.mark.asyncio
    async def test_racing_writers_never_lose_updates(self):
        """Writers retrying on conflict: final version counts every success."""
        store = InMemoryCatalogStore()
        await store.create(make_draft("sku-1", stock_quantity=0))
        successes = 0

        async def increment() -> None:
            nonlocal successes
            while True:
                current = await store.get("sku-1")
                try:
                    await store.update(
                        "sku-1",
                        set_stock(current.stock_quantity + 1),
                        expected_version=current.version,
                    )
                except VersionConflictError:
                    await asyncio.sleep(0)
                    continue
                successes += 1
                return

        await asyncio.gather(*(increment() for _ in range(20)))

        item = await store.get("sku-1")
        assert successes == 20
        assert item.version == 21
        assert item.stock_quantity == 20

    @pytest.mark.asyncio
    async def test_mutator_cannot_change_identity(self):
        store = InMemoryCatalogStore()
        await store.create(make_draft("sku-1"))

        with pytest.raises(ItemValidationError):
            await store.update("sku-1", lambda item: replace(item, item_id="sku-2"), 1)

        assert (await store.get("sku-1")).version == 1


# ============================================================================
# Create / Delete Tests
# ============================================================================


class TestCreateDelete:
    """Tests for creates, deletes and tombstones."""

    @pytest.mark.asyncio
    async def test_duplicate_create_rejected(self):
        store = InMemoryCatalogStore()
        await store.create(make_draft("sku-1"))

        with pytest.raises(DuplicateItemError):
            await store.create(make_draft("sku-1", name="Other"))

    @pytest.mark.asyncio
    async def test_delete_leaves_tombstone(self):
        store = InMemoryCatalogStore()
        await store.create(make_draft("sku-1"))

        tombstone_version = await store.delete("sku-1", expected_version=1)

        assert tombstone_version == 2
        with pytest.raises(ItemNotFoundError):
            await store.get("sku-1")
        with pytest.raises(DuplicateItemError) as exc_info:
            await store.create(make_draft("sku-1"))
        assert exc_info.value.details["deleted"] is True

    @pytest.mark.asyncio
    async def test_delete_with_stale_version_conflicts(self):
        store = InMemoryCatalogStore()
        await store.create(make_draft("sku-1"))
        await store.update("sku-1", set_stock(1), expected_version=1)

        with pytest.raises(VersionConflictError):
            await store.delete("sku-1", expected_version=1)

        assert (await store.get("sku-1")).version == 2

    @pytest.mark.asyncio
    async def test_update_missing_item_not_found(self):
        store = InMemoryCatalogStore()

        with pytest.raises(ItemNotFoundError):
            await store.update("missing", set_stock(1), expected_version=1)


# ============================================================================
# Outbox Tests
# ============================================================================


class TestOutboxStaging:
    """Every mutation stages exactly one event."""

    @pytest.mark.asyncio
    async def test_events_staged_in_version_order(self):
        store = InMemoryCatalogStore()
        await store.create(make_draft("sku-1"))
        await store.update("sku-1", set_stock(3), expected_version=1)
        await store.delete("sku-1", expected_version=2)

        pending = await store.outbox.pending(item_id="sku-1")

        assert [(e.event.kind, e.event.version) for e in pending] == [
            (ChangeEventKind.CREATED, 1),
            (ChangeEventKind.UPDATED, 2),
            (ChangeEventKind.DELETED, 3),
        ]

    @pytest.mark.asyncio
    async def test_failed_write_stages_nothing(self):
        store = InMemoryCatalogStore()
        await store.create(make_draft("sku-1"))

        with pytest.raises(VersionConflictError):
            await store.update("sku-1", set_stock(3), expected_version=5)

        assert await store.outbox.count_pending() == 1


# ============================================================================
# Search Tests
# ============================================================================


class TestSearch:
    """Tests for filtered, paginated search."""

    @pytest.fixture
    def populated(self):
        async def build() -> InMemoryCatalogStore:
            store = InMemoryCatalogStore()
            await store.create(make_draft("sku-1", name="Red Mug", price="10.00", category="drinkware"))
            await store.create(make_draft("sku-2", name="Blue Mug", price="15.00", category="kitchen"))
            await store.create(
                make_draft("sku-3", name="Teapot", price="40.00", category="drinkware", is_active=False)
            )
            await store.create(make_draft("sku-4", name="Spoon", price="2.50"))
            await store.delete("sku-4", expected_version=1)
            return store

        return build

    @pytest.mark.asyncio
    async def test_excludes_deleted_items(self, populated):
        store = await populated()

        result = await store.search(ItemFilter(), PaginationParams())

        assert [item.item_id for item in result.items] == ["sku-1", "sku-2", "sku-3"]
        assert result.total == 3

    @pytest.mark.asyncio
    async def test_filters_by_name_and_price(self, populated):
        store = await populated()

        result = await store.search(
            ItemFilter(name="mug", max_price=Decimal("12")),
            PaginationParams(),
        )

        assert [item.item_id for item in result.items] == ["sku-1"]

    @pytest.mark.asyncio
    async def test_filters_by_active_flag(self, populated):
        store = await populated()

        result = await store.search(ItemFilter(is_active=False), PaginationParams())

        assert [item.item_id for item in result.items] == ["sku-3"]

    @pytest.mark.asyncio
    async def test_filters_by_category(self, populated):
        store = await populated()

        result = await store.search(ItemFilter(category="drinkware"), PaginationParams())
        active = await store.search(ItemFilter(category="drinkware", is_active=True), PaginationParams())

        assert [item.item_id for item in result.items] == ["sku-1", "sku-3"]
        assert [item.item_id for item in active.items] == ["sku-1"]

    @pytest.mark.asyncio
    async def test_sorts_and_paginates(self, populated):
        store = await populated()

        result = await store.search(
            ItemFilter(),
            PaginationParams(page=1, page_size=2, sort_by="price", sort_order="desc"),
        )

        assert [item.item_id for item in result.items] == ["sku-3", "sku-2"]
        assert result.total_pages == 2
        assert result.has_next is True
