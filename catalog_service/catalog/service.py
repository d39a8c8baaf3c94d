"""Catalog service for item operations.

Orchestrates the store adapter, the read-through cache and the outbox
relay. Every write follows the same pipeline:

    validate -> store mutate -> cache refresh -> event dispatch -> respond

The store is authoritative. Once it commits, a failing cache or broker
never turns the write into an error: the cache falls back to
invalidation and the staged event stays in the outbox for the relay.
"""

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import TypeVar

import structlog

from catalog_service.application.outbox_relay import OutboxRelay
from catalog_service.catalog.cache import CatalogCache, InMemoryCacheBackend
from catalog_service.catalog.memory import InMemoryCatalogStore
from catalog_service.catalog.repository import (
    CatalogStore,
    ItemFilter,
    PaginatedResult,
    PaginationParams,
    SqlCatalogStore,
)
from catalog_service.domain.entities import (
    CatalogItem,
    ItemChanges,
    ItemDraft,
    validate_item_id,
)
from catalog_service.domain.exceptions import (
    ItemValidationError,
    OperationTimeoutError,
    UnavailableError,
    VersionConflictError,
)
from catalog_service.infrastructure.config import settings
from catalog_service.infrastructure.database import create_session_factory, get_engine
from catalog_service.infrastructure.event_publisher import (
    InMemoryEventPublisher,
    RedisStreamsPublisher,
)
from catalog_service.infrastructure.inventory_client import (
    InventoryClient,
    InventoryClientError,
    InventoryLevel,
)
from catalog_service.infrastructure.redis_cache import RedisCacheBackend

logger = structlog.get_logger()

T = TypeVar("T")


@dataclass
class ItemAvailability:
    """Catalog stock combined with the inventory service's live view.

    Attributes:
        item_id: Item identity.
        version: Catalog version the view was built from.
        stock_quantity: Units on hand according to the catalog.
        is_active: Whether the item is offered for sale.
        inventory: Live inventory level, or None if unknown or unreachable.
    """

    item_id: str
    version: int
    stock_quantity: int
    is_active: bool
    inventory: InventoryLevel | None = None

    @property
    def available(self) -> bool:
        """Whether the item can currently be sold."""
        if not self.is_active:
            return False
        if self.inventory is not None:
            return self.inventory.in_stock
        return self.stock_quantity > 0


class CatalogService:
    """Service for catalog item operations.

    Example usage:
        service = CatalogService(store, CatalogCache(backend), relay)
        item = await service.create_item(ItemDraft("sku-1", "Mug", Decimal("10"), 5))
        item = await service.update_item("sku-1", ItemChanges(stock_quantity=3), 1)
    """

    def __init__(
        self,
        store: CatalogStore,
        cache: CatalogCache,
        relay: OutboxRelay,
        inventory: InventoryClient | None = None,
        operation_timeout_seconds: float = 5.0,
    ) -> None:
        """Initialize catalog service.

        Args:
            store: Authoritative store adapter.
            cache: Read-through cache.
            relay: Outbox relay that publishes change events.
            inventory: Optional inventory service client.
            operation_timeout_seconds: Deadline for each operation.
        """
        self.store = store
        self.cache = cache
        self.relay = relay
        self.inventory = inventory
        self.operation_timeout_seconds = operation_timeout_seconds

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def start(self) -> None:
        """Start the background outbox relay."""
        await self.relay.start()

    async def stop(self) -> None:
        """Stop the relay and close client connections."""
        await self.relay.stop()
        for resource in (self.cache.backend, self.relay.publisher, self.inventory):
            close = getattr(resource, "close", None)
            if close is not None:
                await close()

    # ========================================================================
    # Pipeline helpers
    # ========================================================================

    @asynccontextmanager
    async def _deadline(self, operation: str) -> AsyncIterator[None]:
        try:
            async with asyncio.timeout(self.operation_timeout_seconds):
                yield
        except TimeoutError as e:
            logger.warning(
                "Catalog operation timed out",
                operation=operation,
                timeout_seconds=self.operation_timeout_seconds,
            )
            raise OperationTimeoutError(operation, self.operation_timeout_seconds) from e

    async def _invalidate_after_abort(self, item_id: str, operation: str) -> None:
        # The store may or may not have committed, so drop whatever is cached.
        logger.warning("Catalog write aborted, invalidating cache", item_id=item_id, operation=operation)
        await asyncio.shield(self.cache.invalidate(item_id))

    async def _publish(self, item_id: str) -> None:
        try:
            async with asyncio.timeout(self.operation_timeout_seconds):
                await self.relay.dispatch(item_id)
        except (UnavailableError, TimeoutError) as e:
            logger.warning(
                "Change event dispatch deferred to relay",
                item_id=item_id,
                error=str(e),
            )

    async def _write(
        self,
        operation: str,
        item_id: str,
        mutate: Callable[[], Awaitable[T]],
        refresh: Callable[[T], Awaitable[object]],
    ) -> T:
        """Run one write through the store, cache and event steps.

        Args:
            operation: Operation name for logs and errors.
            item_id: Identity of the written item.
            mutate: Store mutation, run under the operation deadline.
            refresh: Cache step run with the mutation result.

        Raises:
            OperationTimeoutError: If the store mutation missed its deadline.
        """
        try:
            async with self._deadline(operation):
                result = await mutate()
            await refresh(result)
            await self._publish(item_id)
            return result
        except (OperationTimeoutError, asyncio.CancelledError):
            await self._invalidate_after_abort(item_id, operation)
            raise

    # ========================================================================
    # Reads
    # ========================================================================

    async def get_item(self, item_id: str) -> CatalogItem:
        """Get an item, from cache when possible.

        Raises:
            ItemNotFoundError: If the item does not exist or was deleted.
            StoreUnavailableError: If the store cannot be reached on a miss.
            OperationTimeoutError: If the read missed its deadline.
        """
        validate_item_id(item_id)
        return await self.cache.get_or_load(item_id, self._load_item)

    async def _load_item(self, item_id: str) -> CatalogItem:
        # Only the store read is under the deadline; cache calls carry their own.
        async with self._deadline("get_item"):
            return await self.store.get(item_id)

    async def search_items(
        self,
        filters: ItemFilter | None = None,
        pagination: PaginationParams | None = None,
    ) -> PaginatedResult[CatalogItem]:
        """Search live items in the store.

        Args:
            filters: Optional filter parameters.
            pagination: Optional pagination parameters.

        Returns:
            Paginated items.
        """
        async with self._deadline("search_items"):
            return await self.store.search(filters or ItemFilter(), pagination or PaginationParams())

    async def get_availability(self, item_id: str) -> ItemAvailability:
        """Combine the catalog item with its live inventory level.

        Inventory failures leave the inventory view empty instead of
        failing the call.

        Raises:
            ItemNotFoundError: If the item does not exist or was deleted.
        """
        item = await self.get_item(item_id)
        availability = ItemAvailability(
            item_id=item.item_id,
            version=item.version,
            stock_quantity=item.stock_quantity,
            is_active=item.is_active,
        )
        if self.inventory is None:
            return availability

        try:
            async with asyncio.timeout(self.operation_timeout_seconds):
                availability.inventory = await self.inventory.get_level_by_sku(item_id)
        except (InventoryClientError, TimeoutError) as e:
            logger.warning("Inventory lookup failed", item_id=item_id, error=str(e))
        return availability

    # ========================================================================
    # Writes
    # ========================================================================

    async def create_item(self, draft: ItemDraft) -> CatalogItem:
        """Create version 1 of a new item.

        Raises:
            ItemValidationError: If the draft is malformed.
            DuplicateItemError: If the identity is taken or was deleted.
        """
        draft = draft.validated()
        return await self._write(
            "create_item",
            draft.item_id,
            lambda: self.store.create(draft),
            self.cache.refresh,
        )

    async def update_item(
        self, item_id: str, changes: ItemChanges, expected_version: int
    ) -> CatalogItem:
        """Apply a partial update if the item is still at expected_version.

        An update that would not change any attribute returns the current
        item without producing a new version or event.

        Args:
            item_id: Item identity.
            changes: Attributes to change.
            expected_version: Version the caller last observed.

        Returns:
            The updated (or unchanged) item.

        Raises:
            ItemNotFoundError: If the item does not exist or was deleted.
            VersionConflictError: If the item moved past expected_version.
            ItemValidationError: If the changes are malformed.
        """
        validate_item_id(item_id)
        if expected_version < 1:
            raise ItemValidationError("expected_version", "must be at least 1")
        changes = changes.validated()

        async with self._deadline("update_item"):
            current = await self.store.get(item_id)
        if current.version != expected_version:
            raise VersionConflictError(item_id, expected_version, current.version)
        if changes.is_noop(current):
            logger.debug("Catalog update is a no-op", item_id=item_id, version=current.version)
            return current

        return await self._write(
            "update_item",
            item_id,
            lambda: self.store.update(item_id, changes.apply, expected_version),
            self.cache.refresh,
        )

    async def deactivate_item(self, item_id: str, expected_version: int) -> CatalogItem:
        """Stop offering an item for sale."""
        return await self.update_item(item_id, ItemChanges(is_active=False), expected_version)

    async def delete_item(self, item_id: str, expected_version: int) -> int:
        """Delete an item if it is still at expected_version.

        The row becomes a tombstone and a tombstone entry replaces any
        cached snapshot.

        Returns:
            The tombstone version.

        Raises:
            ItemNotFoundError: If the item does not exist or was deleted.
            VersionConflictError: If the item moved past expected_version.
        """
        validate_item_id(item_id)
        if expected_version < 1:
            raise ItemValidationError("expected_version", "must be at least 1")

        async def cache_tombstone(tombstone_version: int) -> bool:
            return await self.cache.put_tombstone(item_id, tombstone_version)

        return await self._write(
            "delete_item",
            item_id,
            lambda: self.store.delete(item_id, expected_version),
            cache_tombstone,
        )

    # ========================================================================
    # Readiness
    # ========================================================================

    async def readiness(self) -> dict[str, object]:
        """Collect readiness information for the health endpoint."""
        store_ok = await self.store.ping()
        pending_events: int | None = None
        if store_ok:
            try:
                pending_events = await self.store.outbox.count_pending()
            except UnavailableError:
                pending_events = None
        return {
            "store": store_ok,
            "pending_events": pending_events,
            "cache_reachable": await self.cache.ping(),
            "cache": self.cache.stats(),
        }


# ============================================================================
# Factory
# ============================================================================


def build_catalog_service() -> CatalogService:
    """Build a service wired from settings.

    Returns:
        CatalogService with the configured store, cache and publisher.
    """
    if settings.store_backend == "memory":
        store: CatalogStore = InMemoryCatalogStore()
    else:
        store = SqlCatalogStore(create_session_factory(get_engine()))

    if settings.cache_backend == "memory":
        backend = InMemoryCacheBackend(
            max_entries=settings.cache_max_entries,
            ttl_seconds=settings.cache_ttl_seconds,
        )
    else:
        backend = RedisCacheBackend(
            url=settings.redis_url,
            ttl_seconds=settings.cache_ttl_seconds,
            key_prefix=settings.cache_key_prefix,
            socket_timeout=settings.redis_socket_timeout_seconds,
            socket_connect_timeout=settings.redis_connect_timeout_seconds,
        )

    if settings.event_backend == "memory":
        publisher = InMemoryEventPublisher()
    else:
        publisher = RedisStreamsPublisher(
            url=settings.redis_url,
            stream_prefix=settings.event_stream_prefix,
            partitions=settings.event_stream_partitions,
            max_stream_length=settings.event_stream_maxlen,
            socket_timeout=settings.redis_socket_timeout_seconds,
            socket_connect_timeout=settings.redis_connect_timeout_seconds,
        )

    relay = OutboxRelay(
        store.outbox,
        publisher,
        batch_size=settings.outbox_batch_size,
        poll_interval_seconds=settings.outbox_poll_interval_seconds,
        backoff_base_seconds=settings.outbox_backoff_base_seconds,
        backoff_max_seconds=settings.outbox_backoff_max_seconds,
        max_attempts=settings.outbox_max_attempts,
    )

    inventory = None
    if settings.inventory_service_url:
        inventory = InventoryClient(
            settings.inventory_service_url,
            timeout=settings.inventory_timeout_seconds,
        )

    logger.info(
        "Catalog service configured",
        store_backend=settings.store_backend,
        cache_backend=settings.cache_backend,
        event_backend=settings.event_backend,
    )
    return CatalogService(
        store,
        CatalogCache(backend, timeout_seconds=settings.cache_call_timeout_seconds),
        relay,
        inventory=inventory,
        operation_timeout_seconds=settings.operation_timeout_seconds,
    )


_catalog_service: CatalogService | None = None


def get_catalog_service() -> CatalogService:
    """Get catalog service singleton."""
    global _catalog_service
    if _catalog_service is None:
        _catalog_service = build_catalog_service()
    return _catalog_service


def reset_catalog_service() -> None:
    """Reset catalog service (for testing)."""
    global _catalog_service
    _catalog_service = None
