"""Catalog store adapter.

The store is the single source of truth for catalog items. Every
mutation is an optimistic compare-and-swap on the item version,
committed in one transaction together with the outbox row that
describes it.
"""

from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Generic, NoReturn, Protocol, TypeVar

import structlog
from sqlalchemy import and_, func, select, text, update
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalog_service.catalog.models import CatalogItemRecord
from catalog_service.domain.entities import CatalogItem, ItemDraft, Mutator, utcnow
from catalog_service.domain.events import ChangeEvent, ChangeEventKind, OutboxEntry, OutboxStatus
from catalog_service.domain.exceptions import (
    DuplicateItemError,
    ItemNotFoundError,
    ItemValidationError,
    StoreUnavailableError,
    VersionConflictError,
)
from catalog_service.infrastructure.models import OutboxEventModel

logger = structlog.get_logger()

T = TypeVar("T")


# ============================================================================
# Query Parameters
# ============================================================================


@dataclass
class ItemFilter:
    """Filter parameters for item search.

    Attributes:
        name: Case-insensitive substring of the item name.
        min_price: Minimum price (inclusive).
        max_price: Maximum price (inclusive).
        is_active: Filter by active flag.
        category: Exact category label.
    """

    name: str | None = None
    min_price: Any = None
    max_price: Any = None
    is_active: bool | None = None
    category: str | None = None


SORT_FIELDS = ("item_id", "name", "price", "updated_at")


@dataclass
class PaginationParams:
    """Pagination parameters.

    Attributes:
        page: Page number (1-indexed).
        page_size: Items per page.
        sort_by: Sort field.
        sort_order: Sort order (asc/desc).
    """

    page: int = 1
    page_size: int = 20
    sort_by: str = "item_id"
    sort_order: str = "asc"

    @property
    def offset(self) -> int:
        """Calculate offset from page number."""
        return (self.page - 1) * self.page_size

    @property
    def limit(self) -> int:
        """Get limit (alias for page_size)."""
        return self.page_size


@dataclass
class PaginatedResult(Generic[T]):
    """Paginated result container.

    Attributes:
        items: List of items.
        total: Total count.
        page: Current page.
        page_size: Items per page.
    """

    items: list[T]
    total: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        """Calculate total pages."""
        return (self.total + self.page_size - 1) // self.page_size

    @property
    def has_next(self) -> bool:
        """Check if there's a next page."""
        return self.page < self.total_pages


# ============================================================================
# Contracts
# ============================================================================


class OutboxStore(Protocol):
    """Durable queue of staged change events."""

    async def pending(self, limit: int = 100, item_id: str | None = None) -> list[OutboxEntry]:
        """Pending entries ordered by item and version."""
        ...

    async def due_items(self, now: datetime, limit: int = 100) -> list[str]:
        """Items whose earliest pending event is due, longest waiting first."""
        ...

    async def mark_published(self, event_id: str, published_at: datetime) -> None:
        ...

    async def mark_failed(
        self,
        event_id: str,
        error: str,
        next_attempt_at: datetime,
        dead: bool = False,
    ) -> None:
        ...

    async def count_pending(self) -> int:
        ...


class CatalogStore(Protocol):
    """Operations every store adapter provides."""

    @property
    def outbox(self) -> OutboxStore:
        ...

    async def get(self, item_id: str) -> CatalogItem:
        ...

    async def create(self, draft: ItemDraft) -> CatalogItem:
        ...

    async def update(self, item_id: str, mutator: Mutator, expected_version: int) -> CatalogItem:
        ...

    async def delete(self, item_id: str, expected_version: int) -> int:
        ...

    async def search(
        self, filters: ItemFilter, pagination: PaginationParams
    ) -> PaginatedResult[CatalogItem]:
        ...

    async def ping(self) -> bool:
        ...


def apply_mutator(current: CatalogItem, mutator: Mutator) -> CatalogItem:
    """Run a mutator and enforce identity immutability.

    Raises:
        ItemValidationError: If the mutator changed the identity.
    """
    mutated = mutator(current)
    if mutated.item_id != current.item_id:
        raise ItemValidationError("item_id", "is immutable")
    return mutated


# ============================================================================
# SQL Store
# ============================================================================


_UNAVAILABLE_ERRORS = (OperationalError, InterfaceError, OSError, TimeoutError)


@asynccontextmanager
async def _transaction(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    """Open a session with a transaction that commits on success.

    Driver and connection failures surface as StoreUnavailableError.
    """
    try:
        async with session_factory() as session:
            async with session.begin():
                yield session
    except _UNAVAILABLE_ERRORS as e:
        logger.error("Catalog store unavailable", error=str(e))
        raise StoreUnavailableError(str(e)) from e


class SqlCatalogStore:
    """Store adapter backed by SQLAlchemy async sessions.

    Each public call runs in its own transaction. Writes use a
    conditional UPDATE on (item_id, version) so concurrent writers
    holding the same expected version cannot both succeed.

    Example usage:
        store = SqlCatalogStore(create_session_factory(engine))
        item = await store.create(ItemDraft(item_id="sku-1", name="Mug", price=Decimal("10")))
        item = await store.update("sku-1", lambda i: replace(i, stock_quantity=3), 1)
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """Initialize store with a session factory.

        Args:
            session_factory: Factory for async SQLAlchemy sessions.
        """
        self._session_factory = session_factory
        self._outbox = SqlOutboxStore(session_factory)

    @property
    def outbox(self) -> "SqlOutboxStore":
        """Outbox sharing this store's database."""
        return self._outbox

    async def _load(self, session: AsyncSession, item_id: str) -> CatalogItemRecord:
        record = await session.get(CatalogItemRecord, item_id)
        if record is None or record.deleted:
            raise ItemNotFoundError(item_id)
        return record

    async def _raise_lost_race(
        self, session: AsyncSession, item_id: str, expected_version: int
    ) -> NoReturn:
        """Explain why a conditional update matched no row."""
        result = await session.execute(
            select(CatalogItemRecord.version, CatalogItemRecord.deleted).where(
                CatalogItemRecord.item_id == item_id
            )
        )
        row = result.one_or_none()
        if row is None or row.deleted:
            raise ItemNotFoundError(item_id)
        raise VersionConflictError(item_id, expected_version, row.version)

    async def get(self, item_id: str) -> CatalogItem:
        """Get a live item.

        Raises:
            ItemNotFoundError: If the item does not exist or was deleted.
        """
        async with _transaction(self._session_factory) as session:
            record = await self._load(session, item_id)
            return record.to_item()

    async def create(self, draft: ItemDraft) -> CatalogItem:
        """Insert version 1 of a new item and stage its created event.

        Raises:
            DuplicateItemError: If the identity exists or was deleted.
        """
        item = draft.to_item()
        async with _transaction(self._session_factory) as session:
            existing = await session.get(CatalogItemRecord, draft.item_id)
            if existing is not None:
                raise DuplicateItemError(draft.item_id, deleted=existing.deleted)

            session.add(CatalogItemRecord.from_item(item))
            session.add(OutboxEventModel.from_event(ChangeEvent.for_item(ChangeEventKind.CREATED, item)))
            try:
                await session.flush()
            except IntegrityError as e:
                raise DuplicateItemError(draft.item_id) from e

        logger.info("Catalog item created", item_id=item.item_id, version=item.version)
        return item

    async def update(self, item_id: str, mutator: Mutator, expected_version: int) -> CatalogItem:
        """Apply a mutator if the stored version equals expected_version.

        Args:
            item_id: Item identity.
            mutator: Function producing the new snapshot from the current one.
            expected_version: Version the caller last observed.

        Returns:
            The new snapshot at expected_version + 1.

        Raises:
            ItemNotFoundError: If the item does not exist or was deleted.
            VersionConflictError: If the stored version moved.
        """
        async with _transaction(self._session_factory) as session:
            record = await self._load(session, item_id)
            if record.version != expected_version:
                raise VersionConflictError(item_id, expected_version, record.version)

            current = record.to_item()
            mutated = apply_mutator(current, mutator)
            now = utcnow()
            new_item = replace(
                mutated,
                version=expected_version + 1,
                created_at=current.created_at,
                updated_at=now,
            )

            result = await session.execute(
                update(CatalogItemRecord)
                .where(
                    CatalogItemRecord.item_id == item_id,
                    CatalogItemRecord.version == expected_version,
                    CatalogItemRecord.deleted.is_(False),
                )
                .values(
                    name=new_item.name,
                    description=new_item.description,
                    category=new_item.category,
                    price=new_item.price,
                    stock_quantity=new_item.stock_quantity,
                    is_active=new_item.is_active,
                    version=new_item.version,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await self._raise_lost_race(session, item_id, expected_version)

            session.add(
                OutboxEventModel.from_event(ChangeEvent.for_item(ChangeEventKind.UPDATED, new_item))
            )

        logger.info("Catalog item updated", item_id=item_id, version=new_item.version)
        return new_item

    async def delete(self, item_id: str, expected_version: int) -> int:
        """Tombstone an item if the stored version equals expected_version.

        Returns:
            The tombstone version (expected_version + 1).

        Raises:
            ItemNotFoundError: If the item does not exist or was deleted.
            VersionConflictError: If the stored version moved.
        """
        now = utcnow()
        tombstone_version = expected_version + 1
        async with _transaction(self._session_factory) as session:
            result = await session.execute(
                update(CatalogItemRecord)
                .where(
                    CatalogItemRecord.item_id == item_id,
                    CatalogItemRecord.version == expected_version,
                    CatalogItemRecord.deleted.is_(False),
                )
                .values(
                    deleted=True,
                    deleted_at=now,
                    version=tombstone_version,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await self._raise_lost_race(session, item_id, expected_version)

            session.add(
                OutboxEventModel.from_event(ChangeEvent.deleted(item_id, tombstone_version, now))
            )

        logger.info("Catalog item deleted", item_id=item_id, version=tombstone_version)
        return tombstone_version

    async def search(
        self, filters: ItemFilter, pagination: PaginationParams
    ) -> PaginatedResult[CatalogItem]:
        """Find live items with filtering, sorting, and pagination.

        Args:
            filters: Filter parameters.
            pagination: Pagination parameters.

        Returns:
            Paginated items.
        """
        conditions = [CatalogItemRecord.deleted.is_(False)]

        if filters.name:
            conditions.append(CatalogItemRecord.name.ilike(f"%{filters.name}%"))

        if filters.min_price is not None:
            conditions.append(CatalogItemRecord.price >= filters.min_price)

        if filters.max_price is not None:
            conditions.append(CatalogItemRecord.price <= filters.max_price)

        if filters.is_active is not None:
            conditions.append(CatalogItemRecord.is_active.is_(filters.is_active))

        if filters.category is not None:
            conditions.append(CatalogItemRecord.category == filters.category)

        sort_column = self._get_sort_column(pagination.sort_by)
        order = sort_column.desc() if pagination.sort_order.lower() == "desc" else sort_column.asc()

        query = (
            select(CatalogItemRecord)
            .where(and_(*conditions))
            .order_by(order, CatalogItemRecord.item_id.asc())
            .limit(pagination.limit)
            .offset(pagination.offset)
        )
        count_query = select(func.count(CatalogItemRecord.item_id)).where(and_(*conditions))

        async with _transaction(self._session_factory) as session:
            records: Sequence[CatalogItemRecord] = (await session.execute(query)).scalars().all()
            total = (await session.execute(count_query)).scalar_one()

        return PaginatedResult(
            items=[record.to_item() for record in records],
            total=total,
            page=pagination.page,
            page_size=pagination.page_size,
        )

    async def ping(self) -> bool:
        """Check store connectivity.

        Returns:
            True if a trivial query succeeds.
        """
        try:
            async with _transaction(self._session_factory) as session:
                await session.execute(text("SELECT 1"))
        except StoreUnavailableError:
            return False
        return True

    def _get_sort_column(self, sort_by: str) -> Any:
        """Get SQLAlchemy column for sorting.

        Args:
            sort_by: Sort field name.

        Returns:
            SQLAlchemy column.
        """
        columns = {
            "item_id": CatalogItemRecord.item_id,
            "name": CatalogItemRecord.name,
            "price": CatalogItemRecord.price,
            "updated_at": CatalogItemRecord.updated_at,
        }
        return columns.get(sort_by, CatalogItemRecord.item_id)


class SqlOutboxStore:
    """Outbox rows in the catalog database."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def pending(self, limit: int = 100, item_id: str | None = None) -> list[OutboxEntry]:
        """Get pending entries in (item_id, version) order.

        Args:
            limit: Maximum entries to return.
            item_id: Restrict to one item.

        Returns:
            Pending outbox entries.
        """
        query = select(OutboxEventModel).where(
            OutboxEventModel.status == OutboxStatus.PENDING.value
        )
        if item_id is not None:
            query = query.where(OutboxEventModel.item_id == item_id)
        query = query.order_by(OutboxEventModel.item_id, OutboxEventModel.version).limit(limit)

        async with _transaction(self._session_factory) as session:
            rows = (await session.execute(query)).scalars().all()
            return [row.to_entry() for row in rows]

    async def due_items(self, now: datetime, limit: int = 100) -> list[str]:
        """Items whose earliest pending event is due, longest waiting first.

        Only the head of each item's queue is considered, so an item
        blocked by a backed-off event does not take a slot in the batch.

        Args:
            now: Current time.
            limit: Maximum items to return.

        Returns:
            Item identities.
        """
        head = (
            select(
                OutboxEventModel.item_id,
                func.min(OutboxEventModel.version).label("version"),
            )
            .where(OutboxEventModel.status == OutboxStatus.PENDING.value)
            .group_by(OutboxEventModel.item_id)
            .subquery()
        )
        query = (
            select(OutboxEventModel.item_id)
            .join(
                head,
                and_(
                    OutboxEventModel.item_id == head.c.item_id,
                    OutboxEventModel.version == head.c.version,
                ),
            )
            .where(OutboxEventModel.next_attempt_at <= now)
            .order_by(OutboxEventModel.next_attempt_at, OutboxEventModel.item_id)
            .limit(limit)
        )

        async with _transaction(self._session_factory) as session:
            return list((await session.execute(query)).scalars().all())

    async def mark_published(self, event_id: str, published_at: datetime) -> None:
        """Record a successful publish."""
        async with _transaction(self._session_factory) as session:
            await session.execute(
                update(OutboxEventModel)
                .where(OutboxEventModel.event_id == event_id)
                .values(
                    status=OutboxStatus.PUBLISHED.value,
                    published_at=published_at,
                    last_error=None,
                )
            )

    async def mark_failed(
        self,
        event_id: str,
        error: str,
        next_attempt_at: datetime,
        dead: bool = False,
    ) -> None:
        """Record a failed publish and schedule the next attempt."""
        status = OutboxStatus.DEAD if dead else OutboxStatus.PENDING
        async with _transaction(self._session_factory) as session:
            await session.execute(
                update(OutboxEventModel)
                .where(OutboxEventModel.event_id == event_id)
                .values(
                    status=status.value,
                    attempts=OutboxEventModel.attempts + 1,
                    last_error=error[:2000],
                    next_attempt_at=next_attempt_at,
                )
            )

    async def count_pending(self) -> int:
        """Count events awaiting publication."""
        async with _transaction(self._session_factory) as session:
            result = await session.execute(
                select(func.count(OutboxEventModel.event_id)).where(
                    OutboxEventModel.status == OutboxStatus.PENDING.value
                )
            )
            return result.scalar_one()
