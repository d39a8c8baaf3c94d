"""In-memory catalog store and outbox.

Used for local development and tests. Mutations take a single asyncio
lock for the check-and-increment so they behave like the SQL store's
conditional update under concurrent callers.
"""

import asyncio
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal

import structlog

from catalog_service.catalog.repository import (
    SORT_FIELDS,
    ItemFilter,
    PaginatedResult,
    PaginationParams,
    apply_mutator,
)
from catalog_service.domain.entities import CatalogItem, ItemDraft, Mutator, utcnow
from catalog_service.domain.events import ChangeEvent, ChangeEventKind, OutboxEntry, OutboxStatus
from catalog_service.domain.exceptions import (
    DuplicateItemError,
    ItemNotFoundError,
    VersionConflictError,
)

logger = structlog.get_logger()


@dataclass
class _Row:
    item: CatalogItem
    deleted: bool = False


class InMemoryOutboxStore:
    """Outbox entries kept in process memory."""

    def __init__(self) -> None:
        self._entries: dict[str, OutboxEntry] = {}

    def stage(self, event: ChangeEvent) -> None:
        """Stage an event. Called by the store while it holds its lock."""
        self._entries[event.event_id] = OutboxEntry(event=event, next_attempt_at=event.occurred_at)

    def entries(self) -> list[OutboxEntry]:
        """All entries, in staging order."""
        return list(self._entries.values())

    async def pending(self, limit: int = 100, item_id: str | None = None) -> list[OutboxEntry]:
        """Get pending entries in (item_id, version) order."""
        entries = [
            entry
            for entry in self._entries.values()
            if entry.status == OutboxStatus.PENDING
            and (item_id is None or entry.event.item_id == item_id)
        ]
        entries.sort(key=lambda entry: (entry.event.item_id, entry.event.version))
        return entries[:limit]

    async def due_items(self, now: datetime, limit: int = 100) -> list[str]:
        """Items whose earliest pending event is due, longest waiting first."""
        heads: dict[str, OutboxEntry] = {}
        for entry in self._entries.values():
            if entry.status != OutboxStatus.PENDING:
                continue
            head = heads.get(entry.event.item_id)
            if head is None or entry.event.version < head.event.version:
                heads[entry.event.item_id] = entry
        due = sorted(
            (entry for entry in heads.values() if entry.next_attempt_at <= now),
            key=lambda entry: (entry.next_attempt_at, entry.event.item_id),
        )
        return [entry.event.item_id for entry in due[:limit]]

    async def mark_published(self, event_id: str, published_at: datetime) -> None:
        """Record a successful publish."""
        entry = self._entries[event_id]
        entry.status = OutboxStatus.PUBLISHED
        entry.published_at = published_at
        entry.last_error = None

    async def mark_failed(
        self,
        event_id: str,
        error: str,
        next_attempt_at: datetime,
        dead: bool = False,
    ) -> None:
        """Record a failed publish and schedule the next attempt."""
        entry = self._entries[event_id]
        entry.attempts += 1
        entry.last_error = error
        entry.next_attempt_at = next_attempt_at
        if dead:
            entry.status = OutboxStatus.DEAD

    async def count_pending(self) -> int:
        """Count events awaiting publication."""
        return sum(1 for entry in self._entries.values() if entry.status == OutboxStatus.PENDING)


class InMemoryCatalogStore:
    """Store adapter keeping rows in a dict.

    Deleted rows remain as tombstones, matching the SQL store.
    """

    def __init__(self) -> None:
        self._rows: dict[str, _Row] = {}
        self._lock = asyncio.Lock()
        self._outbox = InMemoryOutboxStore()

    @property
    def outbox(self) -> InMemoryOutboxStore:
        """Outbox sharing this store's lock."""
        return self._outbox

    def _live(self, item_id: str) -> _Row:
        row = self._rows.get(item_id)
        if row is None or row.deleted:
            raise ItemNotFoundError(item_id)
        return row

    async def get(self, item_id: str) -> CatalogItem:
        """Get a live item."""
        return self._live(item_id).item

    async def create(self, draft: ItemDraft) -> CatalogItem:
        """Insert version 1 of a new item and stage its created event."""
        async with self._lock:
            existing = self._rows.get(draft.item_id)
            if existing is not None:
                raise DuplicateItemError(draft.item_id, deleted=existing.deleted)
            item = draft.to_item()
            self._rows[item.item_id] = _Row(item=item)
            self._outbox.stage(ChangeEvent.for_item(ChangeEventKind.CREATED, item))

        logger.info("Catalog item created", item_id=item.item_id, version=item.version)
        return item

    async def update(self, item_id: str, mutator: Mutator, expected_version: int) -> CatalogItem:
        """Apply a mutator if the stored version equals expected_version."""
        async with self._lock:
            row = self._live(item_id)
            if row.item.version != expected_version:
                raise VersionConflictError(item_id, expected_version, row.item.version)
            mutated = apply_mutator(row.item, mutator)
            item = replace(
                mutated,
                version=expected_version + 1,
                created_at=row.item.created_at,
                updated_at=utcnow(),
            )
            row.item = item
            self._outbox.stage(ChangeEvent.for_item(ChangeEventKind.UPDATED, item))

        logger.info("Catalog item updated", item_id=item_id, version=item.version)
        return item

    async def delete(self, item_id: str, expected_version: int) -> int:
        """Tombstone an item if the stored version equals expected_version."""
        async with self._lock:
            row = self._live(item_id)
            if row.item.version != expected_version:
                raise VersionConflictError(item_id, expected_version, row.item.version)
            now = utcnow()
            tombstone_version = expected_version + 1
            row.item = replace(row.item, version=tombstone_version, updated_at=now)
            row.deleted = True
            self._outbox.stage(ChangeEvent.deleted(item_id, tombstone_version, now))

        logger.info("Catalog item deleted", item_id=item_id, version=tombstone_version)
        return tombstone_version

    async def search(
        self, filters: ItemFilter, pagination: PaginationParams
    ) -> PaginatedResult[CatalogItem]:
        """Find live items with filtering, sorting, and pagination."""
        items = [row.item for row in self._rows.values() if not row.deleted]

        if filters.name:
            needle = filters.name.lower()
            items = [item for item in items if needle in item.name.lower()]
        if filters.min_price is not None:
            items = [item for item in items if item.price >= Decimal(filters.min_price)]
        if filters.max_price is not None:
            items = [item for item in items if item.price <= Decimal(filters.max_price)]
        if filters.is_active is not None:
            items = [item for item in items if item.is_active is filters.is_active]
        if filters.category is not None:
            items = [item for item in items if item.category == filters.category]

        sort_by = pagination.sort_by if pagination.sort_by in SORT_FIELDS else "item_id"
        items.sort(key=lambda item: item.item_id)
        items.sort(key=lambda item: getattr(item, sort_by), reverse=pagination.sort_order.lower() == "desc")

        start = pagination.offset
        return PaginatedResult(
            items=items[start:start + pagination.limit],
            total=len(items),
            page=pagination.page,
            page_size=pagination.page_size,
        )

    async def ping(self) -> bool:
        """The in-memory store is always reachable."""
        return True
