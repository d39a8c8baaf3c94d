"""Catalog cache layer.

A read-through cache in front of the store adapter. The cache is an
advisory view: every backend failure is absorbed here and turned into
a miss (reads) or a logged no-op (writes).

Entries carry the item version and a put only replaces an entry whose
version is lower, so a slow read that loaded an old snapshot can never
overwrite the snapshot a concurrent write already cached. Deletes leave
a tombstone entry at the tombstone version for the same reason.
"""

import asyncio
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol, Self, TypeVar

import structlog

from catalog_service.domain.entities import CatalogItem
from catalog_service.domain.exceptions import CacheUnavailableError, ItemNotFoundError

logger = structlog.get_logger()

T = TypeVar("T")


@dataclass(frozen=True)
class CacheEntry:
    """Cached snapshot of one item.

    Attributes:
        item_id: Item identity.
        version: Version of the snapshot or tombstone.
        item: The snapshot, or None for a tombstone.
        stored_at: When the entry was written.
    """

    item_id: str
    version: int
    item: CatalogItem | None
    stored_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_tombstone(self) -> bool:
        """Whether this entry records a deletion."""
        return self.item is None

    @classmethod
    def for_item(cls, item: CatalogItem) -> Self:
        return cls(item_id=item.item_id, version=item.version, item=item)

    @classmethod
    def tombstone(cls, item_id: str, version: int) -> Self:
        return cls(item_id=item_id, version=version, item=None)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for external cache servers."""
        return {
            "item_id": self.item_id,
            "version": self.version,
            "item": self.item.to_dict() if self.item is not None else None,
            "stored_at": self.stored_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        """Rebuild an entry from to_dict() output."""
        item_data = data.get("item")
        return cls(
            item_id=data["item_id"],
            version=int(data["version"]),
            item=CatalogItem.from_dict(item_data) if item_data is not None else None,
            stored_at=datetime.fromisoformat(data["stored_at"]),
        )


class CacheBackend(Protocol):
    """Key-value storage for cache entries.

    Implementations raise CacheUnavailableError when unreachable.
    """

    async def get(self, item_id: str) -> CacheEntry | None:
        ...

    async def put_if_newer(self, entry: CacheEntry) -> bool:
        """Store entry only if no entry with version >= entry.version exists."""
        ...

    async def delete(self, item_id: str) -> None:
        ...

    async def ping(self) -> bool:
        ...


class InMemoryCacheBackend:
    """Bounded local cache with TTL expiry and LRU eviction.

    All operations complete without awaiting, so each one is atomic
    with respect to other tasks on the event loop.
    """

    def __init__(
        self,
        max_entries: int = 10_000,
        ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize backend.

        Args:
            max_entries: Capacity before least-recently-used entries are evicted.
            ttl_seconds: Entry lifetime.
            clock: Monotonic clock, injectable for tests.
        """
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: OrderedDict[str, tuple[CacheEntry, float]] = OrderedDict()
        self.evictions = 0

    def __len__(self) -> int:
        return len(self._entries)

    def _live(self, item_id: str) -> CacheEntry | None:
        stored = self._entries.get(item_id)
        if stored is None:
            return None
        entry, expires_at = stored
        if self._clock() >= expires_at:
            del self._entries[item_id]
            return None
        return entry

    async def get(self, item_id: str) -> CacheEntry | None:
        entry = self._live(item_id)
        if entry is not None:
            self._entries.move_to_end(item_id)
        return entry

    async def put_if_newer(self, entry: CacheEntry) -> bool:
        current = self._live(entry.item_id)
        if current is not None and current.version >= entry.version:
            return False

        self._entries[entry.item_id] = (entry, self._clock() + self.ttl_seconds)
        self._entries.move_to_end(entry.item_id)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)
            self.evictions += 1
        return True

    async def delete(self, item_id: str) -> None:
        self._entries.pop(item_id, None)

    async def ping(self) -> bool:
        return True


@dataclass
class CacheStats:
    """Cache counters."""

    hits: int = 0
    misses: int = 0
    rejected_puts: int = 0
    errors: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "rejected_puts": self.rejected_puts,
            "errors": self.errors,
        }


class CatalogCache:
    """Read-through cache with a monotonic-version guard.

    Example usage:
        cache = CatalogCache(InMemoryCacheBackend(ttl_seconds=60))
        item = await cache.get_or_load("sku-1", store.get)
    """

    def __init__(self, backend: CacheBackend, timeout_seconds: float = 0.5) -> None:
        """Initialize cache.

        Args:
            backend: Storage for entries.
            timeout_seconds: Limit for each backend call. A call that
                takes longer counts as a backend failure.
        """
        self.backend = backend
        self.timeout_seconds = timeout_seconds
        self._stats = CacheStats()

    async def _call(self, call: Awaitable[T]) -> T:
        try:
            async with asyncio.timeout(self.timeout_seconds):
                return await call
        except TimeoutError as e:
            raise CacheUnavailableError(f"timed out after {self.timeout_seconds}s") from e

    async def lookup(self, item_id: str) -> CacheEntry | None:
        """Look up an entry. Backend failures and timeouts count as a miss.

        Returns:
            The entry (possibly a tombstone), or None on miss.
        """
        try:
            entry = await self._call(self.backend.get(item_id))
        except CacheUnavailableError as e:
            self._stats.errors += 1
            logger.warning("Cache lookup failed, treating as miss", item_id=item_id, error=e.message)
            return None

        if entry is None:
            self._stats.misses += 1
        else:
            self._stats.hits += 1
        return entry

    async def _put(self, entry: CacheEntry, invalidate_on_error: bool = False) -> bool:
        try:
            accepted = await self._call(self.backend.put_if_newer(entry))
        except CacheUnavailableError as e:
            self._stats.errors += 1
            logger.warning(
                "Cache put failed",
                item_id=entry.item_id,
                version=entry.version,
                error=e.message,
            )
            if invalidate_on_error:
                await self.invalidate(entry.item_id)
            return False

        if not accepted:
            self._stats.rejected_puts += 1
            logger.debug("Stale cache put discarded", item_id=entry.item_id, version=entry.version)
        return accepted

    async def put(self, item: CatalogItem) -> bool:
        """Cache a snapshot unless an equal or newer version is cached.

        Returns:
            True if the snapshot was stored.
        """
        return await self._put(CacheEntry.for_item(item))

    async def refresh(self, item: CatalogItem) -> bool:
        """Cache a snapshot produced by a write.

        If the backend fails the entry is invalidated instead, so an
        older snapshot cannot outlive the write.

        Returns:
            True if the snapshot was stored.
        """
        return await self._put(CacheEntry.for_item(item), invalidate_on_error=True)

    async def put_tombstone(self, item_id: str, version: int) -> bool:
        """Record a deletion at the tombstone version.

        Falls back to invalidation if the backend fails.

        Returns:
            True if the tombstone was stored.
        """
        return await self._put(CacheEntry.tombstone(item_id, version), invalidate_on_error=True)

    async def invalidate(self, item_id: str) -> bool:
        """Drop the entry for an item.

        Returns:
            True if the backend confirmed the delete.
        """
        try:
            await self._call(self.backend.delete(item_id))
        except CacheUnavailableError as e:
            self._stats.errors += 1
            logger.warning("Cache invalidation failed", item_id=item_id, error=e.message)
            return False
        return True

    async def get_or_load(
        self,
        item_id: str,
        loader: Callable[[str], Awaitable[CatalogItem]],
    ) -> CatalogItem:
        """Return the cached item or load it from the store and cache it.

        Args:
            item_id: Item identity.
            loader: Store read used on a miss.

        Raises:
            ItemNotFoundError: If a tombstone is cached or the loader
                reports the item missing.
        """
        entry = await self.lookup(item_id)
        if entry is not None:
            if entry.is_tombstone:
                raise ItemNotFoundError(item_id)
            return entry.item

        item = await loader(item_id)
        await self.put(item)
        return item

    async def ping(self) -> bool:
        """Whether the backend answers within the call timeout."""
        try:
            return await self._call(self.backend.ping())
        except CacheUnavailableError:
            return False

    def stats(self) -> dict[str, int]:
        """Snapshot of the cache counters."""
        return self._stats.to_dict()
