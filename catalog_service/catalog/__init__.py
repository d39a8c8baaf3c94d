"""Catalog storage and caching.

Provides the authoritative store adapters (SQL and in-memory) and the
version-guarded read-through cache. The orchestrating service lives in
catalog_service.catalog.service.
"""

from catalog_service.catalog.cache import (
    CacheBackend,
    CacheEntry,
    CatalogCache,
    InMemoryCacheBackend,
)
from catalog_service.catalog.memory import InMemoryCatalogStore, InMemoryOutboxStore
from catalog_service.catalog.models import CatalogItemRecord
from catalog_service.catalog.repository import (
    CatalogStore,
    ItemFilter,
    OutboxStore,
    PaginatedResult,
    PaginationParams,
    SqlCatalogStore,
    SqlOutboxStore,
)

__all__ = [
    # Models
    "CatalogItemRecord",
    # Stores
    "CatalogStore",
    "OutboxStore",
    "SqlCatalogStore",
    "SqlOutboxStore",
    "InMemoryCatalogStore",
    "InMemoryOutboxStore",
    # Query parameters
    "ItemFilter",
    "PaginatedResult",
    "PaginationParams",
    # Cache
    "CacheBackend",
    "CacheEntry",
    "CatalogCache",
    "InMemoryCacheBackend",
]
