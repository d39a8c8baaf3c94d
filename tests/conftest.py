"""Shared fixtures for catalog tests."""

import pytest

from catalog_service.application.outbox_relay import OutboxRelay
from catalog_service.catalog.cache import CatalogCache, InMemoryCacheBackend
from catalog_service.catalog.memory import InMemoryCatalogStore
from catalog_service.catalog.service import CatalogService
from catalog_service.infrastructure.event_publisher import InMemoryEventPublisher


@pytest.fixture
def store() -> InMemoryCatalogStore:
    """In-memory store adapter."""
    return InMemoryCatalogStore()


@pytest.fixture
def cache_backend() -> InMemoryCacheBackend:
    """In-memory cache backend."""
    return InMemoryCacheBackend(max_entries=100, ttl_seconds=60)


@pytest.fixture
def cache(cache_backend: InMemoryCacheBackend) -> CatalogCache:
    """Catalog cache over the in-memory backend."""
    return CatalogCache(cache_backend)


@pytest.fixture
def publisher() -> InMemoryEventPublisher:
    """Publisher recording events in memory."""
    return InMemoryEventPublisher()


@pytest.fixture
def relay(store: InMemoryCatalogStore, publisher: InMemoryEventPublisher) -> OutboxRelay:
    """Outbox relay over the in-memory store."""
    return OutboxRelay(store.outbox, publisher, poll_interval_seconds=0.01)


@pytest.fixture
def service(
    store: InMemoryCatalogStore,
    cache: CatalogCache,
    relay: OutboxRelay,
) -> CatalogService:
    """Catalog service wired to in-memory collaborators."""
    return CatalogService(store, cache, relay, operation_timeout_seconds=1.0)
