"""Shared fixtures for API tests."""

import pytest
from fastapi.testclient import TestClient

from catalog_service.api.items import get_service
from catalog_service.catalog.service import CatalogService
from catalog_service.main import app


@pytest.fixture
def client(service: CatalogService) -> TestClient:
    """Create test client backed by the in-memory catalog service."""
    app.dependency_overrides[get_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()
