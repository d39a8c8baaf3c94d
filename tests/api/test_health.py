"""Tests for health check endpoints."""

from unittest.mock import AsyncMock

from fastapi.testclient import TestClient

from catalog_service.api.items import get_service
from catalog_service.main import app


def test_health_check(client: TestClient) -> None:
    """Test health endpoint returns healthy status."""
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["service"] == "catalog-service"
    assert "version" in data


def test_request_id_minted_when_absent(client: TestClient) -> None:
    """Test a request without X-Request-ID gets a fresh one echoed back."""
    first = client.get("/health")
    second = client.get("/health", headers={"X-Request-ID": "req-abc"})
    assert len(first.headers["X-Request-ID"]) == 36
    assert second.headers["X-Request-ID"] == "req-abc"


def test_readiness_check(client: TestClient) -> None:
    """Test readiness endpoint reports the store, cache and event backlog."""
    response = client.get("/ready")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ready"
    assert data["checks"]["store"] is True
    assert data["checks"]["pending_events"] == 0
    assert data["checks"]["cache_reachable"] is True


def test_readiness_fails_without_store() -> None:
    """Test readiness endpoint returns 503 when the store is unreachable."""
    service = AsyncMock()
    service.readiness.return_value = {
        "store": False,
        "pending_events": None,
        "cache_reachable": True,
        "cache": {},
    }
    app.dependency_overrides[get_service] = lambda: service
    try:
        response = TestClient(app).get("/ready")
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 503
    assert response.json()["status"] == "unavailable"
