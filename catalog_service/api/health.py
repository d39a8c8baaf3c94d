"""Health check endpoints.

Provides endpoints for monitoring service health and readiness.
"""

from typing import Annotated, Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from catalog_service.api.items import get_service
from catalog_service.catalog.service import CatalogService
from catalog_service.infrastructure.config import settings

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response schema."""

    status: str
    service: str
    version: str


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Check service health.

    Returns:
        Health status with service name and version.
    """
    return HealthResponse(
        status="healthy",
        service="catalog-service",
        version=settings.api_version,
    )


@router.get("/ready")
async def readiness_check(
    service: Annotated[CatalogService, Depends(get_service)],
) -> JSONResponse:
    """Check if service is ready to accept requests.

    The service is ready when the store answers. Cache and event
    backlog figures are informational.

    Returns:
        Readiness status, 503 if the store is unreachable.
    """
    checks: dict[str, Any] = await service.readiness()
    ready = bool(checks["store"])
    return JSONResponse(
        status_code=200 if ready else 503,
        content={"status": "ready" if ready else "unavailable", "checks": checks},
    )
