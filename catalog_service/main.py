"""Catalog service main application module.

This module initializes the FastAPI application and configures
core middleware, routers, and startup/shutdown events.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from catalog_service.api.health import router as health_router
from catalog_service.api.items import router as items_router
from catalog_service.api.middleware import setup_middleware
from catalog_service.catalog.service import get_catalog_service
from catalog_service.domain.exceptions import (
    ConflictError,
    DomainError,
    DuplicateItemError,
    ItemNotFoundError,
    ItemValidationError,
    OperationTimeoutError,
    StoreUnavailableError,
    UnavailableError,
    VersionConflictError,
)
from catalog_service.infrastructure.config import settings
from catalog_service.infrastructure.database import dispose_engine
from catalog_service.infrastructure.logging_config import configure_logging

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Handle application startup and shutdown events.

    Args:
        app: The FastAPI application instance.

    Yields:
        None after startup, cleanup happens after yield.
    """
    # Startup
    configure_logging()
    logger.info(
        "Starting catalog service",
        version=settings.api_version,
        debug=settings.debug,
    )
    service = get_catalog_service()
    await service.start()

    yield

    # Shutdown
    logger.info("Shutting down catalog service")
    await service.stop()
    await dispose_engine()


app = FastAPI(
    title="Catalog Service",
    description="Versioned product catalog with read-through caching and change events",
    version=settings.api_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware (must be added before custom middleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Setup custom middleware (request ID, error handling)
setup_middleware(app)

# Include routers
app.include_router(health_router, tags=["Health"])
app.include_router(items_router)


# ============================================================================
# Custom Exception Handlers
# ============================================================================


# Checked in order, so subclasses come before their bases.
DOMAIN_ERROR_RESPONSES: list[tuple[type[DomainError], int, str]] = [
    (ItemNotFoundError, 404, "ITEM_NOT_FOUND"),
    (DuplicateItemError, 409, "ITEM_ALREADY_EXISTS"),
    (VersionConflictError, 409, "VERSION_CONFLICT"),
    (ConflictError, 409, "CONFLICT"),
    (ItemValidationError, 422, "VALIDATION_ERROR"),
    (OperationTimeoutError, 503, "OPERATION_TIMEOUT"),
    (StoreUnavailableError, 503, "STORE_UNAVAILABLE"),
    (UnavailableError, 503, "SERVICE_UNAVAILABLE"),
]


def error_response_for(exc: DomainError) -> tuple[int, str]:
    """Map a domain error to an HTTP status and error code."""
    for error_type, status_code, error_code in DOMAIN_ERROR_RESPONSES:
        if isinstance(exc, error_type):
            return status_code, error_code
    return 400, "DOMAIN_ERROR"


@app.exception_handler(DomainError)
async def domain_exception_handler(request: Request, exc: DomainError) -> JSONResponse:
    """Render domain errors in the standard error format."""
    request_id = getattr(request.state, "request_id", None)
    status_code, error_code = error_response_for(exc)

    log = logger.warning if status_code >= 500 else logger.info
    log(
        "Domain error",
        path=request.url.path,
        method=request.method,
        error_code=error_code,
        error=exc.message,
    )

    return JSONResponse(
        status_code=status_code,
        content={
            "error_code": error_code,
            "message": exc.message,
            "details": exc.details,
            "request_id": request_id,
        },
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Render request validation failures in the standard error format."""
    request_id = getattr(request.state, "request_id", None)
    details = [
        {
            "field": ".".join(str(part) for part in error.get("loc", ()) if part != "body") or None,
            "message": error.get("msg", "Invalid value"),
        }
        for error in exc.errors()
    ]

    return JSONResponse(
        status_code=422,
        content={
            "error_code": "VALIDATION_ERROR",
            "message": "Request validation failed",
            "details": details,
            "request_id": request_id,
        },
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle HTTP exceptions with consistent format."""
    request_id = getattr(request.state, "request_id", None)

    detail = exc.detail
    if isinstance(detail, dict):
        error_code = detail.get("error_code", "ERROR")
        message = detail.get("message", str(detail))
        details = detail.get("details", {})
    else:
        error_code = "ERROR"
        message = str(detail)
        details = {}

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": error_code,
            "message": message,
            "details": details,
            "request_id": request_id,
        },
    )
