"""API layer module.

Contains FastAPI routers and request/response schemas.
"""

from catalog_service.api.health import router as health_router
from catalog_service.api.items import router as items_router

__all__ = [
    "health_router",
    "items_router",
]
