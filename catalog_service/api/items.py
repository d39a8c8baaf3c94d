"""Catalog item API endpoints.

Provides endpoints for catalog item management:
- GET /items - search items (paginated)
- GET /items/{id} - item details, with the version as ETag
- POST /items - create an item
- PATCH /items/{id} - partial update guarded by expected_version
- POST /items/{id}/deactivate - stop offering an item
- DELETE /items/{id} - delete an item
- GET /items/{id}/availability - catalog stock plus inventory view

Domain errors raised by the service are rendered by the exception
handlers registered in main.py.
"""

from decimal import Decimal
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Response, status

from catalog_service.api.schemas import (
    AvailabilityResponse,
    DeactivateRequest,
    ErrorResponse,
    ItemCreateRequest,
    ItemResponse,
    ItemsListResponse,
    ItemUpdateRequest,
)
from catalog_service.catalog.repository import SORT_FIELDS, ItemFilter, PaginationParams
from catalog_service.catalog.service import CatalogService, get_catalog_service

router = APIRouter(prefix="/items", tags=["Items"])

SORT_PATTERN = "^(" + "|".join(SORT_FIELDS) + ")$"


# ============================================================================
# Dependencies
# ============================================================================


def get_service() -> CatalogService:
    """Get the catalog service."""
    return get_catalog_service()


def etag_for(version: int) -> str:
    """Strong ETag carrying an item version."""
    return f'"{version}"'


# ============================================================================
# Endpoints
# ============================================================================


@router.get(
    "",
    response_model=ItemsListResponse,
    responses={503: {"model": ErrorResponse}},
    summary="Search items",
    description="Get a paginated list of live items with optional filtering.",
)
async def list_items(
    service: Annotated[CatalogService, Depends(get_service)],
    page: int = Query(default=1, ge=1, description="Page number"),
    page_size: int = Query(default=20, ge=1, le=100, description="Items per page"),
    name: str | None = Query(default=None, description="Substring of the item name"),
    min_price: Decimal | None = Query(default=None, ge=0, description="Minimum price"),
    max_price: Decimal | None = Query(default=None, ge=0, description="Maximum price"),
    is_active: bool | None = Query(default=None, description="Filter by active flag"),
    category: str | None = Query(default=None, max_length=100, description="Exact category label"),
    sort_by: str = Query(default="item_id", pattern=SORT_PATTERN, description="Sort field"),
    sort_order: str = Query(default="asc", pattern="^(asc|desc)$", description="Sort order"),
) -> ItemsListResponse:
    """Search items with pagination and filtering."""
    result = await service.search_items(
        ItemFilter(
            name=name,
            min_price=min_price,
            max_price=max_price,
            is_active=is_active,
            category=category,
        ),
        PaginationParams(page=page, page_size=page_size, sort_by=sort_by, sort_order=sort_order),
    )

    return ItemsListResponse(
        items=[ItemResponse.from_item(item) for item in result.items],
        total=result.total,
        page=result.page,
        page_size=result.page_size,
        total_pages=result.total_pages,
        has_more=result.has_next,
    )


@router.get(
    "/{item_id}",
    response_model=ItemResponse,
    responses={
        404: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
    summary="Get item",
    description="Get a catalog item. The ETag header carries its version.",
)
async def get_item(
    item_id: str,
    response: Response,
    service: Annotated[CatalogService, Depends(get_service)],
) -> ItemResponse:
    """Get an item by identity.

    Args:
        item_id: Item identity.
        response: Response used to set the ETag header.
        service: Catalog service.

    Returns:
        Item details.
    """
    item = await service.get_item(item_id)
    response.headers["ETag"] = etag_for(item.version)
    return ItemResponse.from_item(item)


@router.post(
    "",
    response_model=ItemResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        409: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
    summary="Create item",
    description="Create version 1 of a new catalog item.",
)
async def create_item(
    request: ItemCreateRequest,
    response: Response,
    service: Annotated[CatalogService, Depends(get_service)],
) -> ItemResponse:
    """Create a catalog item.

    Args:
        request: Item attributes.
        response: Response used to set the ETag and Location headers.
        service: Catalog service.

    Returns:
        The created item.
    """
    item = await service.create_item(request.to_draft())
    response.headers["ETag"] = etag_for(item.version)
    response.headers["Location"] = f"/items/{item.item_id}"
    return ItemResponse.from_item(item)


@router.patch(
    "/{item_id}",
    response_model=ItemResponse,
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
    summary="Update item",
    description="Apply a partial update if the item is still at expected_version.",
)
async def update_item(
    item_id: str,
    request: ItemUpdateRequest,
    response: Response,
    service: Annotated[CatalogService, Depends(get_service)],
) -> ItemResponse:
    """Update a catalog item.

    Args:
        item_id: Item identity.
        request: Changed attributes and the expected version.
        response: Response used to set the ETag header.
        service: Catalog service.

    Returns:
        The updated item.
    """
    item = await service.update_item(item_id, request.to_changes(), request.expected_version)
    response.headers["ETag"] = etag_for(item.version)
    return ItemResponse.from_item(item)


@router.post(
    "/{item_id}/deactivate",
    response_model=ItemResponse,
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
    summary="Deactivate item",
    description="Stop offering an item for sale. The item stays readable.",
)
async def deactivate_item(
    item_id: str,
    request: DeactivateRequest,
    response: Response,
    service: Annotated[CatalogService, Depends(get_service)],
) -> ItemResponse:
    """Deactivate a catalog item."""
    item = await service.deactivate_item(item_id, request.expected_version)
    response.headers["ETag"] = etag_for(item.version)
    return ItemResponse.from_item(item)


@router.delete(
    "/{item_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
    summary="Delete item",
    description="Delete an item if it is still at expected_version.",
)
async def delete_item(
    item_id: str,
    service: Annotated[CatalogService, Depends(get_service)],
    expected_version: int = Query(..., ge=1, description="Version the caller last observed"),
) -> Response:
    """Delete a catalog item.

    Args:
        item_id: Item identity.
        service: Catalog service.
        expected_version: Version the caller last observed.

    Returns:
        Empty 204 response.
    """
    await service.delete_item(item_id, expected_version)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/{item_id}/availability",
    response_model=AvailabilityResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Get item availability",
    description="Catalog stock combined with the inventory service's live view.",
)
async def get_availability(
    item_id: str,
    service: Annotated[CatalogService, Depends(get_service)],
) -> AvailabilityResponse:
    """Get availability for an item."""
    availability = await service.get_availability(item_id)
    return AvailabilityResponse.from_availability(availability)
