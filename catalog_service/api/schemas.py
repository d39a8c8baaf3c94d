"""API schemas for the catalog service.

Pydantic models for request/response validation and serialization.
Prices travel as decimal strings so no precision is lost in JSON.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field, field_serializer

from catalog_service.catalog.service import ItemAvailability
from catalog_service.domain.entities import CatalogItem, ItemChanges, ItemDraft


# ============================================================================
# Common Schemas
# ============================================================================


class ErrorDetail(BaseModel):
    """Detailed error information."""

    field: str | None = Field(default=None, description="Field that caused the error")
    message: str = Field(..., description="Error message")


class ErrorResponse(BaseModel):
    """Standard error response.

    All API errors follow this format for consistency.
    """

    error_code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable error message")
    details: dict[str, Any] | list[ErrorDetail] = Field(
        default_factory=dict, description="Additional error details"
    )
    request_id: str | None = Field(
        default=None, description="Request ID for correlation"
    )


class PaginatedResponse(BaseModel):
    """Base paginated response."""

    total: int = Field(..., description="Total number of items")
    page: int = Field(..., description="Current page number")
    page_size: int = Field(..., description="Items per page")
    total_pages: int = Field(..., description="Total number of pages")
    has_more: bool = Field(..., description="Whether there are more pages")


# ============================================================================
# Item Schemas
# ============================================================================


class ItemCreateRequest(BaseModel):
    """Request to create a catalog item."""

    item_id: str = Field(..., min_length=1, max_length=100, description="Unique item key, e.g. a SKU")
    name: str = Field(..., min_length=1, max_length=255, description="Display name")
    description: str | None = Field(default=None, max_length=2000, description="Long description")
    category: str | None = Field(default=None, max_length=100, description="Category label")
    price: Decimal = Field(..., gt=0, description="Unit price")
    stock_quantity: int = Field(default=0, ge=0, description="Units on hand")
    is_active: bool = Field(default=True, description="Whether the item is offered for sale")

    def to_draft(self) -> ItemDraft:
        return ItemDraft(
            item_id=self.item_id,
            name=self.name,
            description=self.description,
            category=self.category,
            price=self.price,
            stock_quantity=self.stock_quantity,
            is_active=self.is_active,
        )


class ItemUpdateRequest(BaseModel):
    """Partial update guarded by the version the caller last read.

    Omitted fields are left unchanged. An empty description or category
    clears it.
    """

    expected_version: int = Field(..., ge=1, description="Version the caller last observed")
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=2000)
    category: str | None = Field(default=None, max_length=100)
    price: Decimal | None = Field(default=None, gt=0)
    stock_quantity: int | None = Field(default=None, ge=0)
    is_active: bool | None = None

    def to_changes(self) -> ItemChanges:
        return ItemChanges(
            name=self.name,
            description=self.description,
            category=self.category,
            price=self.price,
            stock_quantity=self.stock_quantity,
            is_active=self.is_active,
        )


class DeactivateRequest(BaseModel):
    """Request to stop offering an item."""

    expected_version: int = Field(..., ge=1, description="Version the caller last observed")


class ItemResponse(BaseModel):
    """Catalog item representation."""

    item_id: str
    name: str
    description: str | None = None
    category: str | None = None
    price: Decimal
    stock_quantity: int
    is_active: bool
    version: int
    created_at: datetime
    updated_at: datetime

    @field_serializer("price")
    def serialize_price(self, price: Decimal) -> str:
        return str(price)

    @classmethod
    def from_item(cls, item: CatalogItem) -> "ItemResponse":
        """Convert a domain snapshot to a response."""
        return cls(
            item_id=item.item_id,
            name=item.name,
            description=item.description,
            category=item.category,
            price=item.price,
            stock_quantity=item.stock_quantity,
            is_active=item.is_active,
            version=item.version,
            created_at=item.created_at,
            updated_at=item.updated_at,
        )


class ItemsListResponse(PaginatedResponse):
    """Paginated list of items."""

    items: list[ItemResponse] = Field(..., description="Items on this page")


class InventorySchema(BaseModel):
    """Live stock level from the inventory service."""

    available_quantity: int
    reserved_quantity: int
    total_quantity: int
    in_stock: bool


class AvailabilityResponse(BaseModel):
    """Item availability combining catalog and inventory data."""

    item_id: str
    version: int
    is_active: bool
    stock_quantity: int = Field(..., description="Units on hand according to the catalog")
    available: bool = Field(..., description="Whether the item can currently be sold")
    inventory: InventorySchema | None = Field(
        default=None, description="Inventory service view, absent when unavailable"
    )

    @classmethod
    def from_availability(cls, availability: ItemAvailability) -> "AvailabilityResponse":
        inventory = None
        if availability.inventory is not None:
            inventory = InventorySchema(
                available_quantity=availability.inventory.available_quantity,
                reserved_quantity=availability.inventory.reserved_quantity,
                total_quantity=availability.inventory.total_quantity,
                in_stock=availability.inventory.in_stock,
            )
        return cls(
            item_id=availability.item_id,
            version=availability.version,
            is_active=availability.is_active,
            stock_quantity=availability.stock_quantity,
            available=availability.available,
            inventory=inventory,
        )
