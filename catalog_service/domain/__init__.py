"""Domain layer - Catalog entities, change events and exceptions.

Example usage:
    from catalog_service.domain import ItemDraft, ItemChanges

    draft = ItemDraft(item_id="sku-1", name="Mug", price=Decimal("10.00"), stock_quantity=5)
    changes = ItemChanges(stock_quantity=3)
"""

# Entities
from catalog_service.domain.entities import (
    CatalogItem,
    ItemChanges,
    ItemDraft,
    Mutator,
    utcnow,
)

# Change events
from catalog_service.domain.events import (
    ChangeEvent,
    ChangeEventKind,
    OutboxEntry,
    OutboxStatus,
)

# Exceptions
from catalog_service.domain.exceptions import (
    CacheUnavailableError,
    ConflictError,
    DomainError,
    DuplicateItemError,
    EventPublishError,
    ItemNotFoundError,
    ItemValidationError,
    OperationTimeoutError,
    StoreUnavailableError,
    UnavailableError,
    VersionConflictError,
)

__all__ = [
    # Entities
    "CatalogItem",
    "ItemChanges",
    "ItemDraft",
    "Mutator",
    "utcnow",
    # Change events
    "ChangeEvent",
    "ChangeEventKind",
    "OutboxEntry",
    "OutboxStatus",
    # Exceptions
    "DomainError",
    "ItemNotFoundError",
    "ConflictError",
    "DuplicateItemError",
    "VersionConflictError",
    "ItemValidationError",
    "UnavailableError",
    "StoreUnavailableError",
    "CacheUnavailableError",
    "EventPublishError",
    "OperationTimeoutError",
]
