"""Catalog domain entities.

CatalogItem is the versioned record the store adapter hands out.
ItemDraft and ItemChanges carry caller input for creates and
partial updates and own attribute validation.
"""

import re
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Callable, Self

from catalog_service.domain.exceptions import ItemValidationError

ITEM_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,99}$")
MAX_NAME_LENGTH = 255
MAX_DESCRIPTION_LENGTH = 2000
MAX_CATEGORY_LENGTH = 100
MAX_PRICE = Decimal("99999999.99")  # NUMERIC(10, 2)
PRICE_QUANTUM = Decimal("0.01")


def utcnow() -> datetime:
    """Current time in UTC."""
    return datetime.now(timezone.utc)


# ============================================================================
# Validation
# ============================================================================


def validate_item_id(item_id: str) -> str:
    """Validate an item identity.

    Args:
        item_id: Caller-supplied identity such as a SKU.

    Returns:
        The identity unchanged.

    Raises:
        ItemValidationError: If the identity is empty or malformed.
    """
    if not isinstance(item_id, str) or not ITEM_ID_PATTERN.match(item_id):
        raise ItemValidationError(
            "item_id",
            "must be 1-100 characters of letters, digits, '.', '_' or '-' "
            "and start with a letter or digit",
        )
    return item_id


def validate_name(name: str) -> str:
    """Validate and normalize an item name."""
    if not isinstance(name, str) or not name.strip():
        raise ItemValidationError("name", "is required")
    name = name.strip()
    if len(name) > MAX_NAME_LENGTH:
        raise ItemValidationError("name", f"must be at most {MAX_NAME_LENGTH} characters")
    return name


def validate_description(description: str | None) -> str | None:
    """Validate an optional description."""
    if description is None:
        return None
    if len(description) > MAX_DESCRIPTION_LENGTH:
        raise ItemValidationError(
            "description", f"must be at most {MAX_DESCRIPTION_LENGTH} characters"
        )
    return description


def validate_category(category: str | None) -> str | None:
    """Validate an optional category label.

    Surrounding whitespace is stripped. A blank label becomes an empty
    string, which an update uses to clear the category.
    """
    if category is None:
        return None
    if not isinstance(category, str):
        raise ItemValidationError("category", "must be a string")
    category = category.strip()
    if len(category) > MAX_CATEGORY_LENGTH:
        raise ItemValidationError("category", f"must be at most {MAX_CATEGORY_LENGTH} characters")
    return category


def validate_price(price: Decimal | int | str) -> Decimal:
    """Validate a price and quantize it to cents.

    Args:
        price: Price in major currency units.

    Returns:
        Price as a Decimal with two decimal places.

    Raises:
        ItemValidationError: If the price is not a positive amount.
    """
    if isinstance(price, float):
        price = str(price)
    try:
        value = Decimal(price)
    except (InvalidOperation, TypeError, ValueError):
        raise ItemValidationError("price", "must be a decimal amount") from None
    if not value.is_finite():
        raise ItemValidationError("price", "must be a decimal amount")
    value = value.quantize(PRICE_QUANTUM, rounding=ROUND_HALF_UP)
    if value <= 0:
        raise ItemValidationError("price", "must be positive")
    if value > MAX_PRICE:
        raise ItemValidationError("price", f"must not exceed {MAX_PRICE}")
    return value


def validate_stock_quantity(stock_quantity: int) -> int:
    """Validate a stock quantity."""
    if isinstance(stock_quantity, bool) or not isinstance(stock_quantity, int):
        raise ItemValidationError("stock_quantity", "must be an integer")
    if stock_quantity < 0:
        raise ItemValidationError("stock_quantity", "must not be negative")
    return stock_quantity


# ============================================================================
# Catalog Item
# ============================================================================


@dataclass(frozen=True)
class CatalogItem:
    """A versioned catalog record.

    Instances are immutable snapshots. The store adapter is the only
    component that produces new versions.

    Attributes:
        item_id: Stable unique key (e.g. a SKU), immutable once assigned.
        name: Display name.
        description: Optional long description.
        category: Optional category label used for browsing.
        price: Unit price with two decimal places.
        stock_quantity: Units on hand.
        is_active: Whether the item is offered for sale.
        version: Starts at 1 and increases on every successful mutation.
        created_at: Creation timestamp.
        updated_at: Last modification timestamp.
    """

    item_id: str
    name: str
    price: Decimal
    stock_quantity: int = 0
    description: str | None = None
    category: str | None = None
    is_active: bool = True
    version: int = 1
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-friendly dictionary.

        Returns:
            Dictionary with price as a string and ISO timestamps.
        """
        data = asdict(self)
        data["price"] = str(self.price)
        data["created_at"] = self.created_at.isoformat()
        data["updated_at"] = self.updated_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        """Rebuild an item from to_dict() output.

        Args:
            data: Serialized item.

        Returns:
            CatalogItem instance.
        """
        return cls(
            item_id=data["item_id"],
            name=data["name"],
            description=data.get("description"),
            category=data.get("category"),
            price=Decimal(data["price"]),
            stock_quantity=int(data["stock_quantity"]),
            is_active=bool(data.get("is_active", True)),
            version=int(data["version"]),
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
        )


Mutator = Callable[[CatalogItem], CatalogItem]


# ============================================================================
# Commands
# ============================================================================


@dataclass(frozen=True)
class ItemDraft:
    """Attributes for a new catalog item."""

    item_id: str
    name: str
    price: Decimal
    stock_quantity: int = 0
    description: str | None = None
    category: str | None = None
    is_active: bool = True

    def validated(self) -> Self:
        """Return a normalized copy.

        Raises:
            ItemValidationError: If any attribute is malformed.
        """
        return replace(
            self,
            item_id=validate_item_id(self.item_id),
            name=validate_name(self.name),
            description=validate_description(self.description),
            category=validate_category(self.category) or None,
            price=validate_price(self.price),
            stock_quantity=validate_stock_quantity(self.stock_quantity),
            is_active=bool(self.is_active),
        )

    def to_item(self, now: datetime | None = None) -> CatalogItem:
        """Build the first version of the item."""
        now = now or utcnow()
        return CatalogItem(
            item_id=self.item_id,
            name=self.name,
            description=self.description,
            category=self.category,
            price=self.price,
            stock_quantity=self.stock_quantity,
            is_active=self.is_active,
            version=1,
            created_at=now,
            updated_at=now,
        )


@dataclass(frozen=True)
class ItemChanges:
    """Partial update of an item's attributes.

    None means "leave unchanged". An empty description or category
    clears it.
    """

    name: str | None = None
    description: str | None = None
    category: str | None = None
    price: Decimal | None = None
    stock_quantity: int | None = None
    is_active: bool | None = None

    def validated(self) -> Self:
        """Return a normalized copy.

        Raises:
            ItemValidationError: If any provided attribute is malformed
                or no attribute is provided.
        """
        if all(
            value is None
            for value in (
                self.name,
                self.description,
                self.category,
                self.price,
                self.stock_quantity,
                self.is_active,
            )
        ):
            raise ItemValidationError("changes", "at least one attribute must be provided")
        return replace(
            self,
            name=validate_name(self.name) if self.name is not None else None,
            description=validate_description(self.description),
            category=validate_category(self.category),
            price=validate_price(self.price) if self.price is not None else None,
            stock_quantity=(
                validate_stock_quantity(self.stock_quantity)
                if self.stock_quantity is not None
                else None
            ),
        )

    def _values(self, item: CatalogItem) -> dict[str, Any]:
        values: dict[str, Any] = {}
        if self.name is not None:
            values["name"] = self.name
        if self.description is not None:
            values["description"] = self.description or None
        if self.category is not None:
            values["category"] = self.category or None
        if self.price is not None:
            values["price"] = self.price
        if self.stock_quantity is not None:
            values["stock_quantity"] = self.stock_quantity
        if self.is_active is not None:
            values["is_active"] = self.is_active
        return {k: v for k, v in values.items() if getattr(item, k) != v}

    def is_noop(self, item: CatalogItem) -> bool:
        """Whether applying these changes would leave the item unchanged."""
        return not self._values(item)

    def apply(self, item: CatalogItem) -> CatalogItem:
        """Apply the changes to a snapshot.

        The version is left alone; the store adapter assigns it.
        """
        return replace(item, **self._values(item))
