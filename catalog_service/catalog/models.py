"""SQLAlchemy models for the product catalog.

Defines the catalog_items table backing the store adapter.
"""

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from catalog_service.domain.entities import CatalogItem
from catalog_service.infrastructure.database import Base


def _as_utc(value: datetime) -> datetime:
    """Attach UTC to naive timestamps returned by drivers without tz support."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class CatalogItemRecord(Base):
    """Persistent catalog item row.

    Deleted items stay in the table as tombstones so their identity is
    never reissued and their version keeps increasing.

    Attributes:
        item_id: Stable unique key (e.g. SKU).
        name: Display name.
        description: Optional long description.
        category: Optional category label.
        price: Unit price, NUMERIC(10, 2).
        stock_quantity: Units on hand.
        is_active: Whether the item is offered for sale.
        version: Optimistic concurrency version.
        deleted: Tombstone flag.
        deleted_at: When the tombstone was written.
        created_at: Creation timestamp.
        updated_at: Last update timestamp.
    """

    __tablename__ = "catalog_items"

    item_id: Mapped[str] = mapped_column(String(100), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    stock_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self) -> str:
        """String representation."""
        return f"<CatalogItemRecord(item_id={self.item_id}, version={self.version})>"

    @classmethod
    def from_item(cls, item: CatalogItem) -> "CatalogItemRecord":
        """Create a row from a domain snapshot."""
        return cls(
            item_id=item.item_id,
            name=item.name,
            description=item.description,
            category=item.category,
            price=item.price,
            stock_quantity=item.stock_quantity,
            is_active=item.is_active,
            version=item.version,
            deleted=False,
            created_at=item.created_at,
            updated_at=item.updated_at,
        )

    def to_item(self) -> CatalogItem:
        """Convert to a domain snapshot.

        Returns:
            Immutable CatalogItem.
        """
        return CatalogItem(
            item_id=self.item_id,
            name=self.name,
            description=self.description,
            category=self.category,
            price=Decimal(self.price).quantize(Decimal("0.01")),
            stock_quantity=self.stock_quantity,
            is_active=self.is_active,
            version=self.version,
            created_at=_as_utc(self.created_at),
            updated_at=_as_utc(self.updated_at),
        )
