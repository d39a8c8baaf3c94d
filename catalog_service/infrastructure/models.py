"""SQLAlchemy models for infrastructure tables.

Provides the ORM model for the transactional outbox.
"""

from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB

from catalog_service.domain.events import ChangeEvent, ChangeEventKind, OutboxEntry, OutboxStatus
from catalog_service.infrastructure.database import Base


def _as_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ============================================================================
# Outbox Models
# ============================================================================


class OutboxEventModel(Base):
    """Staged change event awaiting publication.

    Rows are written in the same transaction as the catalog mutation
    they describe. The relay publishes them and records delivery state.
    """

    __tablename__ = "catalog_outbox"

    event_id = Column(String(36), primary_key=True)
    item_id = Column(String(100), nullable=False, index=True)
    kind = Column(String(20), nullable=False)
    version = Column(Integer, nullable=False)
    payload = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=False, default=dict)
    occurred_at = Column(DateTime(timezone=True), nullable=False)

    # Delivery bookkeeping
    status = Column(String(20), nullable=False, default=OutboxStatus.PENDING.value, index=True)
    attempts = Column(Integer, nullable=False, default=0)
    next_attempt_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        index=True,
    )
    last_error = Column(Text, nullable=True)
    published_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("item_id", "version", name="uq_catalog_outbox_item_version"),
    )

    @classmethod
    def from_event(cls, event: ChangeEvent) -> "OutboxEventModel":
        """Stage a domain event."""
        return cls(
            event_id=event.event_id,
            item_id=event.item_id,
            kind=event.kind.value,
            version=event.version,
            payload=event.payload,
            occurred_at=event.occurred_at,
            status=OutboxStatus.PENDING.value,
            attempts=0,
            next_attempt_at=event.occurred_at,
        )

    def to_entry(self) -> OutboxEntry:
        """Convert to a domain outbox entry."""
        return OutboxEntry(
            event=ChangeEvent(
                item_id=self.item_id,
                kind=ChangeEventKind(self.kind),
                version=self.version,
                payload=dict(self.payload or {}),
                event_id=self.event_id,
                occurred_at=_as_utc(self.occurred_at),
            ),
            status=OutboxStatus(self.status),
            attempts=self.attempts,
            next_attempt_at=_as_utc(self.next_attempt_at),
            last_error=self.last_error,
            published_at=_as_utc(self.published_at),
        )
