"""Catalog change events.

A ChangeEvent is staged in the outbox in the same transaction as the
mutation it describes and published afterwards. Consumers see events
for one item in non-decreasing version order.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Self
from uuid import uuid4

from catalog_service.domain.entities import CatalogItem


class ChangeEventKind(str, Enum):
    """Kinds of catalog change events."""

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"

    @property
    def event_type(self) -> str:
        """Dotted event type used on the wire."""
        return f"catalog.item.{self.value}"


class OutboxStatus(str, Enum):
    """Delivery status of a staged event."""

    PENDING = "pending"
    PUBLISHED = "published"
    DEAD = "dead"


@dataclass(frozen=True)
class ChangeEvent:
    """Event describing one committed catalog mutation.

    Attributes:
        item_id: Identity of the mutated item.
        kind: Created, updated or deleted.
        version: Item version produced by the mutation.
        payload: Item snapshot after the mutation (empty for deletes).
        event_id: Unique identifier of this event.
        occurred_at: When the mutation was committed.
    """

    item_id: str
    kind: ChangeEventKind
    version: int
    payload: dict[str, Any] = field(default_factory=dict)
    event_id: str = field(default_factory=lambda: str(uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def for_item(cls, kind: ChangeEventKind, item: CatalogItem) -> Self:
        """Build the event for a committed item snapshot."""
        return cls(
            item_id=item.item_id,
            kind=kind,
            version=item.version,
            payload=item.to_dict(),
            occurred_at=item.updated_at,
        )

    @classmethod
    def deleted(cls, item_id: str, version: int, occurred_at: datetime) -> Self:
        """Build the event for a tombstone mutation."""
        return cls(
            item_id=item_id,
            kind=ChangeEventKind.DELETED,
            version=version,
            occurred_at=occurred_at,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert event to dictionary for serialization.

        Returns:
            Dictionary representation of the event.
        """
        return {
            "event_id": self.event_id,
            "event_type": self.kind.event_type,
            "item_id": self.item_id,
            "kind": self.kind.value,
            "version": self.version,
            "occurred_at": self.occurred_at.isoformat(),
            "payload": self.payload,
        }


@dataclass
class OutboxEntry:
    """A staged event together with its delivery bookkeeping."""

    event: ChangeEvent
    status: OutboxStatus = OutboxStatus.PENDING
    attempts: int = 0
    next_attempt_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    last_error: str | None = None
    published_at: datetime | None = None
