"""Domain exceptions.

All catalog errors derive from DomainError so the API layer can map
them to responses in one place. NotFound, Conflict and Validation
errors are caller-correctable and never retried internally.
Unavailable errors mean a collaborator (store, cache, broker) could
not be reached.
"""

from typing import Any


class DomainError(Exception):
    """Base class for all domain exceptions.

    All domain errors should inherit from this class to allow
    catching domain-specific errors at the application layer.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize domain error.

        Args:
            message: Human-readable error message.
            details: Optional dictionary with additional error context.
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}


# ============================================================================
# Lookup Errors
# ============================================================================


class ItemNotFoundError(DomainError):
    """Raised when no live item exists for an identity."""

    def __init__(self, item_id: str) -> None:
        """Initialize item not found error.

        Args:
            item_id: Identity that was looked up.
        """
        super().__init__(
            f"Catalog item {item_id} not found",
            details={"item_id": item_id},
        )
        self.item_id = item_id


# ============================================================================
# Conflict Errors
# ============================================================================


class ConflictError(DomainError):
    """Base class for write conflicts."""

    pass


class DuplicateItemError(ConflictError):
    """Raised when creating an item whose identity is already taken.

    Tombstoned identities count as taken.
    """

    def __init__(self, item_id: str, deleted: bool = False) -> None:
        """Initialize duplicate item error.

        Args:
            item_id: Conflicting identity.
            deleted: Whether the identity belongs to a deleted item.
        """
        reason = "was deleted and cannot be reused" if deleted else "already exists"
        super().__init__(
            f"Catalog item {item_id} {reason}",
            details={"item_id": item_id, "deleted": deleted},
        )
        self.item_id = item_id


class VersionConflictError(ConflictError):
    """Raised when the stored version moved past the caller's expected version."""

    def __init__(self, item_id: str, expected_version: int, current_version: int) -> None:
        """Initialize version conflict error.

        Args:
            item_id: Identity of the item.
            expected_version: Version the caller last observed.
            current_version: Version currently stored.
        """
        super().__init__(
            f"Catalog item {item_id} is at version {current_version}, "
            f"expected {expected_version}",
            details={
                "item_id": item_id,
                "expected_version": expected_version,
                "current_version": current_version,
            },
        )
        self.item_id = item_id
        self.expected_version = expected_version
        self.current_version = current_version


# ============================================================================
# Validation Errors
# ============================================================================


class ItemValidationError(DomainError):
    """Raised when item attributes are malformed."""

    def __init__(self, field: str, reason: str) -> None:
        """Initialize validation error.

        Args:
            field: Attribute that failed validation.
            reason: Why the value was rejected.
        """
        super().__init__(
            f"Invalid {field}: {reason}",
            details={"field": field, "reason": reason},
        )
        self.field = field


# ============================================================================
# Availability Errors
# ============================================================================


class UnavailableError(DomainError):
    """Base class for unreachable collaborators."""

    def __init__(self, component: str, reason: str) -> None:
        """Initialize unavailable error.

        Args:
            component: Collaborator that failed (store, cache, events).
            reason: Underlying failure description.
        """
        super().__init__(
            f"{component} unavailable: {reason}",
            details={"component": component, "reason": reason},
        )
        self.component = component


class StoreUnavailableError(UnavailableError):
    """Raised when the relational store cannot be reached."""

    def __init__(self, reason: str) -> None:
        super().__init__("store", reason)


class CacheUnavailableError(UnavailableError):
    """Raised by cache backends when the cache cannot be reached."""

    def __init__(self, reason: str) -> None:
        super().__init__("cache", reason)


class EventPublishError(UnavailableError):
    """Raised by event publishers when the broker rejects or drops a publish."""

    def __init__(self, reason: str) -> None:
        super().__init__("events", reason)


class OperationTimeoutError(UnavailableError):
    """Raised when a catalog operation exceeds its deadline."""

    def __init__(self, operation: str, timeout_seconds: float) -> None:
        """Initialize timeout error.

        Args:
            operation: Name of the operation that timed out.
            timeout_seconds: Deadline that was exceeded.
        """
        super().__init__(operation, f"timed out after {timeout_seconds}s")
        self.details["timeout_seconds"] = timeout_seconds
