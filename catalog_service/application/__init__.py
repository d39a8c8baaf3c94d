"""Application layer module.

Contains background workers that move data between the store and
downstream consumers.
"""

from catalog_service.application.outbox_relay import OutboxRelay

__all__ = [
    "OutboxRelay",
]
