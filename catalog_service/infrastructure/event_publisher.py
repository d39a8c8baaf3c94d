"""Change event publishers.

Publishers push ChangeEvents to downstream consumers. The outbox relay
calls them and owns retries, so a publisher only reports failure by
raising EventPublishError.

The Redis Streams publisher partitions by item identity: every event of
one item goes to the same stream, which keeps per-item ordering.
"""

import json
import zlib
from typing import Protocol

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError

from catalog_service.domain.events import ChangeEvent
from catalog_service.domain.exceptions import EventPublishError

logger = structlog.get_logger()


class EventPublisher(Protocol):
    """Append-only publish interface keyed by item identity."""

    async def publish(self, event: ChangeEvent) -> None:
        ...


def partition_for(item_id: str, partitions: int) -> int:
    """Stable partition number for an item identity.

    Args:
        item_id: Item identity.
        partitions: Number of partitions.

    Returns:
        Partition in range [0, partitions).
    """
    return zlib.crc32(item_id.encode("utf-8")) % partitions


class RedisStreamsPublisher:
    """Publisher backed by Redis Streams.

    Each event is XADDed to ``{prefix}.{partition}``. Delivery is
    at-least-once: a publish that times out after the server accepted it
    is retried by the relay and consumers deduplicate on event_id.
    """

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        stream_prefix: str = "catalog.items",
        partitions: int = 8,
        max_stream_length: int = 100_000,
        socket_timeout: float | None = 1.0,
        socket_connect_timeout: float | None = 1.0,
        client: aioredis.Redis | None = None,
    ) -> None:
        """Initialize publisher.

        Args:
            url: Redis connection URL.
            stream_prefix: Prefix of the partition stream names.
            partitions: Number of partition streams.
            max_stream_length: Approximate cap passed to XADD MAXLEN.
            socket_timeout: Seconds to wait on a socket read or write.
            socket_connect_timeout: Seconds to wait for a connection.
            client: Pre-built client, mainly for tests.
        """
        if partitions < 1:
            raise ValueError("partitions must be at least 1")
        self._url = url
        self._socket_timeout = socket_timeout
        self._socket_connect_timeout = socket_connect_timeout
        self._stream_prefix = stream_prefix
        self._partitions = partitions
        self._max_len = max_stream_length
        self._redis = client

    def _client(self) -> aioredis.Redis:
        if self._redis is None:
            self._redis = aioredis.from_url(
                self._url,
                decode_responses=True,
                socket_timeout=self._socket_timeout,
                socket_connect_timeout=self._socket_connect_timeout,
            )
        return self._redis

    def stream_for(self, item_id: str) -> str:
        """Stream name holding an item's events."""
        return f"{self._stream_prefix}.{partition_for(item_id, self._partitions)}"

    async def publish(self, event: ChangeEvent) -> None:
        """Append an event to its partition stream.

        Raises:
            EventPublishError: If Redis rejects or drops the publish.
        """
        fields = {
            "event_id": event.event_id,
            "event_type": event.kind.event_type,
            "item_id": event.item_id,
            "version": str(event.version),
            "data": json.dumps(event.to_dict()),
        }
        try:
            await self._client().xadd(
                self.stream_for(event.item_id),
                fields,
                maxlen=self._max_len,
                approximate=True,
            )
        except (RedisError, OSError) as e:
            raise EventPublishError(str(e)) from e

        logger.debug(
            "Change event published",
            event_id=event.event_id,
            item_id=event.item_id,
            version=event.version,
        )

    async def close(self) -> None:
        """Close the connection pool."""
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


class InMemoryEventPublisher:
    """Publisher that records events in process memory.

    Used for local development and tests.
    """

    def __init__(self) -> None:
        self.published: list[ChangeEvent] = []

    async def publish(self, event: ChangeEvent) -> None:
        self.published.append(event)

    def for_item(self, item_id: str) -> list[ChangeEvent]:
        """Events published for one item, in publish order."""
        return [event for event in self.published if event.item_id == item_id]
