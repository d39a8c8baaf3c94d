"""Outbox relay.

Publishes staged change events and retries failed publishes with
exponential backoff. Events of one item are published strictly in
version order: a failed or backed-off event blocks the later events of
the same item until it goes through or is marked dead.
"""

import asyncio
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import datetime, timedelta

import structlog

from catalog_service.catalog.repository import OutboxStore
from catalog_service.domain.entities import utcnow
from catalog_service.domain.events import OutboxEntry
from catalog_service.infrastructure.event_publisher import EventPublisher

logger = structlog.get_logger()


class _ItemLocks:
    """Per-item asyncio locks, dropped once no task holds or awaits them."""

    def __init__(self) -> None:
        self._locks: dict[str, tuple[asyncio.Lock, int]] = {}

    @asynccontextmanager
    async def hold(self, item_id: str) -> AsyncIterator[None]:
        lock, users = self._locks.get(item_id, (asyncio.Lock(), 0))
        self._locks[item_id] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            lock, users = self._locks[item_id]
            if users == 1:
                del self._locks[item_id]
            else:
                self._locks[item_id] = (lock, users - 1)


class OutboxRelay:
    """Moves events from the outbox to the event publisher.

    Example usage:
        relay = OutboxRelay(store.outbox, RedisStreamsPublisher(url))
        await relay.start()          # background retry loop
        await relay.dispatch("sku-1")  # publish right after a write
        await relay.stop()
    """

    def __init__(
        self,
        outbox: OutboxStore,
        publisher: EventPublisher,
        batch_size: int = 100,
        poll_interval_seconds: float = 2.0,
        backoff_base_seconds: float = 1.0,
        backoff_max_seconds: float = 300.0,
        max_attempts: int = 20,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize relay.

        Args:
            outbox: Source of staged events.
            publisher: Destination for events.
            batch_size: Pending events read per pass.
            poll_interval_seconds: Sleep between background passes.
            backoff_base_seconds: First retry delay.
            backoff_max_seconds: Retry delay cap.
            max_attempts: Attempts before an event is marked dead.
            clock: Current-time source, injectable for tests.
        """
        self.outbox = outbox
        self.publisher = publisher
        self.batch_size = batch_size
        self.poll_interval_seconds = poll_interval_seconds
        self.backoff_base_seconds = backoff_base_seconds
        self.backoff_max_seconds = backoff_max_seconds
        self.max_attempts = max_attempts
        self._clock = clock
        self._item_locks = _ItemLocks()
        self._task: asyncio.Task | None = None
        self._running = False

    def backoff(self, attempts: int) -> float:
        """Delay before the next attempt after `attempts` previous failures.

        Args:
            attempts: Failures recorded so far.

        Returns:
            Delay in seconds.
        """
        return min(self.backoff_base_seconds * (2 ** attempts), self.backoff_max_seconds)

    async def _publish_entry(self, entry: OutboxEntry) -> bool:
        event = entry.event
        try:
            await self.publisher.publish(event)
        except Exception as e:
            attempts = entry.attempts + 1
            dead = attempts >= self.max_attempts
            next_attempt_at = self._clock() + timedelta(seconds=self.backoff(entry.attempts))
            await self.outbox.mark_failed(event.event_id, str(e), next_attempt_at, dead=dead)
            if dead:
                logger.error(
                    "Change event dead after retries",
                    event_id=event.event_id,
                    item_id=event.item_id,
                    version=event.version,
                    attempts=attempts,
                    error=str(e),
                )
            else:
                logger.warning(
                    "Change event publish failed, will retry",
                    event_id=event.event_id,
                    item_id=event.item_id,
                    version=event.version,
                    attempts=attempts,
                    next_attempt_at=next_attempt_at.isoformat(),
                    error=str(e),
                )
            return False

        await self.outbox.mark_published(event.event_id, self._clock())
        return True

    async def dispatch(self, item_id: str) -> int:
        """Publish the due events of one item in version order.

        Stops at the first event that is not yet due or fails.

        Args:
            item_id: Item whose events to publish.

        Returns:
            Number of events published.
        """
        published = 0
        async with self._item_locks.hold(item_id):
            entries = await self.outbox.pending(limit=self.batch_size, item_id=item_id)
            now = self._clock()
            for entry in entries:
                if entry.next_attempt_at > now:
                    break
                if not await self._publish_entry(entry):
                    break
                published += 1
        return published

    async def run_once(self) -> int:
        """Run one relay pass over items with a due event.

        Returns:
            Number of events published.
        """
        item_ids = await self.outbox.due_items(self._clock(), limit=self.batch_size)
        published = 0
        for item_id in item_ids:
            published += await self.dispatch(item_id)
        if published:
            logger.info("Outbox relay pass complete", published=published, items=len(item_ids))
        return published

    async def _run(self) -> None:
        while self._running:
            try:
                await self.run_once()
            except Exception as e:
                logger.exception("Outbox relay pass failed", error=str(e))
            await asyncio.sleep(self.poll_interval_seconds)

    async def start(self) -> None:
        """Start the background retry loop."""
        if self._task is not None:
            return
        self._running = True
        self._task = asyncio.create_task(self._run(), name="outbox-relay")
        logger.info("Outbox relay started", poll_interval_seconds=self.poll_interval_seconds)

    async def stop(self) -> None:
        """Stop the background retry loop."""
        self._running = False
        if self._task is None:
            return
        self._task.cancel()
        await asyncio.gather(self._task, return_exceptions=True)
        self._task = None
        logger.info("Outbox relay stopped")
