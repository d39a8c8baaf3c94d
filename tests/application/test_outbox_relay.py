"""Tests for the outbox relay.

Tests:
- Per-item version ordering
- Exponential backoff
- Dead-lettering after max attempts
- Background loop lifecycle
"""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from catalog_service.application.outbox_relay import OutboxRelay
from catalog_service.catalog.memory import InMemoryOutboxStore
from catalog_service.domain.events import ChangeEvent, ChangeEventKind, OutboxStatus
from catalog_service.domain.exceptions import EventPublishError
from catalog_service.infrastructure.event_publisher import InMemoryEventPublisher
from tests.factories import T0, make_item


class FakeClock:
    """Manually advanced wall clock."""

    def __init__(self) -> None:
        self.now = T0

    def __call__(self):
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def stage_versions(outbox: InMemoryOutboxStore, item_id: str, versions) -> None:
    for version in versions:
        item = make_item(item_id, version=version)
        kind = ChangeEventKind.CREATED if version == 1 else ChangeEventKind.UPDATED
        outbox.stage(ChangeEvent.for_item(kind, item))


class FlakyPublisher(InMemoryEventPublisher):
    """Fails the first `failures` publishes of selected versions."""

    def __init__(self, fail_versions: set[int], failures: int = 1) -> None:
        super().__init__()
        self.fail_versions = fail_versions
        self.remaining = failures

    async def publish(self, event: ChangeEvent) -> None:
        if event.version in self.fail_versions and self.remaining > 0:
            self.remaining -= 1
            raise EventPublishError("broker down")
        await super().publish(event)


class FailingItemPublisher(InMemoryEventPublisher):
    """Never publishes events of one item."""

    def __init__(self, item_id: str) -> None:
        super().__init__()
        self.failing_item_id = item_id

    async def publish(self, event: ChangeEvent) -> None:
        if event.item_id == self.failing_item_id:
            raise EventPublishError("message too large")
        await super().publish(event)


# ============================================================================
# Ordering Tests
# ============================================================================


class TestOrdering:
    """Events of one item go out in version order."""

    @pytest.mark.asyncio
    async def test_dispatch_publishes_in_version_order(self):
        outbox = InMemoryOutboxStore()
        stage_versions(outbox, "sku-1", [1, 2, 3])
        publisher = InMemoryEventPublisher()
        relay = OutboxRelay(outbox, publisher, clock=FakeClock())

        assert await relay.dispatch("sku-1") == 3

        assert [e.version for e in publisher.for_item("sku-1")] == [1, 2, 3]
        assert await outbox.count_pending() == 0

    @pytest.mark.asyncio
    async def test_failure_blocks_later_versions_of_same_item(self):
        outbox = InMemoryOutboxStore()
        stage_versions(outbox, "sku-1", [1, 2, 3])
        stage_versions(outbox, "sku-2", [1])
        publisher = FlakyPublisher(fail_versions={2})
        clock = FakeClock()
        relay = OutboxRelay(outbox, publisher, backoff_base_seconds=1, clock=clock)

        assert await relay.run_once() == 2

        assert [e.version for e in publisher.for_item("sku-1")] == [1]
        assert [e.version for e in publisher.for_item("sku-2")] == [1]

        clock.advance(1)
        assert await relay.run_once() == 2
        assert [e.version for e in publisher.for_item("sku-1")] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_failing_item_does_not_starve_other_items(self):
        outbox = InMemoryOutboxStore()
        stage_versions(outbox, "a-poison", [1, 2])
        stage_versions(outbox, "b-ok", [1])
        publisher = FailingItemPublisher("a-poison")
        clock = FakeClock()
        relay = OutboxRelay(outbox, publisher, batch_size=2, backoff_base_seconds=1, clock=clock)

        for _ in range(4):
            await relay.run_once()
            clock.advance(60)

        assert [e.version for e in publisher.for_item("b-ok")] == [1]
        assert publisher.for_item("a-poison") == []

    @pytest.mark.asyncio
    async def test_backed_off_item_does_not_take_a_batch_slot(self):
        outbox = InMemoryOutboxStore()
        stage_versions(outbox, "a-poison", [1])
        publisher = FailingItemPublisher("a-poison")
        clock = FakeClock()
        relay = OutboxRelay(outbox, publisher, batch_size=1, backoff_base_seconds=10, clock=clock)

        assert await relay.run_once() == 0
        stage_versions(outbox, "z-late", [1])

        assert await outbox.due_items(clock(), limit=1) == ["z-late"]
        assert await relay.run_once() == 1
        assert [e.version for e in publisher.for_item("z-late")] == [1]

    @pytest.mark.asyncio
    async def test_backed_off_event_not_retried_early(self):
        outbox = InMemoryOutboxStore()
        stage_versions(outbox, "sku-1", [1])
        publisher = FlakyPublisher(fail_versions={1})
        clock = FakeClock()
        relay = OutboxRelay(outbox, publisher, backoff_base_seconds=5, clock=clock)

        assert await relay.dispatch("sku-1") == 0
        clock.advance(4)
        assert await relay.dispatch("sku-1") == 0
        assert publisher.published == []

        clock.advance(1)
        assert await relay.dispatch("sku-1") == 1

    @pytest.mark.asyncio
    async def test_concurrent_dispatch_publishes_each_event_once(self):
        outbox = InMemoryOutboxStore()
        stage_versions(outbox, "sku-1", [1, 2])
        publisher = InMemoryEventPublisher()
        relay = OutboxRelay(outbox, publisher, clock=FakeClock())

        results = await asyncio.gather(relay.dispatch("sku-1"), relay.dispatch("sku-1"))

        assert sum(results) == 2
        assert [e.version for e in publisher.published] == [1, 2]
        assert relay._item_locks._locks == {}


# ============================================================================
# Retry Tests
# ============================================================================


class TestRetries:
    """Backoff and dead-lettering."""

    def test_backoff_doubles_and_caps(self):
        relay = OutboxRelay(
            InMemoryOutboxStore(),
            InMemoryEventPublisher(),
            backoff_base_seconds=1,
            backoff_max_seconds=10,
        )

        assert [relay.backoff(n) for n in range(6)] == [1, 2, 4, 8, 10, 10]

    @pytest.mark.asyncio
    async def test_failed_event_scheduled_with_backoff(self):
        outbox = InMemoryOutboxStore()
        stage_versions(outbox, "sku-1", [1])
        clock = FakeClock()
        publisher = AsyncMock()
        publisher.publish.side_effect = EventPublishError("broker down")
        relay = OutboxRelay(outbox, publisher, backoff_base_seconds=2, clock=clock)

        await relay.dispatch("sku-1")
        clock.advance(2)
        await relay.dispatch("sku-1")

        (entry,) = outbox.entries()
        assert entry.attempts == 2
        assert entry.status == OutboxStatus.PENDING
        assert entry.next_attempt_at == clock.now + timedelta(seconds=4)

    @pytest.mark.asyncio
    async def test_event_dead_after_max_attempts(self):
        outbox = InMemoryOutboxStore()
        stage_versions(outbox, "sku-1", [1, 2])
        publisher = AsyncMock()
        publisher.publish.side_effect = EventPublishError("broker down")
        relay = OutboxRelay(outbox, publisher, backoff_base_seconds=0, max_attempts=3, clock=FakeClock())

        for _ in range(3):
            await relay.dispatch("sku-1")

        first, second = outbox.entries()
        assert first.status == OutboxStatus.DEAD
        assert first.attempts == 3
        assert second.status == OutboxStatus.PENDING

        # A dead event no longer blocks the item.
        publisher.publish.side_effect = None
        assert await relay.dispatch("sku-1") == 1
        assert second.status == OutboxStatus.PUBLISHED


# ============================================================================
# Lifecycle Tests
# ============================================================================


class TestLifecycle:
    """Background loop start/stop."""

    @pytest.mark.asyncio
    async def test_background_loop_publishes_pending_events(self):
        outbox = InMemoryOutboxStore()
        stage_versions(outbox, "sku-1", [1])
        publisher = InMemoryEventPublisher()
        relay = OutboxRelay(outbox, publisher, poll_interval_seconds=0.01)

        await relay.start()
        for _ in range(100):
            if publisher.published:
                break
            await asyncio.sleep(0.01)
        await relay.stop()

        assert [e.version for e in publisher.published] == [1]

    @pytest.mark.asyncio
    async def test_loop_survives_store_errors(self):
        outbox = AsyncMock()
        outbox.due_items.side_effect = RuntimeError("database gone")
        relay = OutboxRelay(outbox, InMemoryEventPublisher(), poll_interval_seconds=0.01)

        await relay.start()
        await asyncio.sleep(0.05)
        await relay.stop()

        assert outbox.due_items.await_count >= 2

    @pytest.mark.asyncio
    async def test_stop_without_start(self):
        relay = OutboxRelay(InMemoryOutboxStore(), InMemoryEventPublisher())

        await relay.stop()
