"""Tests for the system event bus."""

from __future__ import annotations

import asyncio
import uuid

import pytest

from wealthdesk.audit import events
from wealthdesk.schemas.events import EventType, SystemEvent


def _event(event_type: EventType = EventType.PROPOSAL_CREATED) -> SystemEvent:
    return SystemEvent(event_type=event_type, proposal_id=uuid.uuid4(), source_module="tests")


@pytest.fixture(autouse=True)
async def clean_bus():
    yield
    await events.stop_event_system(drain_timeout=1)
    events._subscriptions.clear()


class TestInlineDelivery:
    @pytest.mark.asyncio()
    async def test_no_subscribers_is_a_noop(self):
        await events.emit(_event())

    @pytest.mark.asyncio()
    async def test_delivered_before_worker_starts(self):
        received: list[SystemEvent] = []

        async def handler(event: SystemEvent) -> None:
            received.append(event)

        events.subscribe(handler)
        event = _event()
        await events.emit(event)

        assert received == [event]

    @pytest.mark.asyncio()
    async def test_type_filter(self):
        received: list[EventType] = []

        async def handler(event: SystemEvent) -> None:
            received.append(event.event_type)

        events.subscribe(handler, [EventType.PAGE_RENDERED])
        await events.emit(_event(EventType.PROPOSAL_CREATED))
        await events.emit(_event(EventType.PAGE_RENDERED))

        assert received == [EventType.PAGE_RENDERED]

    @pytest.mark.asyncio()
    async def test_failing_subscriber_does_not_block_others(self):
        received: list[SystemEvent] = []

        async def broken(event: SystemEvent) -> None:
            raise RuntimeError("audit table missing")

        async def handler(event: SystemEvent) -> None:
            received.append(event)

        events.subscribe(broken)
        events.subscribe(handler)
        await events.emit(_event())

        assert len(received) == 1

    @pytest.mark.asyncio()
    async def test_unsubscribe(self):
        received: list[SystemEvent] = []

        async def handler(event: SystemEvent) -> None:
            received.append(event)

        events.subscribe(handler)
        events.unsubscribe(handler)
        await events.emit(_event())

        assert received == []


class TestWorker:
    @pytest.mark.asyncio()
    async def test_events_delivered_in_order(self):
        received: list[EventType] = []

        async def handler(event: SystemEvent) -> None:
            await asyncio.sleep(0)
            received.append(event.event_type)

        events.subscribe(handler)
        await events.start_event_system()
        for event_type in (EventType.PROPOSAL_CREATED, EventType.ILLUSTRATION_UPLOADED, EventType.PAGE_RENDERED):
            await events.emit(_event(event_type))
        await events.stop_event_system(drain_timeout=1)

        assert received == [EventType.PROPOSAL_CREATED, EventType.ILLUSTRATION_UPLOADED, EventType.PAGE_RENDERED]

    @pytest.mark.asyncio()
    async def test_full_queue_drops(self):
        gate = asyncio.Event()

        async def slow(event: SystemEvent) -> None:
            await gate.wait()

        events.subscribe(slow)
        await events.start_event_system(queue_size=1)
        await events.emit(_event())
        await asyncio.sleep(0)
        await events.emit(_event())
        await events.emit(_event())

        assert events.dropped_events() == 1
        gate.set()
