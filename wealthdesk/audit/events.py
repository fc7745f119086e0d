"""In-process system event bus.

Pipeline components publish a SystemEvent for every state change; the
audit trail (and anything else registered at startup) consumes them.

Delivery:
    - one background worker drains a bounded queue, so subscribers see
      events in publication order and a slow subscriber never blocks a
      request handler
    - a full queue drops the event with a warning instead of blocking
    - before start_event_system() (scripts, unit tests) events are
      delivered inline
    - a failing subscriber is logged and skipped, the others still run

Usage:
    from wealthdesk.audit.events import emit, subscribe

    subscribe(record_event)  # async def record_event(event: SystemEvent) -> None
    subscribe(page_watcher, [EventType.PAGE_RENDERED])

    await emit(SystemEvent(event_type=EventType.PROPOSAL_CREATED, proposal_id=pid))
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from typing import Any

from wealthdesk.config import settings
from wealthdesk.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[SystemEvent], Coroutine[Any, Any, None]]


@dataclass(frozen=True)
class Subscription:
    handler: EventHandler
    event_types: frozenset[EventType] | None = None

    def wants(self, event: SystemEvent) -> bool:
        return self.event_types is None or event.event_type in self.event_types


_subscriptions: list[Subscription] = []
_queue: asyncio.Queue[SystemEvent] | None = None
_worker: asyncio.Task[None] | None = None
_dropped = 0


def subscribe(handler: EventHandler, event_types: list[EventType] | None = None) -> Subscription:
    """Register ``handler`` for every event, or only for ``event_types``."""
    subscription = Subscription(handler, frozenset(event_types) if event_types is not None else None)
    _subscriptions.append(subscription)
    logger.info(
        "Event subscriber registered: %s (%s)",
        getattr(handler, "__name__", repr(handler)),
        "all events" if event_types is None else ", ".join(sorted(t.value for t in event_types)),
    )
    return subscription


def unsubscribe(handler: EventHandler) -> None:
    """Remove every subscription of ``handler``."""
    _subscriptions[:] = [s for s in _subscriptions if s.handler is not handler]


def dropped_events() -> int:
    """Events discarded because the queue was full since the bus started."""
    return _dropped


async def emit(event: SystemEvent) -> None:
    """Publish an event. Returns immediately when nobody is listening."""
    global _dropped

    logger.debug(
        "Event %s (proposal=%s illustration=%s)",
        event.event_type.value,
        event.proposal_id,
        event.illustration_id,
    )
    if not any(s.wants(event) for s in _subscriptions):
        return

    if _queue is None:
        await _deliver(event)
        return

    try:
        _queue.put_nowait(event)
    except asyncio.QueueFull:
        _dropped += 1
        logger.warning("Event queue full, dropped %s (%d dropped so far)", event.event_type.value, _dropped)


async def _deliver(event: SystemEvent) -> None:
    for subscription in list(_subscriptions):
        if not subscription.wants(event):
            continue
        try:
            await subscription.handler(event)
        except Exception:
            logger.exception(
                "Event subscriber %s failed on %s",
                getattr(subscription.handler, "__name__", repr(subscription.handler)),
                event.event_type.value,
            )


async def _run_worker(queue: asyncio.Queue[SystemEvent]) -> None:
    while True:
        event = await queue.get()
        try:
            await _deliver(event)
        finally:
            queue.task_done()


async def start_event_system(queue_size: int | None = None) -> None:
    """Start the background worker. Called from the application lifespan."""
    global _queue, _worker, _dropped

    if _worker is not None and not _worker.done():
        return
    _dropped = 0
    _queue = asyncio.Queue(maxsize=queue_size or settings.audit.event_queue_size)
    _worker = asyncio.create_task(_run_worker(_queue), name="event-bus")
    logger.info("Event system started (%d subscriber(s))", len(_subscriptions))


async def stop_event_system(drain_timeout: float | None = None) -> None:
    """Flush pending events (bounded by ``drain_timeout``) and stop the worker."""
    global _queue, _worker

    timeout = settings.audit.event_drain_timeout if drain_timeout is None else drain_timeout
    if _queue is not None and _worker is not None and not _worker.done():
        try:
            async with asyncio.timeout(timeout):
                await _queue.join()
        except TimeoutError:
            logger.warning("Event system stopped with %d undelivered event(s)", _queue.qsize())

    if _worker is not None:
        _worker.cancel()
        await asyncio.gather(_worker, return_exceptions=True)

    _worker = None
    _queue = None
    logger.info("Event system stopped")
