# src/routinelink/connectors/event_bus.py

from __future__ import annotations

"""
In-process publish/subscribe transport for domain events.

Stands in for a hosted realtime channel: the core only sees the EventPublisher
port, the console (and tests) subscribe here. Lifecycle is explicit:
start() before publishing, close() on shutdown (subscribers then stop iterating).
"""

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator

from ..core.events import Channel, DomainEvent

logger = logging.getLogger(__name__)


class Subscription:
    """Async-iterable queue of events for one subscriber (optionally one channel)."""

    def __init__(self, bus: InMemoryEventBus, channel: Channel | None, maxsize: int) -> None:
        self._bus = bus
        self.channel = channel
        self._queue: asyncio.Queue[DomainEvent | None] = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def wants(self, event: DomainEvent) -> bool:
        return self.channel is None or self.channel == event.channel

    def _offer(self, event: DomainEvent) -> None:
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning("Subscriber queue full (channel=%s); dropped event", self.channel)

    def _mark_closed(self) -> None:
        if self._closed:
            return
        self._closed = True
        # Wake a reader blocked on an empty queue; a full queue is drained first anyway.
        with contextlib.suppress(asyncio.QueueFull):
            self._queue.put_nowait(None)

    async def get(self) -> DomainEvent | None:
        """Next event, or None once the bus (or this subscription) is closed and drained."""
        if self._closed and self._queue.empty():
            return None
        return await self._queue.get()

    def get_nowait(self) -> DomainEvent | None:
        try:
            return self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None

    def close(self) -> None:
        self._bus._unsubscribe(self)
        self._mark_closed()

    def __aiter__(self) -> AsyncIterator[DomainEvent]:
        return self._iter()

    async def _iter(self) -> AsyncIterator[DomainEvent]:
        while True:
            event = await self.get()
            if event is None:
                return
            yield event


class InMemoryEventBus:
    def __init__(self, *, queue_size: int = 1000) -> None:
        self._queue_size = int(queue_size)
        self._subs: list[Subscription] = []
        self._started = False
        self.published = 0

    @property
    def started(self) -> bool:
        return self._started

    def start(self) -> None:
        self._started = True
        logger.info("Event bus started")

    async def close(self) -> None:
        subs = list(self._subs)
        self._subs.clear()
        for s in subs:
            s._mark_closed()
        self._started = False
        logger.info("Event bus closed (published=%s)", self.published)

    def subscribe(self, channel: Channel | None = None) -> Subscription:
        sub = Subscription(self, channel, self._queue_size)
        self._subs.append(sub)
        return sub

    def _unsubscribe(self, sub: Subscription) -> None:
        if sub in self._subs:
            self._subs.remove(sub)

    async def publish(self, event: DomainEvent) -> None:
        if not self._started:
            raise RuntimeError("event bus is not started")
        self.published += 1
        for sub in list(self._subs):
            if sub.wants(event):
                sub._offer(event)
        logger.debug("Published %s on %s", event.kind.value, event.channel.value)
