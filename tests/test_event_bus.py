# tests/test_event_bus.py

from __future__ import annotations

import asyncio

import pytest

from routinelink.connectors.event_bus import InMemoryEventBus
from routinelink.core.events import Channel, DomainEvent, EventKind, publish_event

from .fakes import RecordingPublisher


def _event(kind: EventKind = EventKind.TASK_CREATED, channel: Channel = Channel.TASKS) -> DomainEvent:
    return DomainEvent(kind=kind, channel=channel, actor_id="alice", payload={"n": 1})


@pytest.mark.asyncio
async def test_publish_requires_start() -> None:
    bus = InMemoryEventBus()
    with pytest.raises(RuntimeError):
        await bus.publish(_event())
    # The core helper logs and reports instead of raising.
    assert await publish_event(bus, _event()) is False


@pytest.mark.asyncio
async def test_channel_filtering_and_fanout() -> None:
    bus = InMemoryEventBus()
    bus.start()
    tasks_sub = bus.subscribe(Channel.TASKS)
    all_sub = bus.subscribe()

    await bus.publish(_event())
    await bus.publish(_event(EventKind.STATS_UPDATED, Channel.STATS))

    assert tasks_sub.get_nowait().kind == EventKind.TASK_CREATED
    assert tasks_sub.get_nowait() is None
    assert [all_sub.get_nowait().kind, all_sub.get_nowait().kind] == [
        EventKind.TASK_CREATED,
        EventKind.STATS_UPDATED,
    ]
    assert bus.published == 2


@pytest.mark.asyncio
async def test_close_ends_iteration() -> None:
    bus = InMemoryEventBus()
    bus.start()
    sub = bus.subscribe()

    async def consume() -> list[EventKind]:
        return [e.kind async for e in sub]

    consumer = asyncio.create_task(consume())
    await bus.publish(_event())
    await bus.close()

    assert await asyncio.wait_for(consumer, timeout=1.0) == [EventKind.TASK_CREATED]
    assert not bus.started


@pytest.mark.asyncio
async def test_full_queue_drops_instead_of_blocking() -> None:
    bus = InMemoryEventBus(queue_size=1)
    bus.start()
    sub = bus.subscribe()

    await bus.publish(_event())
    await bus.publish(_event())

    assert sub.dropped == 1


@pytest.mark.asyncio
async def test_close_reaches_subscriber_with_full_queue() -> None:
    bus = InMemoryEventBus(queue_size=1)
    bus.start()
    sub = bus.subscribe()

    await bus.publish(_event())
    await bus.close()

    assert sub.closed
    first = await asyncio.wait_for(sub.get(), timeout=1.0)
    assert first is not None and first.kind == EventKind.TASK_CREATED
    assert await asyncio.wait_for(sub.get(), timeout=1.0) is None
    assert sub.dropped == 0


@pytest.mark.asyncio
async def test_iteration_ends_after_draining_full_queue() -> None:
    bus = InMemoryEventBus(queue_size=2)
    bus.start()
    sub = bus.subscribe(Channel.TASKS)
    for _ in range(3):
        await bus.publish(_event())
    sub.close()

    async def drain() -> int:
        return len([e async for e in sub])

    assert await asyncio.wait_for(drain(), timeout=1.0) == 2
    assert sub.dropped == 1


@pytest.mark.asyncio
async def test_publish_event_swallows_transport_errors() -> None:
    assert await publish_event(RecordingPublisher(fail=True), _event()) is False
    assert await publish_event(None, _event()) is False

    pub = RecordingPublisher()
    assert await publish_event(pub, _event()) is True
    assert pub.kinds() == [EventKind.TASK_CREATED]


def test_event_to_dict() -> None:
    assert _event().to_dict() == {"kind": "task-created", "channel": "tasks-channel", "payload": {"n": 1}}
