# tests/test_recurrence.py

from __future__ import annotations

import asyncio
from datetime import date, datetime, timedelta

import pytest

from routinelink.core.errors import InvalidTransition
from routinelink.core.events import EventKind
from routinelink.core.locks import KeyedLocks
from routinelink.tasks.recurrence import (
    RecurrenceScheduler,
    RecurrenceState,
    begin_cycle,
    is_done_today,
    next_due_date,
    recurrence_state,
    run_reset_sweeper,
)
from routinelink.tasks.task_models import Recurrence, Task
from routinelink.tasks.task_store import TaskStore

from .fakes import FakeClock, RecordingPublisher

MONDAY_10AM = datetime(2024, 3, 4, 10, 0, 0)


def _routine(task_id: str = "t1", recurrence: Recurrence = Recurrence.DAILY, **kw) -> Task:
    return Task(
        id=task_id,
        title="Water plants",
        created_by="alice",
        created_at=MONDAY_10AM - timedelta(days=3),
        updated_at=MONDAY_10AM - timedelta(days=3),
        is_recurring=True,
        recurrence=recurrence,
        due_date=MONDAY_10AM.date(),
        **kw,
    )


def test_next_due_date_per_cadence() -> None:
    assert next_due_date(Recurrence.DAILY, MONDAY_10AM) == date(2024, 3, 5)
    # Weekly: same weekday next week.
    nxt = next_due_date(Recurrence.WEEKLY, MONDAY_10AM)
    assert nxt == date(2024, 3, 11)
    assert nxt.weekday() == 0
    # Monthly clamps to the end of shorter months.
    assert next_due_date(Recurrence.MONTHLY, date(2024, 1, 31)) == date(2024, 2, 29)
    assert next_due_date(Recurrence.MONTHLY, date(2023, 1, 31)) == date(2023, 2, 28)


def test_done_today_follows_last_completed_day() -> None:
    task = _routine(last_completed=MONDAY_10AM)
    assert is_done_today(task, MONDAY_10AM + timedelta(hours=13))
    assert not is_done_today(task, MONDAY_10AM + timedelta(days=1))
    assert not is_done_today(_routine(), MONDAY_10AM)


def test_state_machine_labels() -> None:
    task = begin_cycle(_routine(), MONDAY_10AM, 2.0)
    assert recurrence_state(task, MONDAY_10AM + timedelta(seconds=1)) == RecurrenceState.COMPLETED_TODAY
    assert recurrence_state(task, MONDAY_10AM + timedelta(seconds=2)) == RecurrenceState.RESETTING
    assert recurrence_state(_routine(), MONDAY_10AM) == RecurrenceState.PENDING


def test_begin_cycle_rejects_inconsistent_task() -> None:
    broken = Task(
        id="x",
        title="x",
        created_by="alice",
        created_at=MONDAY_10AM,
        updated_at=MONDAY_10AM,
        is_recurring=True,
        recurrence=None,
    )
    with pytest.raises(InvalidTransition):
        begin_cycle(broken, MONDAY_10AM)


@pytest.mark.asyncio
async def test_deferred_reset_fires_and_advances_due_date(store: TaskStore) -> None:
    clock = FakeClock(MONDAY_10AM)
    pub = RecordingPublisher()
    sched = RecurrenceScheduler(store, clock, pub, reset_delay=0.05)

    task = begin_cycle(_routine(completed=True, completed_at=MONDAY_10AM), MONDAY_10AM, 0.05)
    store.upsert_task(task)
    result = sched.on_completed(task, "alice")
    assert result.next_due_date == date(2024, 3, 5)
    assert sched.pending() == ["t1"]

    clock.advance(seconds=2)
    await asyncio.sleep(0.2)

    after = store.get_task("t1")
    assert after.completed is False
    assert after.completed_at is None
    assert after.due_date == date(2024, 3, 5)
    assert after.pending_reset_at is None
    assert after.last_completed == MONDAY_10AM
    assert is_done_today(after, clock.now())
    assert sched.pending() == []
    assert pub.kinds() == [EventKind.TASK_UPDATED]
    assert pub.events[0].payload["is_recurring_reset"] is True


@pytest.mark.asyncio
async def test_weekly_reset_lands_on_same_weekday(store: TaskStore) -> None:
    clock = FakeClock(MONDAY_10AM)
    sched = RecurrenceScheduler(store, clock, reset_delay=0.0)

    task = begin_cycle(_routine(recurrence=Recurrence.WEEKLY, completed=True), MONDAY_10AM, 0.0)
    store.upsert_task(task)
    reset = await sched.reset_now("t1")

    assert reset.due_date == date(2024, 3, 11)


@pytest.mark.asyncio
async def test_cancel_prevents_reset(store: TaskStore) -> None:
    clock = FakeClock(MONDAY_10AM)
    sched = RecurrenceScheduler(store, clock, reset_delay=0.05)

    task = begin_cycle(_routine(completed=True), MONDAY_10AM, 0.05)
    store.upsert_task(task)
    sched.on_completed(task)

    assert sched.on_uncompleted(task) is True
    await asyncio.sleep(0.1)

    assert store.get_task("t1").completed is True
    assert sched.pending() == []


@pytest.mark.asyncio
async def test_reset_is_idempotent(store: TaskStore) -> None:
    clock = FakeClock(MONDAY_10AM)
    pub = RecordingPublisher()
    sched = RecurrenceScheduler(store, clock, pub)

    store.upsert_task(begin_cycle(_routine(completed=True), MONDAY_10AM))
    clock.advance(seconds=3)

    first = await sched.reset_now("t1")
    second = await sched.reset_now("t1")

    assert first.due_date == date(2024, 3, 5)
    assert second.due_date == date(2024, 3, 5)
    assert len(pub.events) == 1


@pytest.mark.asyncio
async def test_reconcile_applies_missed_reset_on_read(store: TaskStore) -> None:
    clock = FakeClock(MONDAY_10AM)
    sched = RecurrenceScheduler(store, clock)

    # Completed, then the process "restarted" before the timer fired.
    task = begin_cycle(_routine(completed=True), MONDAY_10AM)
    store.upsert_task(task)

    still = await sched.reconcile(task)
    assert still.completed is True

    clock.advance(seconds=5)
    fixed = await sched.reconcile(store.get_task("t1"))
    assert fixed.completed is False
    assert fixed.due_date == date(2024, 3, 5)


@pytest.mark.asyncio
async def test_reconcile_due_skips_live_timers(store: TaskStore) -> None:
    clock = FakeClock(MONDAY_10AM)
    sched = RecurrenceScheduler(store, clock, task_locks=KeyedLocks(), reset_delay=60)

    a = begin_cycle(_routine("a", completed=True), MONDAY_10AM, 60)
    b = begin_cycle(_routine("b", completed=True), MONDAY_10AM, 60)
    store.upsert_task(a)
    store.upsert_task(b)
    sched.on_completed(a)
    await asyncio.sleep(0)  # let a's timer start sleeping

    clock.advance(seconds=61)
    assert await sched.reconcile_due() == 1
    assert store.get_task("b").completed is False
    assert store.get_task("a").completed is True

    await sched.cancel_all()


@pytest.mark.asyncio
async def test_sweeper_reconciles_until_cancelled(store: TaskStore) -> None:
    clock = FakeClock(MONDAY_10AM)
    sched = RecurrenceScheduler(store, clock)
    store.upsert_task(begin_cycle(_routine(completed=True), MONDAY_10AM))
    clock.advance(seconds=10)

    runner = asyncio.create_task(run_reset_sweeper(sched, interval_seconds=0.5))
    await asyncio.sleep(0.05)
    runner.cancel()
    with pytest.raises(asyncio.CancelledError):
        await runner

    assert store.get_task("t1").completed is False


@pytest.mark.asyncio
async def test_reset_of_deleted_task_is_noop(store: TaskStore) -> None:
    sched = RecurrenceScheduler(store, FakeClock(MONDAY_10AM))
    assert await sched.reset_now("missing") is None
