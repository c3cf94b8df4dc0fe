# src/routinelink/tasks/recurrence.py

from __future__ import annotations

"""
Recurrence scheduler.

A recurring task moves through:

    Pending --complete--> CompletedToday --delay--> (Resetting) --> Pending
                               |
                               +--undo--> Pending (reset cancelled)

Completing persists pending_reset_at = now + RESET_DELAY_SECONDS and starts a
detached asyncio task that performs the reset when it comes due. The reset is
idempotent: it only acts while pending_reset_at is set, and clears it.

If the process dies before the timer fires, the persisted pending_reset_at is
picked up by reconcile() on read paths and by the periodic run_reset_sweeper().
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from enum import StrEnum

from dateutil.relativedelta import relativedelta

from ..core.clock import same_day
from ..core.errors import InvalidTransition, SchedulingFailure
from ..core.events import EventKind, publish_event, task_event
from ..core.locks import KeyedLocks
from ..core.ports import Clock, EventPublisher, TaskRepo
from .task_models import Recurrence, Task

logger = logging.getLogger(__name__)

# Long enough for completion feedback in the UI, short enough not to look like a due-date edit.
RESET_DELAY_SECONDS = 2.0


class RecurrenceState(StrEnum):
    PENDING = "pending"
    COMPLETED_TODAY = "completed_today"
    RESETTING = "resetting"


@dataclass(frozen=True, slots=True)
class ScheduleResult:
    task_id: str
    reset_at: datetime
    next_due_date: date


def next_due_date(recurrence: Recurrence, anchor: datetime | date) -> date:
    """Start of anchor's day plus one cadence unit (months clamp to the last day)."""
    base = anchor.date() if isinstance(anchor, datetime) else anchor
    if recurrence == Recurrence.DAILY:
        return base + timedelta(days=1)
    if recurrence == Recurrence.WEEKLY:
        return base + timedelta(weeks=1)
    if recurrence == Recurrence.MONTHLY:
        return base + relativedelta(months=1)
    raise InvalidTransition(f"unsupported recurrence: {recurrence!r}")


def is_done_today(task: Task, now: datetime) -> bool:
    """A recurring task counts as done for today iff last_completed falls on now's calendar day."""
    return task.is_recurring and same_day(task.last_completed, now.date())


def is_completed_now(task: Task, now: datetime) -> bool:
    """Completion state shared by toggles and displays: recurring tasks stay done for the day."""
    if task.is_recurring:
        return task.completed or is_done_today(task, now)
    return task.completed


def recurrence_state(task: Task, now: datetime) -> RecurrenceState | None:
    if not task.is_recurring:
        return None
    if task.pending_reset_at is not None:
        return RecurrenceState.RESETTING if now >= task.pending_reset_at else RecurrenceState.COMPLETED_TODAY
    return RecurrenceState.PENDING


def _require_recurrence(task: Task) -> Recurrence:
    if not task.is_recurring or task.recurrence is None:
        raise InvalidTransition(
            f"task {task.id} has is_recurring={task.is_recurring} recurrence={task.recurrence!r}"
        )
    return task.recurrence


def begin_cycle(task: Task, now: datetime, delay_seconds: float = RESET_DELAY_SECONDS) -> Task:
    """Recurring bookkeeping for a completion: Pending -> CompletedToday."""
    _require_recurrence(task)
    return replace(
        task,
        last_completed=now,
        pending_reset_at=now + timedelta(seconds=delay_seconds),
        due_date_before_completion=task.due_date,
    )


def undo_cycle(task: Task) -> Task:
    """
    Recurring bookkeeping for an undo, before or after the reset fired.

    Clearing last_completed makes a repeated undo a no-op (the task is no longer
    done today); the due date goes back to what it was before the completion.
    """
    _require_recurrence(task)
    return replace(
        task,
        last_completed=None,
        pending_reset_at=None,
        due_date=task.due_date_before_completion,
        due_date_before_completion=None,
    )


def apply_reset(task: Task, now: datetime) -> Task:
    """CompletedToday -> Pending with the due date advanced from the completion time."""
    recurrence = _require_recurrence(task)
    anchor = task.last_completed or now
    return replace(
        task,
        completed=False,
        completed_at=None,
        due_date=next_due_date(recurrence, anchor),
        pending_reset_at=None,
        updated_at=now,
    )


class RecurrenceScheduler:
    """
    Owns the in-memory reset timers for recurring tasks.

    task_locks must be the same KeyedLocks instance the orchestrator uses, so a
    reset and a toggle of the same task never interleave.
    """

    def __init__(
            self,
            store: TaskRepo,
            clock: Clock,
            publisher: EventPublisher | None = None,
            *,
            task_locks: KeyedLocks | None = None,
            reset_delay: float = RESET_DELAY_SECONDS,
    ) -> None:
        self._store = store
        self._clock = clock
        self._publisher = publisher
        self._task_locks = task_locks or KeyedLocks()
        self._reset_delay = float(reset_delay)
        self._timers: dict[str, asyncio.Task[None]] = {}

    @property
    def reset_delay(self) -> float:
        return self._reset_delay

    @property
    def task_locks(self) -> KeyedLocks:
        return self._task_locks

    def pending(self) -> list[str]:
        return list(self._timers)

    # ---- timers ----

    def on_completed(self, task: Task, actor_id: str | None = None) -> ScheduleResult:
        """Start the deferred reset for a task already persisted as completed."""
        recurrence = _require_recurrence(task)
        if task.pending_reset_at is None:
            raise InvalidTransition(f"task {task.id} was completed without pending_reset_at")

        self.cancel(task.id)
        timer = asyncio.create_task(
            self._run_deferred(task.id, task.pending_reset_at, actor_id),
            name=f"recurring-reset:{task.id}",
        )
        self._timers[task.id] = timer
        timer.add_done_callback(lambda t, task_id=task.id: self._forget(task_id, t))

        anchor = task.last_completed or self._clock.now()
        result = ScheduleResult(
            task_id=task.id,
            reset_at=task.pending_reset_at,
            next_due_date=next_due_date(recurrence, anchor),
        )
        logger.info("Recurring reset scheduled task=%s at=%s next_due=%s", task.id, result.reset_at, result.next_due_date)
        return result

    def on_uncompleted(self, task: Task) -> bool:
        """Cancel the pending reset (if any). Returns True if a timer was cancelled."""
        cancelled = self.cancel(task.id)
        if cancelled:
            logger.info("Recurring reset cancelled task=%s", task.id)
        return cancelled

    def cancel(self, task_id: str) -> bool:
        timer = self._timers.pop(task_id, None)
        if timer is None or timer.done():
            return False
        timer.cancel()
        return True

    async def cancel_all(self) -> None:
        timers = list(self._timers.values())
        self._timers.clear()
        for t in timers:
            t.cancel()
        if timers:
            await asyncio.gather(*timers, return_exceptions=True)

    def _forget(self, task_id: str, timer: asyncio.Task[None]) -> None:
        if self._timers.get(task_id) is timer:
            self._timers.pop(task_id, None)

    async def _run_deferred(self, task_id: str, due_at: datetime, actor_id: str | None) -> None:
        delay = (due_at - self._clock.now()).total_seconds()
        if delay > 0:
            await asyncio.sleep(delay)

        # From here on an undo can no longer cancel us; it serializes on the task lock instead.
        current = asyncio.current_task()
        if current is not None:
            self._forget(task_id, current)

        try:
            await self.reset_now(task_id, actor_id=actor_id)
        except SchedulingFailure:
            # Already logged; pending_reset_at stays set for reconciliation.
            return

    # ---- reset / reconciliation ----

    async def reset_now(self, task_id: str, *, actor_id: str | None = None) -> Task | None:
        """
        Perform the deferred reset if it is still pending.

        Returns the (possibly unchanged) task, or None if it no longer exists.
        Raises SchedulingFailure if the reset could not be persisted.
        """
        async with self._task_locks.hold(task_id):
            try:
                task = self._store.get_task(task_id)
            except Exception as e:
                logger.exception("reset: get_task failed task=%s", task_id)
                raise SchedulingFailure(task_id, str(e)) from e

            if task is None:
                logger.info("reset: task %s vanished; nothing to do", task_id)
                return None
            if task.pending_reset_at is None or not task.is_recurring:
                return task

            now = self._clock.now()
            reset = apply_reset(task, now)
            try:
                self._store.upsert_task(reset)
            except Exception as e:
                logger.exception("reset: upsert_task failed task=%s", task_id)
                raise SchedulingFailure(task_id, str(e)) from e

        logger.info("Recurring task reset task=%s due=%s", task_id, reset.due_date)
        await publish_event(
            self._publisher,
            task_event(EventKind.TASK_UPDATED, reset, actor_id, is_recurring_reset=True),
        )
        return reset

    async def reconcile(self, task: Task) -> Task:
        """Apply an overdue reset synchronously (read path). Never raises SchedulingFailure."""
        if task.pending_reset_at is None or self._clock.now() < task.pending_reset_at:
            return task
        self.cancel(task.id)
        try:
            reset = await self.reset_now(task.id)
        except SchedulingFailure:
            return task
        return reset or task

    async def reconcile_due(self, *, limit: int = 100) -> int:
        """Reset every task whose pending_reset_at has passed. Returns how many were reset."""
        now = self._clock.now()
        try:
            due = self._store.list_due_resets(now=now, limit=limit)
        except Exception:
            logger.exception("list_due_resets failed")
            return 0

        done = 0
        for task in due:
            if task.id in self._timers:
                # A live timer will handle it momentarily.
                continue
            try:
                if await self.reset_now(task.id) is not None:
                    done += 1
            except SchedulingFailure:
                continue
        if done:
            logger.info("Reconciled %s overdue recurring resets", done)
        return done


async def run_reset_sweeper(
        scheduler: RecurrenceScheduler,
        *,
        interval_seconds: float = 30.0,
        batch_limit: int = 100,
) -> None:
    """
    Polling loop that reconciles resets missed by the in-memory timers
    (e.g. after a restart). To stop it, cancel the coroutine/task.
    """
    sleep_s = max(0.5, float(interval_seconds))
    while True:
        try:
            await scheduler.reconcile_due(limit=int(batch_limit))
        except Exception:
            logger.exception("reset sweep failed")
        await asyncio.sleep(sleep_s)
