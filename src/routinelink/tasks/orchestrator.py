# src/routinelink/tasks/orchestrator.py

from __future__ import annotations

"""
Task completion orchestrator.

toggle_complete() is the single entry point for completing / uncompleting a task:

1. load the task (NotFound if absent)
2. no-op if it is already in the requested state (duplicate retries)
3. persist the task's completion fields
4. apply +1 / -1 to the acting user's stat for today (rolled back with step 3 on failure)
5. recurring tasks: schedule the deferred reset, or cancel it on undo
6. publish task-completed / task-updated

Authorization is the caller's job.
"""

import logging
from dataclasses import dataclass, field, replace

from ..core.errors import NotFound
from ..core.events import DomainEvent, EventKind, publish_event, stats_updated, task_event
from ..core.locks import KeyedLocks
from ..core.ports import Clock, EventPublisher, TaskRepo
from ..stats.accumulator import DailyStatAccumulator
from .recurrence import RecurrenceScheduler, ScheduleResult, begin_cycle, is_completed_now, undo_cycle
from .task_models import Task

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ToggleResult:
    task: Task
    events: list[DomainEvent] = field(default_factory=list)
    schedule: ScheduleResult | None = None

    @property
    def changed(self) -> bool:
        return bool(self.events)


class TaskCompletionOrchestrator:
    def __init__(
            self,
            store: TaskRepo,
            accumulator: DailyStatAccumulator,
            scheduler: RecurrenceScheduler,
            clock: Clock,
            publisher: EventPublisher | None = None,
            *,
            task_locks: KeyedLocks | None = None,
    ) -> None:
        self._store = store
        self._accumulator = accumulator
        self._scheduler = scheduler
        self._clock = clock
        self._publisher = publisher
        self._task_locks = task_locks or scheduler.task_locks

    def is_completed(self, task: Task) -> bool:
        """Current completion state as seen by toggles (recurring: done today counts)."""
        return is_completed_now(task, self._clock.now())

    async def toggle_complete(self, task_id: str, requested_by: str, completed: bool) -> ToggleResult:
        async with self._task_locks.hold(task_id):
            task = self._store.get_task(task_id)
            if task is None:
                raise NotFound("task", task_id)

            if self.is_completed(task) == completed:
                logger.debug("Toggle no-op task=%s completed=%s user=%s", task_id, completed, requested_by)
                return ToggleResult(task=task)

            now = self._clock.now()
            if completed:
                updated = replace(task, completed=True, completed_at=now, updated_at=now)
                if task.is_recurring:
                    updated = begin_cycle(updated, now, self._scheduler.reset_delay)
            else:
                if task.is_recurring:
                    # Cancel before writing so the timer cannot revive the task mid-undo.
                    self._scheduler.on_uncompleted(task)
                    updated = undo_cycle(task)
                else:
                    updated = task
                updated = replace(updated, completed=False, completed_at=None, updated_at=now)

            self._store.upsert_task(updated)

            delta = 1 if completed else -1
            try:
                stat = await self._accumulator.apply_delta(requested_by, now.date(), delta)
            except Exception:
                logger.exception("Stat update failed; rolling back task=%s", task_id)
                self._store.upsert_task(task)
                if not completed and task.is_recurring and task.pending_reset_at is not None:
                    self._scheduler.on_completed(task, requested_by)
                raise

            schedule: ScheduleResult | None = None
            if completed and updated.is_recurring:
                schedule = self._scheduler.on_completed(updated, requested_by)

        kind = EventKind.TASK_COMPLETED if completed else EventKind.TASK_UPDATED
        event = task_event(kind, updated, requested_by)
        await publish_event(self._publisher, event)

        logger.info(
            "Task %s %s by %s (count=%s streak=%s)",
            task_id,
            "completed" if completed else "reopened",
            requested_by,
            stat.completed_count,
            stat.streak,
        )
        return ToggleResult(task=updated, events=[stats_updated(stat), event], schedule=schedule)
