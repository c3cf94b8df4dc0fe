# src/routinelink/tasks/task_api.py

from __future__ import annotations

"""
Task CRUD handlers (descriptive fields only).

Completion state is owned by the orchestrator; update_task() refuses to touch it.
Concurrent edits of the same task's metadata are last-write-wins.
"""

import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Any

from ..core.errors import InvalidTransition, NotFound, PermissionDenied
from ..core.events import EventKind, publish_event, task_deleted, task_event
from ..core.state import AppState
from .recurrence import is_completed_now
from .task_filters import TaskFilter, build_task_predicate, eq
from .task_models import DEFAULT_PRIORITY, Recurrence, Task, validate_task

logger = logging.getLogger(__name__)

_EDITABLE = frozenset(
    {
        "title",
        "description",
        "due_date",
        "priority",
        "labels",
        "project_id",
        "is_recurring",
        "recurrence",
        "is_shared",
        "assigned_to",
    }
)


@dataclass(slots=True)
class TaskDraft:
    title: str
    description: str | None = None
    due_date: date | None = None
    priority: int = DEFAULT_PRIORITY
    labels: list[str] = field(default_factory=list)
    project_id: str | None = None
    is_recurring: bool = False
    recurrence: Recurrence | str | None = None
    is_shared: bool = False
    assigned_to: str | None = None


def _parse_recurrence(raw: Recurrence | str | None) -> Recurrence | None:
    if raw is None or raw == "":
        return None
    try:
        return Recurrence(raw)
    except ValueError as e:
        raise InvalidTransition(f"unknown recurrence: {raw!r}") from e


def _parse_due_date(raw: Any) -> date | None:
    if raw is None or raw == "":
        return None
    if isinstance(raw, date):
        return raw
    try:
        return date.fromisoformat(str(raw)[:10])
    except ValueError as e:
        raise InvalidTransition(f"invalid due date: {raw!r}") from e


async def create_task(state: AppState, draft: TaskDraft, *, created_by: str) -> Task:
    if not created_by:
        raise InvalidTransition("created_by is required")

    now = state.clock.now()
    is_recurring = bool(draft.is_recurring)
    task = Task(
        id=uuid.uuid4().hex,
        title=(draft.title or "").strip(),
        description=draft.description,
        created_by=created_by,
        assigned_to=draft.assigned_to or None,
        project_id=draft.project_id or None,
        due_date=_parse_due_date(draft.due_date),
        priority=draft.priority,
        labels=sorted(set(draft.labels or [])),
        is_recurring=is_recurring,
        # A non-recurring task never keeps a cadence.
        recurrence=_parse_recurrence(draft.recurrence) if is_recurring else None,
        is_shared=bool(draft.is_shared),
        created_at=now,
        updated_at=now,
    )
    validate_task(task)
    if task.project_id and state.store.get_project(task.project_id) is None:
        raise NotFound("project", task.project_id)

    state.store.upsert_task(task)
    logger.info("Task created id=%s by=%s recurring=%s", task.id, created_by, task.recurrence)
    await publish_event(state.bus, task_event(EventKind.TASK_CREATED, task, created_by))
    return task


async def get_task(state: AppState, task_id: str) -> Task:
    task = state.store.get_task(task_id)
    if task is None:
        raise NotFound("task", task_id)
    return await state.scheduler.reconcile(task)


async def list_tasks(state: AppState, user_id: str, filters: TaskFilter | None = None) -> list[Task]:
    today = state.clock.now().date()
    predicate = build_task_predicate(filters or TaskFilter(), user_id, today)
    tasks = state.store.list_tasks(predicate)
    return [await state.scheduler.reconcile(t) for t in tasks]


async def list_all_tasks(state: AppState, *, acting_user: str, created_by: str | None = None) -> list[Task]:
    """Every user's tasks, optionally only one creator's. Admin only."""
    if not state.is_admin(acting_user):
        raise PermissionDenied("only an admin can list every user's tasks")
    predicate = eq("created_by", created_by) if created_by else None
    tasks = state.store.list_tasks(predicate)
    return [await state.scheduler.reconcile(t) for t in tasks]


def completed_for_display(state: AppState, task: Task) -> bool:
    """What a client should render as "done"; matches what /done and /undo act on."""
    return is_completed_now(task, state.clock.now())


async def update_task(state: AppState, task_id: str, changes: dict[str, Any], *, acting_user: str) -> Task:
    if "completed" in changes:
        raise InvalidTransition("completion changes go through toggle_complete()")
    unknown = set(changes) - _EDITABLE
    if unknown:
        raise InvalidTransition(f"unknown task fields: {', '.join(sorted(unknown))}")

    async with state.task_locks.hold(task_id):
        task = state.store.get_task(task_id)
        if task is None:
            raise NotFound("task", task_id)

        fields = dict(changes)
        if "due_date" in fields:
            fields["due_date"] = _parse_due_date(fields["due_date"])
        if "labels" in fields:
            fields["labels"] = sorted(set(fields["labels"] or []))
        if "recurrence" in fields:
            fields["recurrence"] = _parse_recurrence(fields["recurrence"])
        if "title" in fields:
            fields["title"] = (fields["title"] or "").strip()

        updated = replace(task, **fields, updated_at=state.clock.now())
        if not updated.is_recurring:
            if "recurrence" in changes and updated.recurrence is not None:
                raise InvalidTransition("recurrence set on a non-recurring task")
            updated = replace(updated, recurrence=None, pending_reset_at=None, due_date_before_completion=None)
        validate_task(updated)
        if updated.project_id and updated.project_id != task.project_id:
            if state.store.get_project(updated.project_id) is None:
                raise NotFound("project", updated.project_id)

        if task.is_recurring and not updated.is_recurring:
            state.scheduler.cancel(task_id)

        state.store.upsert_task(updated)

    await publish_event(state.bus, task_event(EventKind.TASK_UPDATED, updated, acting_user))
    return updated


async def delete_task(state: AppState, task_id: str, *, acting_user: str) -> None:
    async with state.task_locks.hold(task_id):
        if state.store.get_task(task_id) is None:
            raise NotFound("task", task_id)
        state.scheduler.cancel(task_id)
        state.store.delete_task(task_id)

    logger.info("Task deleted id=%s by=%s", task_id, acting_user)
    await publish_event(state.bus, task_deleted(task_id, acting_user))
