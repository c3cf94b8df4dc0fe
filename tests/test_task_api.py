# tests/test_task_api.py

from __future__ import annotations

from datetime import date, timedelta

import pytest

from routinelink.core.errors import InvalidTransition, NotFound, PermissionDenied
from routinelink.tasks.task_api import (
    TaskDraft,
    create_task,
    delete_task,
    get_task,
    list_all_tasks,
    list_tasks,
    update_task,
)
from routinelink.tasks.task_filters import (
    TaskFilter,
    build_task_predicate,
    contains_any,
    eq,
    is_null,
)


def test_predicates_compose_with_parentheses() -> None:
    p = eq("created_by", "alice") & (eq("is_shared", True) | is_null("due_date"))
    assert p.sql == "(created_by = ?) AND ((is_shared = ?) OR (due_date IS NULL))"
    assert p.params == ("alice", 1)


def test_unknown_column_is_rejected() -> None:
    with pytest.raises(ValueError):
        eq("title; DROP TABLE tasks", "x")


def test_search_escapes_like_wildcards() -> None:
    p = contains_any(("title",), "100%_done")
    assert p.params == ("%100\\%\\_done%",)


def test_unknown_view_is_rejected() -> None:
    with pytest.raises(ValueError):
        build_task_predicate(TaskFilter(view="someday"), "alice", date(2024, 3, 4))


@pytest.mark.asyncio
async def test_create_validates_fields(state) -> None:
    with pytest.raises(InvalidTransition):
        await create_task(state, TaskDraft(title="   "), created_by="alice")
    with pytest.raises(InvalidTransition):
        await create_task(state, TaskDraft(title="x", priority=7), created_by="alice")
    with pytest.raises(InvalidTransition):
        await create_task(state, TaskDraft(title="x", is_recurring=True), created_by="alice")
    with pytest.raises(InvalidTransition):
        await create_task(state, TaskDraft(title="x", is_recurring=True, recurrence="hourly"), created_by="alice")
    with pytest.raises(NotFound):
        await create_task(state, TaskDraft(title="x", project_id="missing"), created_by="alice")


@pytest.mark.asyncio
async def test_non_recurring_task_drops_cadence(state) -> None:
    task = await create_task(state, TaskDraft(title="x", recurrence="daily"), created_by="alice")
    assert task.recurrence is None
    assert (await get_task(state, task.id)).recurrence is None


@pytest.mark.asyncio
async def test_views_and_visibility(state) -> None:
    today = state.clock.now().date()
    mine = await create_task(state, TaskDraft(title="Mine today", due_date=today), created_by="alice")
    later = await create_task(
        state, TaskDraft(title="Mine later", due_date=today + timedelta(days=3), priority=1), created_by="alice"
    )
    shared = await create_task(state, TaskDraft(title="Shared chores", is_shared=True), created_by="bob")
    await create_task(state, TaskDraft(title="Bob private", due_date=today), created_by="bob")
    assigned = await create_task(state, TaskDraft(title="For alice", assigned_to="alice"), created_by="bob")

    all_ids = {t.id for t in await list_tasks(state, "alice")}
    assert all_ids == {mine.id, later.id, shared.id, assigned.id}

    today_ids = {t.id for t in await list_tasks(state, "alice", TaskFilter(view="today"))}
    # Undated tasks created today count as today's.
    assert today_ids == {mine.id, shared.id, assigned.id}

    upcoming = await list_tasks(state, "alice", TaskFilter(view="upcoming"))
    assert [t.id for t in upcoming] == [later.id]

    shared_ids = {t.id for t in await list_tasks(state, "alice", TaskFilter(view="shared"))}
    assert shared_ids == {shared.id, assigned.id}

    found = await list_tasks(state, "alice", TaskFilter(search="CHORES"))
    assert [t.id for t in found] == [shared.id]

    by_priority = await list_tasks(state, "alice", TaskFilter(priority=1))
    assert [t.id for t in by_priority] == [later.id]


@pytest.mark.asyncio
async def test_completed_view(state) -> None:
    a = await create_task(state, TaskDraft(title="a"), created_by="alice")
    await create_task(state, TaskDraft(title="b"), created_by="alice")
    await state.orchestrator.toggle_complete(a.id, "alice", True)

    done = await list_tasks(state, "alice", TaskFilter(view="completed"))
    assert [t.id for t in done] == [a.id]


@pytest.mark.asyncio
async def test_update_descriptive_fields(state) -> None:
    task = await create_task(state, TaskDraft(title="Old"), created_by="alice")

    updated = await update_task(
        state, task.id, {"title": "  New ", "labels": ["b", "a", "a"], "due_date": "2024-03-09"}, acting_user="alice"
    )

    assert updated.title == "New"
    assert updated.labels == ["a", "b"]
    assert updated.due_date == date(2024, 3, 9)
    assert state.store.get_task(task.id).title == "New"


@pytest.mark.asyncio
async def test_update_refuses_completion_and_unknown_fields(state) -> None:
    task = await create_task(state, TaskDraft(title="x"), created_by="alice")
    with pytest.raises(InvalidTransition):
        await update_task(state, task.id, {"completed": True}, acting_user="alice")
    with pytest.raises(InvalidTransition):
        await update_task(state, task.id, {"created_by": "bob"}, acting_user="alice")
    with pytest.raises(NotFound):
        await update_task(state, "missing", {"title": "y"}, acting_user="alice")


@pytest.mark.asyncio
async def test_turning_recurring_off_clears_cadence(state) -> None:
    task = await create_task(
        state, TaskDraft(title="Gym", is_recurring=True, recurrence="weekly"), created_by="alice"
    )
    await state.orchestrator.toggle_complete(task.id, "alice", True)

    updated = await update_task(state, task.id, {"is_recurring": False}, acting_user="alice")

    assert updated.recurrence is None
    assert updated.pending_reset_at is None
    assert state.scheduler.pending() == []


@pytest.mark.asyncio
async def test_delete_task(state) -> None:
    task = await create_task(state, TaskDraft(title="x"), created_by="alice")
    await delete_task(state, task.id, acting_user="alice")

    assert state.store.get_task(task.id) is None
    with pytest.raises(NotFound):
        await delete_task(state, task.id, acting_user="alice")


@pytest.mark.asyncio
async def test_admin_lists_every_users_tasks(state) -> None:
    await create_task(state, TaskDraft(title="mine"), created_by="alice")
    await create_task(state, TaskDraft(title="private"), created_by="bob")

    assert {t.title for t in await list_all_tasks(state, acting_user="alice")} == {"mine", "private"}
    assert [t.title for t in await list_all_tasks(state, acting_user="alice", created_by="bob")] == ["private"]
    with pytest.raises(PermissionDenied):
        await list_all_tasks(state, acting_user="bob")
