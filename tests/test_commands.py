# tests/test_commands.py

from __future__ import annotations

from datetime import date

import pytest

from routinelink.cli.commands import CommandRegistry, registry, render_heatmap
from routinelink.connectors.console_connector import describe_event
from routinelink.core.events import stats_updated
from routinelink.stats.heatmap import project_heatmap
from routinelink.tasks.task_api import completed_for_display
from routinelink.tasks.task_models import DailyStat


@pytest.mark.asyncio
async def test_command_registry_routes_and_aliases(state) -> None:
    reg = CommandRegistry()
    called = {"a": 0}

    async def handler(state, args, emit):
        called["a"] += 1
        if emit is not None:
            emit("note")
        return f"a:{','.join(args)}"

    reg.register("alpha", handler, "alpha", aliases=["a"])

    assert await reg.handle(state, '/alpha x "y z"') == "a:x,y z"
    assert await reg.handle(state, "/A q", emit=lambda _: None) == "a:q"
    assert called["a"] == 2
    assert "/alpha - alpha" in reg.build_help()


@pytest.mark.asyncio
async def test_command_registry_unknown_and_non_command(state) -> None:
    reg = CommandRegistry()
    assert await reg.handle(state, "hello") is None
    assert "Unknown command" in (await reg.handle(state, "/nope") or "")
    assert "Empty command" in (await reg.handle(state, "/") or "")


@pytest.mark.asyncio
async def test_add_done_undo_flow(state) -> None:
    reply = await registry.handle(state, '/add "Water plants" --daily --p 2')
    assert reply.startswith("Added [ ]")
    task = state.store.list_tasks()[0]
    assert task.priority == 2
    assert task.recurrence is not None

    prefix = task.id[:6]
    assert (await registry.handle(state, f"/done {prefix}")).startswith("Done: Water plants")
    assert (await registry.handle(state, f"/done {prefix}")).startswith("Already done")
    assert (await registry.handle(state, f"/undo {prefix}")).startswith("Reopened")

    stats = await registry.handle(state, "/stats")
    assert "Completed today: 0" in stats

    await state.scheduler.cancel_all()


@pytest.mark.asyncio
async def test_domain_errors_become_replies(state) -> None:
    assert (await registry.handle(state, "/add x --p 9")).startswith("Error:")
    assert (await registry.handle(state, "/add x --due tomorrow")).startswith("Invalid input:")
    assert "No task matches" in await registry.handle(state, "/done ffff")


@pytest.mark.asyncio
async def test_user_switch_and_admin_reset(state) -> None:
    assert await registry.handle(state, "/as carol") == "Unknown user 'carol'. Users: alice, bob"
    assert await registry.handle(state, "/as bob") == "Now acting as bob."
    assert state.current_user == "bob"
    assert await registry.handle(state, "/reset all") == "Only an admin can reset stats."

    await registry.handle(state, "/as alice")
    assert (await registry.handle(state, "/reset all bob")).startswith("Reset all for bob")


def test_render_heatmap_rows() -> None:
    monday = date(2024, 3, 4)
    text = render_heatmap(project_heatmap([DailyStat("alice", monday, 11)], monday, date(2024, 3, 10)))
    rows = text.splitlines()
    assert len(rows) == 7
    assert rows[0] == "Mon █"
    assert rows[6] == "Sun ·"


def test_describe_event_hides_own_actions() -> None:
    ev = stats_updated(DailyStat("bob", date(2024, 3, 4), 1, 3))
    assert describe_event(ev, "bob") is None
    assert describe_event(ev, "alice") == "bob streak: 3"


@pytest.mark.asyncio
async def test_weekly_routine_reads_done_after_reset(state) -> None:
    await registry.handle(state, "/add Gym --weekly")
    task = state.store.list_tasks()[0]
    prefix = task.id[:6]
    await registry.handle(state, f"/done {prefix}")
    await state.scheduler.reset_now(task.id)

    after = state.store.get_task(task.id)
    assert after.completed is False
    assert completed_for_display(state, after)
    assert state.orchestrator.is_completed(after)
    assert f"[x] {task.id[:8]}" in await registry.handle(state, "/list")
    assert (await registry.handle(state, f"/done {prefix}")).startswith("Already done")

    # Next day the routine is open again in both places.
    state.clock.advance(days=1)
    assert f"[ ] {task.id[:8]}" in await registry.handle(state, "/list")
    assert (await registry.handle(state, f"/done {prefix}")).startswith("Done: Gym")

    await state.scheduler.cancel_all()


@pytest.mark.asyncio
async def test_admin_command(state) -> None:
    await registry.handle(state, "/add Laundry")

    overview = await registry.handle(state, "/admin")
    assert "alice (admin): done 0, streak 0, created 1, last active never" in overview
    assert "Tasks: 0/1 done (0%), projects: 0" in overview
    assert "alice: [ ]" in await registry.handle(state, "/admin tasks alice")
    assert await registry.handle(state, "/admin tasks bob") == "No tasks."

    await registry.handle(state, "/as bob")
    assert (await registry.handle(state, "/admin")).startswith("Error:")
