# src/routinelink/cli/commands.py

from __future__ import annotations

import logging
import shlex
from collections.abc import Awaitable, Callable, Iterable
from datetime import date

from ..core.errors import RoutineLinkError
from ..core.state import AppState
from ..stats.heatmap import HeatmapPoint
from ..stats.stats_api import RESET_TYPES, get_admin_overview, get_together_view, get_user_stats, reset_stats
from ..tasks.project_api import create_project, list_projects
from ..tasks.task_api import (
    TaskDraft,
    completed_for_display,
    create_task,
    delete_task,
    list_all_tasks,
    list_tasks,
)
from ..tasks.task_filters import VIEWS, TaskFilter
from ..tasks.task_models import Recurrence, Task

CommandEmitter = Callable[[str], None]
CommandHandler = Callable[[AppState, list[str], CommandEmitter | None], Awaitable[str]]

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Simple slash-command registry used by the console (/help, /add, /done, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    async def handle(
        self,
        state: AppState,
        line: str,
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        """
        if not line.startswith("/"):
            return None

        try:
            parts = shlex.split(line[1:])
        except ValueError as e:
            return f"Could not parse command: {e}"
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            return await handler(state, args, emit)
        except RoutineLinkError as e:
            return f"Error: {e}"
        except ValueError as e:
            return f"Invalid input: {e}"

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()

_SHADES = "·░▒▓█"
_WEEKDAYS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")


def render_heatmap(points: Iterable[HeatmapPoint]) -> str:
    """Weekday rows x week columns, one shade per intensity level."""
    pts = list(points)
    if not pts:
        return "(no data)"
    offset = pts[0].day.weekday()
    ncols = (offset + len(pts) + 6) // 7
    grid = [[" "] * ncols for _ in range(7)]
    for i, p in enumerate(pts):
        idx = offset + i
        grid[idx % 7][idx // 7] = _SHADES[p.level]
    return "\n".join(f"{_WEEKDAYS[r]} {''.join(grid[r])}" for r in range(7))


def _format_task(state: AppState, task: Task) -> str:
    mark = "x" if completed_for_display(state, task) else " "
    bits = [f"[{mark}] {task.id[:8]} P{task.priority} {task.title}"]
    if task.due_date:
        bits.append(f"due {task.due_date.isoformat()}")
    if task.recurrence:
        bits.append(f"({task.recurrence.value})")
    if task.is_shared:
        bits.append("[shared]")
    if task.assigned_to and task.assigned_to != task.created_by:
        bits.append(f"-> {task.assigned_to}")
    return " ".join(bits)


async def _resolve_task(state: AppState, prefix: str) -> Task | str:
    matches = [t for t in await list_tasks(state, state.current_user) if t.id.startswith(prefix)]
    if not matches:
        return f"No task matches {prefix!r}."
    if len(matches) > 1:
        return f"{prefix!r} is ambiguous ({len(matches)} tasks). Use more characters."
    return matches[0]


async def cmd_help(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    return registry.build_help()


async def cmd_as(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    users = list(getattr(state.settings, "users", []) or [])
    if not args:
        return f"Acting as {state.current_user}. Users: {', '.join(users)}"
    user = args[0]
    if users and user not in users:
        return f"Unknown user {user!r}. Users: {', '.join(users)}"
    state.current_user = user
    logger.info("Acting user switched to %s", user)
    return f"Now acting as {user}."


async def cmd_add(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """
    /add <title words...> [--due YYYY-MM-DD] [--p 1-4] [--daily|--weekly|--monthly]
         [--shared] [--to <user>] [--project <id>] [--label <name>]...
    """
    if not args:
        return "Usage: /add <title> [--due YYYY-MM-DD] [--p N] [--daily|--weekly|--monthly] [--shared]"

    title_words: list[str] = []
    draft = TaskDraft(title="")
    it = iter(args)
    for a in it:
        if a == "--due":
            draft.due_date = date.fromisoformat(next(it, ""))
        elif a == "--p":
            draft.priority = int(next(it, "4"))
        elif a in ("--daily", "--weekly", "--monthly"):
            draft.is_recurring = True
            draft.recurrence = Recurrence(a[2:])
        elif a == "--shared":
            draft.is_shared = True
        elif a == "--to":
            draft.assigned_to = next(it, None)
        elif a == "--project":
            draft.project_id = next(it, None)
        elif a == "--label":
            label = next(it, "")
            if label:
                draft.labels.append(label)
        else:
            title_words.append(a)
    draft.title = " ".join(title_words)

    task = await create_task(state, draft, created_by=state.current_user)
    return f"Added {_format_task(state, task)}"


async def cmd_list(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    view = args[0].lower() if args and args[0].lower() in VIEWS else "all"
    rest = args[1:] if args and args[0].lower() in VIEWS else args
    search = " ".join(rest) or None
    tasks = await list_tasks(state, state.current_user, TaskFilter(view=view, search=search))
    if not tasks:
        return f"No tasks ({view})."
    lines = [f"Tasks ({view}) for {state.current_user}:"]
    lines.extend(f"  {_format_task(state, t)}" for t in tasks)
    return "\n".join(lines)


async def _toggle(state: AppState, args: list[str], completed: bool) -> str:
    if not args:
        return "Usage: /done <task-id-prefix> (or /undo)"
    found = await _resolve_task(state, args[0])
    if isinstance(found, str):
        return found
    result = await state.orchestrator.toggle_complete(found.id, state.current_user, completed)
    if not result.changed:
        return f"Already {'done' if completed else 'open'}: {found.title}"
    msg = f"{'Done' if completed else 'Reopened'}: {result.task.title}"
    if result.schedule is not None:
        msg += f" (back on {result.schedule.next_due_date.isoformat()})"
    return msg


async def cmd_done(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    return await _toggle(state, args, True)


async def cmd_undo(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    return await _toggle(state, args, False)


async def cmd_rm(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    if not args:
        return "Usage: /rm <task-id-prefix>"
    found = await _resolve_task(state, args[0])
    if isinstance(found, str):
        return found
    await delete_task(state, found.id, acting_user=state.current_user)
    return f"Deleted: {found.title}"


async def cmd_stats(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    user = args[0] if args else state.current_user
    if user != state.current_user and not state.is_admin(state.current_user):
        return "Only an admin can view other users' stats."
    s = get_user_stats(state, user)
    return (
        f"Stats for {user}:\n"
        f"  Current streak: {s.current_streak} (best {s.longest_streak})\n"
        f"  Completed today: {s.today_completed}\n"
        f"  Completed total: {s.total_completed}\n"
        f"  Open today: {s.today_tasks}  Upcoming: {s.upcoming_tasks}"
    )


async def cmd_heatmap(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    days = int(args[0]) if args else 7 * 26
    s = get_user_stats(state, state.current_user, days=days)
    return f"Last {days} days for {state.current_user}:\n{render_heatmap(s.heatmap)}"


async def cmd_together(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    lines = []
    for entry in get_together_view(state):
        lines.append(
            f"{entry.user_id}: streak {entry.current_streak}, "
            f"today {entry.today_completed}/{len(entry.today_tasks)}, total {entry.total_completed}"
        )
        for v in entry.today_tasks:
            lines.append(f"  [{'x' if v.completed else ' '}] {v.title}{' (routine)' if v.is_recurring else ''}")
    return "\n".join(lines) or "No users configured."


async def cmd_reset(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    if not state.is_admin(state.current_user):
        return "Only an admin can reset stats."
    if not args or args[0] not in RESET_TYPES:
        return f"Usage: /reset <{'|'.join(RESET_TYPES)}> [user]"
    user = args[1] if len(args) > 1 else state.current_user
    n = await reset_stats(state, user, args[0], acting_user=state.current_user)
    return f"Reset {args[0]} for {user} ({n} rows)."


async def cmd_admin(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """
    /admin               -> weekly activity per user + totals
    /admin tasks [user]  -> every user's tasks (optionally one creator's)
    """
    if args and args[0].lower() == "tasks":
        creator = args[1] if len(args) > 1 else None
        tasks = await list_all_tasks(state, acting_user=state.current_user, created_by=creator)
        if not tasks:
            return "No tasks."
        lines = [f"All tasks{f' by {creator}' if creator else ''}:"]
        lines.extend(f"  {t.created_by}: {_format_task(state, t)}" for t in tasks)
        return "\n".join(lines)

    o = get_admin_overview(state, acting_user=state.current_user)
    lines = ["Last 7 days:"]
    for u in o.users:
        seen = u.last_active.isoformat() if u.last_active else "never"
        lines.append(
            f"  {u.user_id}{' (admin)' if u.is_admin else ''}: done {u.completed_this_week}, "
            f"streak {u.current_streak}, created {u.tasks_created_this_week}, last active {seen}"
        )
    lines.append(
        f"Tasks: {o.completed_tasks}/{o.total_tasks} done ({o.completion_rate}%), projects: {o.total_projects}"
    )
    return "\n".join(lines)


async def cmd_projects(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """
    /projects                           -> list own + shared projects
    /projects add <name> [--shared] [--color #RRGGBB]
    """
    if args and args[0].lower() == "add":
        rest = args[1:]
        shared = "--shared" in rest
        color = "#6366f1"
        if "--color" in rest:
            i = rest.index("--color")
            color = rest[i + 1] if i + 1 < len(rest) else color
            rest = rest[:i] + rest[i + 2:]
        name = " ".join(a for a in rest if a != "--shared")
        p = await create_project(state, name=name, acting_user=state.current_user, color=color, is_shared=shared)
        return f"Project created: {p.id[:8]} {p.name}{' [shared]' if p.is_shared else ''}"

    projects = list_projects(state, state.current_user)
    if not projects:
        return "No projects."
    lines = ["Projects:"]
    for p in projects:
        n = state.store.count_tasks_in_project(p.id)
        lines.append(f"  {p.id[:8]} {p.name} {p.color} ({n} tasks){' [shared]' if p.is_shared else ''}")
    return "\n".join(lines)


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("as", cmd_as, help_text="Switch acting user: /as <user>.", aliases=["whoami"])
registry.register("add", cmd_add, help_text="Add a task: /add <title> [--due D] [--p N] [--daily|--weekly|--monthly] [--shared].")
registry.register("list", cmd_list, help_text=f"List tasks: /list [{'|'.join(VIEWS)}] [search].", aliases=["ls"])
registry.register("done", cmd_done, help_text="Complete a task: /done <id-prefix>.")
registry.register("undo", cmd_undo, help_text="Reopen a task: /undo <id-prefix>.")
registry.register("rm", cmd_rm, help_text="Delete a task: /rm <id-prefix>.")
registry.register("stats", cmd_stats, help_text="Show streak and counts: /stats [user].")
registry.register("heatmap", cmd_heatmap, help_text="Show completion heatmap: /heatmap [days].")
registry.register("together", cmd_together, help_text="Side-by-side view of all users.")
registry.register("reset", cmd_reset, help_text="Admin: /reset <streak|today|all> [user].")
registry.register("admin", cmd_admin, help_text="Admin: weekly overview, or /admin tasks [user].")
registry.register("projects", cmd_projects, help_text="List or add projects: /projects [add <name>].")
