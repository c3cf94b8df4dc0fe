# src/routinelink/stats/stats_api.py

from __future__ import annotations

"""
Read paths over daily stats (dashboard, side-by-side view, admin overview) and the admin reset.

The heatmap is projected here, never on the write path. The current streak is
recomputed from history as of today rather than read from the last stored row,
which may be days old. An admin streak reset day counts as a break in the chain.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Any

from ..core.errors import PermissionDenied
from ..core.events import publish_event, stats_reset
from ..core.state import AppState
from ..tasks.recurrence import is_completed_now
from ..tasks.task_filters import all_of, any_of, created_on, eq, gte, is_null, visible_to
from ..tasks.task_models import Recurrence, Task
from .heatmap import HeatmapPoint, project_heatmap
from .streaks import compute_streak, longest_streak

logger = logging.getLogger(__name__)

RESET_TYPES = ("streak", "today", "all")
ADMIN_WINDOW_DAYS = 7


@dataclass(slots=True)
class UserStats:
    user_id: str
    heatmap: list[HeatmapPoint]
    current_streak: int
    longest_streak: int
    total_completed: int
    today_completed: int
    today_tasks: int
    upcoming_tasks: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "heatmap": [p.to_dict() for p in self.heatmap],
            "current_streak": self.current_streak,
            "longest_streak": self.longest_streak,
            "total_completed": self.total_completed,
            "today_completed": self.today_completed,
            "today_tasks": self.today_tasks,
            "upcoming_tasks": self.upcoming_tasks,
        }


@dataclass(slots=True)
class TodayTaskView:
    id: str
    title: str
    completed: bool
    priority: int
    is_recurring: bool


@dataclass(slots=True)
class TogetherEntry:
    user_id: str
    current_streak: int
    total_completed: int
    today_completed: int
    heatmap: list[HeatmapPoint]
    today_tasks: list[TodayTaskView] = field(default_factory=list)


def _window(state: AppState, days: int) -> tuple[date, date]:
    today = state.clock.now().date()
    return today - timedelta(days=max(0, int(days))), today


def _streak_as_of(state: AppState, user_id: str, today: date) -> tuple[int, int]:
    retention = int(getattr(state.settings, "stats_retention_days", 365))
    history = state.store.list_daily_stats(
        user_id, today - timedelta(days=retention - 1), today, descending=True
    )
    reset_on = state.store.get_streak_reset(user_id)
    if reset_on is not None:
        history = [s for s in history if s.day > reset_on]
    return compute_streak(history, as_of=today, reset_on=reset_on), longest_streak(history)


def get_user_stats(state: AppState, user_id: str, days: int | None = None) -> UserStats:
    if days is None:
        days = int(getattr(state.settings, "heatmap_default_days", 365))
    start, today = _window(state, days)

    stats = state.store.list_daily_stats(user_id, start, today)
    heatmap = list(project_heatmap(stats, start, today))
    current, best = _streak_as_of(state, user_id, today)
    today_stat = next((s for s in stats if s.day == today), None)

    tomorrow = today + timedelta(days=1)
    open_owned = eq("created_by", user_id) & eq("completed", False)
    today_tasks = state.store.list_tasks(
        all_of(open_owned, any_of(eq("due_date", today), is_null("due_date")))
    )
    upcoming = state.store.list_tasks(all_of(open_owned, gte("due_date", tomorrow)))

    return UserStats(
        user_id=user_id,
        heatmap=heatmap,
        current_streak=current,
        longest_streak=best,
        total_completed=sum(s.completed_count for s in stats),
        today_completed=today_stat.completed_count if today_stat else 0,
        today_tasks=len(today_tasks),
        upcoming_tasks=len(upcoming),
    )


def _today_view(task: Task, state: AppState) -> TodayTaskView:
    return TodayTaskView(
        id=task.id,
        title=task.title,
        completed=is_completed_now(task, state.clock.now()),
        priority=task.priority,
        is_recurring=task.is_recurring,
    )


def get_together_view(state: AppState, user_ids: list[str] | None = None, days: int = 365) -> list[TogetherEntry]:
    """Side-by-side summary for the fixed user set."""
    if user_ids is None:
        user_ids = list(getattr(state.settings, "users", []) or [])
    start, today = _window(state, days)

    due_today = any_of(
        eq("is_recurring", False) & eq("due_date", today),
        eq("is_recurring", True) & eq("recurrence", Recurrence.DAILY.value),
        is_null("due_date") & created_on(today),
    )

    out: list[TogetherEntry] = []
    for user_id in user_ids:
        stats = state.store.list_daily_stats(user_id, start, today)
        current, _best = _streak_as_of(state, user_id, today)
        tasks = state.store.list_tasks(visible_to(user_id) & due_today)
        views = sorted((_today_view(t, state) for t in tasks), key=lambda v: (v.completed, v.priority))
        out.append(
            TogetherEntry(
                user_id=user_id,
                current_streak=current,
                total_completed=sum(s.completed_count for s in stats),
                today_completed=sum(1 for v in views if v.completed),
                heatmap=list(project_heatmap(stats, start, today)),
                today_tasks=views,
            )
        )
    return out


async def reset_stats(state: AppState, user_id: str, reset_type: str, *, acting_user: str | None = None) -> int:
    """
    Administrative reset: "streak" zeroes streaks and counts nothing up to today,
    "today" drops today's row, "all" drops every row for the user.
    Returns affected rows.
    """
    if not user_id:
        raise ValueError("user_id is required")
    if reset_type == "streak":
        n = state.store.clear_streaks(user_id, state.clock.now().date())
    elif reset_type == "today":
        n = state.store.delete_daily_stats(user_id, state.clock.now().date())
    elif reset_type == "all":
        n = state.store.delete_daily_stats(user_id)
    else:
        raise ValueError(f"invalid reset type: {reset_type!r} (expected one of {', '.join(RESET_TYPES)})")

    logger.info("Stats reset user=%s type=%s rows=%s by=%s", user_id, reset_type, n, acting_user)
    await publish_event(state.bus, stats_reset(user_id, reset_type, acting_user))
    return n


@dataclass(slots=True)
class AdminUserSummary:
    user_id: str
    is_admin: bool
    completed_this_week: int
    current_streak: int
    tasks_created_this_week: int
    last_active: date | None


@dataclass(slots=True)
class AdminOverview:
    users: list[AdminUserSummary]
    total_tasks: int
    completed_tasks: int
    total_projects: int

    @property
    def completion_rate(self) -> int:
        """Completed share of all tasks, whole percent (0 when there are none)."""
        if self.total_tasks <= 0:
            return 0
        return round(self.completed_tasks * 100 / self.total_tasks)

    def to_dict(self) -> dict[str, Any]:
        return {
            "users": [
                {
                    "user_id": u.user_id,
                    "is_admin": u.is_admin,
                    "completed_this_week": u.completed_this_week,
                    "current_streak": u.current_streak,
                    "tasks_created_this_week": u.tasks_created_this_week,
                    "last_active": u.last_active.isoformat() if u.last_active else None,
                }
                for u in self.users
            ],
            "totals": {
                "total_tasks": self.total_tasks,
                "completed_tasks": self.completed_tasks,
                "total_projects": self.total_projects,
                "completion_rate": self.completion_rate,
            },
        }


def get_admin_overview(state: AppState, *, acting_user: str) -> AdminOverview:
    """
    Per-user activity over the last 7 days plus store-wide totals. Admin only.

    last_active is the most recent stat row in the week, None when there is none.
    """
    if not state.is_admin(acting_user):
        raise PermissionDenied("only an admin can view the admin overview")

    week_ago, today = _window(state, ADMIN_WINDOW_DAYS)
    since = datetime.combine(week_ago, time.min)

    users: list[AdminUserSummary] = []
    for user_id in list(getattr(state.settings, "users", []) or []):
        week = state.store.list_daily_stats(user_id, week_ago, today, descending=True)
        current, _best = _streak_as_of(state, user_id, today)
        users.append(
            AdminUserSummary(
                user_id=user_id,
                is_admin=state.is_admin(user_id),
                completed_this_week=sum(s.completed_count for s in week),
                current_streak=current,
                tasks_created_this_week=state.store.count_tasks(
                    eq("created_by", user_id) & gte("created_at", since)
                ),
                last_active=week[0].day if week else None,
            )
        )

    overview = AdminOverview(
        users=users,
        total_tasks=state.store.count_tasks(),
        completed_tasks=state.store.count_tasks(eq("completed", True)),
        total_projects=state.store.count_projects(),
    )
    logger.debug("Admin overview by=%s tasks=%s", acting_user, overview.total_tasks)
    return overview
