# src/routinelink/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The core depends on Protocols instead of concrete implementations.
This keeps storage / transport / time swappable and makes testing easier.
"""

from datetime import date, datetime
from typing import TYPE_CHECKING, Awaitable, Protocol

if TYPE_CHECKING:
    from ..tasks.task_filters import Predicate
    from ..tasks.task_models import DailyStat, Project, Task
    from .events import DomainEvent


class Clock(Protocol):
    def now(self) -> datetime: ...


class EventPublisher(Protocol):
    """
    At-least-once publish side of the broadcast transport.

    The transport decides fan-out; the core only calls publish() after its write succeeded.
    """

    def publish(self, event: DomainEvent) -> Awaitable[None]: ...


class TaskRepo(Protocol):
    def get_task(self, task_id: str) -> Task | None: ...
    def upsert_task(self, task: Task) -> Task: ...
    def delete_task(self, task_id: str) -> bool: ...
    def list_tasks(self, predicate: Predicate | None = None, limit: int = 500) -> list[Task]: ...
    def count_tasks(self, predicate: Predicate | None = None) -> int: ...

    # Deferred reset reconciliation
    def list_due_resets(self, *, now: datetime, limit: int = 100) -> list[Task]: ...


class StatsRepo(Protocol):
    def upsert_daily_stat(self, user_id: str, day: date, delta: int) -> DailyStat: ...
    def set_daily_streak(self, user_id: str, day: date, streak: int) -> DailyStat: ...
    def get_daily_stat(self, user_id: str, day: date) -> DailyStat | None: ...
    def list_daily_stats(
            self,
            user_id: str,
            from_day: date,
            to_day: date,
            *,
            descending: bool = False,
    ) -> list[DailyStat]: ...

    # Administrative reset
    def delete_daily_stats(self, user_id: str, day: date | None = None) -> int: ...
    def clear_streaks(self, user_id: str, reset_on: date) -> int: ...
    def get_streak_reset(self, user_id: str) -> date | None: ...


class ProjectRepo(Protocol):
    def get_project(self, project_id: str) -> Project | None: ...
    def upsert_project(self, project: Project) -> Project: ...
    def delete_project(self, project_id: str) -> bool: ...
    def list_projects_for_user(self, user_id: str) -> list[Project]: ...
    def count_tasks_in_project(self, project_id: str) -> int: ...
    def count_projects(self) -> int: ...


class RecordStore(TaskRepo, StatsRepo, ProjectRepo, Protocol):
    """Everything the core needs from durable storage."""
