# src/routinelink/tasks/task_models.py

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import StrEnum
from typing import Any

from ..core.errors import InvalidTransition

TITLE_MAX = 200
DESCRIPTION_MAX = 2000
PROJECT_NAME_MAX = 100
DEFAULT_PRIORITY = 4
DEFAULT_PROJECT_COLOR = "#6366f1"

_COLOR_RE = re.compile(r"^#[0-9A-Fa-f]{6}$")


class Recurrence(StrEnum):
    """Fixed-interval cadence of a recurring task (routine)."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"

    @classmethod
    def from_db(cls, raw: str | None) -> Recurrence | None:
        if not raw:
            return None
        try:
            return cls(raw)
        except ValueError:
            return None


def _iso(value: date | datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@dataclass(slots=True)
class Task:
    id: str
    title: str
    created_by: str
    created_at: datetime
    updated_at: datetime

    description: str | None = None
    assigned_to: str | None = None
    project_id: str | None = None

    completed: bool = False
    completed_at: datetime | None = None
    due_date: date | None = None
    priority: int = DEFAULT_PRIORITY
    labels: list[str] = field(default_factory=list)

    is_recurring: bool = False
    recurrence: Recurrence | None = None
    last_completed: datetime | None = None
    is_shared: bool = False

    # Deferred reset bookkeeping (recurring tasks only).
    pending_reset_at: datetime | None = None
    due_date_before_completion: date | None = None

    def to_dict(self) -> dict[str, Any]:
        """Denormalized snapshot used in event payloads and the console."""
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "created_by": self.created_by,
            "assigned_to": self.assigned_to,
            "project_id": self.project_id,
            "completed": self.completed,
            "completed_at": _iso(self.completed_at),
            "due_date": _iso(self.due_date),
            "priority": self.priority,
            "labels": list(self.labels),
            "is_recurring": self.is_recurring,
            "recurrence": self.recurrence.value if self.recurrence else None,
            "last_completed": _iso(self.last_completed),
            "is_shared": self.is_shared,
            "pending_reset_at": _iso(self.pending_reset_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


@dataclass(frozen=True, slots=True)
class DailyStat:
    user_id: str
    day: date
    completed_count: int
    streak: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "day": self.day.isoformat(),
            "completed_count": self.completed_count,
            "streak": self.streak,
        }


@dataclass(slots=True)
class Project:
    id: str
    name: str
    color: str
    owner_id: str | None
    created_at: datetime
    updated_at: datetime

    @property
    def is_shared(self) -> bool:
        return self.owner_id is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "color": self.color,
            "owner_id": self.owner_id,
            "is_shared": self.is_shared,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


def validate_task(task: Task) -> None:
    """
    Check descriptive fields and the recurrence invariant.

    Raises InvalidTransition on the first violation.
    """
    title = (task.title or "").strip()
    if not title:
        raise InvalidTransition("title is required")
    if len(title) > TITLE_MAX:
        raise InvalidTransition(f"title too long (max {TITLE_MAX})")
    if task.description is not None and len(task.description) > DESCRIPTION_MAX:
        raise InvalidTransition(f"description too long (max {DESCRIPTION_MAX})")
    if not isinstance(task.priority, int) or not 1 <= task.priority <= 4:
        raise InvalidTransition(f"priority must be 1..4, got {task.priority!r}")
    if task.is_recurring and task.recurrence is None:
        raise InvalidTransition("recurring task needs a recurrence (daily/weekly/monthly)")
    if not task.is_recurring and task.recurrence is not None:
        raise InvalidTransition("recurrence set on a non-recurring task")


def validate_project_fields(name: str, color: str) -> None:
    n = (name or "").strip()
    if not n:
        raise InvalidTransition("project name is required")
    if len(n) > PROJECT_NAME_MAX:
        raise InvalidTransition(f"project name too long (max {PROJECT_NAME_MAX})")
    if not _COLOR_RE.match(color or ""):
        raise InvalidTransition(f"invalid color format: {color!r}")
