# src/routinelink/tasks/task_filters.py

from __future__ import annotations

"""
Task list filtering as predicate composition.

A Predicate is a SQL boolean expression over the tasks table plus its bound
parameters. Predicates combine with & (AND) and | (OR); each operand is
parenthesized so composition never depends on SQL operator precedence.

build_task_predicate() applies the filter dimensions in a fixed order:
    visibility AND view AND project AND priority AND search
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Any

# Only these columns may appear in predicates (names are interpolated into SQL).
_COLUMNS = frozenset(
    {
        "id",
        "title",
        "description",
        "created_by",
        "assigned_to",
        "project_id",
        "completed",
        "due_date",
        "priority",
        "is_recurring",
        "recurrence",
        "is_shared",
        "created_at",
    }
)


def _col(name: str) -> str:
    if name not in _COLUMNS:
        raise ValueError(f"unknown task column: {name!r}")
    return name


def _bind(value: Any) -> Any:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


@dataclass(frozen=True, slots=True)
class Predicate:
    sql: str
    params: tuple[Any, ...] = ()

    def __and__(self, other: Predicate) -> Predicate:
        return all_of(self, other)

    def __or__(self, other: Predicate) -> Predicate:
        return any_of(self, other)


TRUE = Predicate("1 = 1")


def _join(op: str, preds: tuple[Predicate, ...]) -> Predicate:
    # TRUE is the identity for AND; skip it to keep SQL readable in logs.
    parts = [p for p in preds if not (op == "AND" and p is TRUE)]
    if not parts:
        return TRUE
    if len(parts) == 1:
        return parts[0]
    sql = f" {op} ".join(f"({p.sql})" for p in parts)
    params: tuple[Any, ...] = ()
    for p in parts:
        params += p.params
    return Predicate(sql, params)


def all_of(*preds: Predicate) -> Predicate:
    return _join("AND", preds)


def any_of(*preds: Predicate) -> Predicate:
    if not preds:
        raise ValueError("any_of() needs at least one predicate")
    return _join("OR", preds)


def eq(column: str, value: Any) -> Predicate:
    return Predicate(f"{_col(column)} = ?", (_bind(value),))


def is_null(column: str) -> Predicate:
    return Predicate(f"{_col(column)} IS NULL")


def gte(column: str, value: Any) -> Predicate:
    return Predicate(f"{_col(column)} >= ?", (_bind(value),))


def lt(column: str, value: Any) -> Predicate:
    return Predicate(f"{_col(column)} < ?", (_bind(value),))


def between(column: str, low: Any, high: Any) -> Predicate:
    """Inclusive range."""
    return Predicate(f"{_col(column)} BETWEEN ? AND ?", (_bind(low), _bind(high)))


def contains_any(columns: tuple[str, ...], text: str) -> Predicate:
    """Case-insensitive substring match on any of the columns."""
    escaped = text.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    pattern = f"%{escaped}%"
    return any_of(
        *(
            Predicate(f"LOWER(COALESCE({_col(c)}, '')) LIKE ? ESCAPE '\\'", (pattern,))
            for c in columns
        )
    )


# ---- task list filters ----


@dataclass(frozen=True, slots=True)
class TaskFilter:
    view: str = "all"
    project_id: str | None = None
    priority: int | None = None
    search: str | None = None


def visible_to(user_id: str) -> Predicate:
    return eq("created_by", user_id) | eq("is_shared", True) | eq("assigned_to", user_id)


def created_on(day: date) -> Predicate:
    start = datetime.combine(day, time.min)
    return gte("created_at", start) & lt("created_at", start + timedelta(days=1))


def _view_today(today: date) -> Predicate:
    due = any_of(
        eq("due_date", today),
        is_null("due_date") & created_on(today),
        eq("is_recurring", True) & eq("recurrence", "daily"),
    )
    return due & eq("completed", False)


def _view_upcoming(today: date) -> Predicate:
    return between("due_date", today + timedelta(days=1), today + timedelta(days=7)) & eq(
        "completed", False
    )


_VIEWS: dict[str, Callable[[date], Predicate]] = {
    "all": lambda _today: TRUE,
    "today": _view_today,
    "upcoming": _view_upcoming,
    "completed": lambda _today: eq("completed", True),
    "priority": lambda _today: eq("completed", False),
    # "shared" replaces the visibility predicate, see build_task_predicate().
    "shared": lambda _today: TRUE,
}

VIEWS = tuple(_VIEWS)


def build_task_predicate(filters: TaskFilter, user_id: str, today: date) -> Predicate:
    view = (filters.view or "all").strip().lower()
    view_fn = _VIEWS.get(view)
    if view_fn is None:
        raise ValueError(f"unknown view: {filters.view!r} (expected one of {', '.join(VIEWS)})")

    if view == "shared":
        visibility = eq("is_shared", True) | eq("assigned_to", user_id)
    else:
        visibility = visible_to(user_id)

    parts = [visibility, view_fn(today)]

    if filters.project_id:
        parts.append(eq("project_id", filters.project_id))
    if filters.priority is not None:
        parts.append(eq("priority", int(filters.priority)))
    if filters.search and filters.search.strip():
        parts.append(contains_any(("title", "description"), filters.search.strip()))

    return all_of(*parts)
