# src/routinelink/tasks/task_store.py

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
from collections.abc import Iterator
from datetime import date, datetime
from pathlib import Path
from typing import Any

from ..core.errors import ConcurrencyConflict
from .task_filters import TRUE, Predicate
from .task_models import DailyStat, Project, Recurrence, Task

logger = logging.getLogger(__name__)

_TASK_COLUMNS = (
    "id",
    "title",
    "description",
    "created_by",
    "assigned_to",
    "project_id",
    "completed",
    "completed_at",
    "due_date",
    "priority",
    "labels",
    "is_recurring",
    "recurrence",
    "last_completed",
    "is_shared",
    "pending_reset_at",
    "due_date_before_completion",
    "created_at",
    "updated_at",
)


def _is_lock_error(exc: sqlite3.OperationalError) -> bool:
    msg = str(exc).lower()
    return "locked" in msg or "busy" in msg


def _dt(raw: str | None) -> datetime | None:
    return datetime.fromisoformat(raw) if raw else None


def _d(raw: str | None) -> date | None:
    return date.fromisoformat(raw) if raw else None


def _iso(value: date | datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


class TaskStore:
    """
    SQLite record store for tasks, projects and per-day stats.

    The schema is migration-safe:
    - create tables if missing
    - use PRAGMA table_info to detect missing columns
    - add columns with ALTER TABLE only when needed

    Thread-safety:
    - each method opens its own SQLite connection
    - daily stat upserts run inside BEGIN IMMEDIATE so concurrent writers serialize
    """

    def __init__(self, db_path: str | Path = "routinelink.sqlite3", *, timeout: float = 30.0) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._timeout = float(timeout)
        self._ensure_schema()
        logger.info("TaskStore ready db=%s tasks=%s", self._db_path, self.count_tasks())

    def close(self) -> None:
        """Compatibility hook for shutdown (no persistent connections to close)."""
        return

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=self._timeout)
        conn.row_factory = sqlite3.Row
        self._configure_conn(conn)
        return conn

    @staticmethod
    def _configure_conn(conn: sqlite3.Connection) -> None:
        with contextlib.suppress(sqlite3.DatabaseError):
            conn.execute("PRAGMA journal_mode=WAL")

    @contextlib.contextmanager
    def _write(self, *, immediate: bool = False) -> Iterator[sqlite3.Connection]:
        """
        Open a connection for a write; commit on success, roll back on error.

        SQLite "database is locked/busy" is reported as ConcurrencyConflict so callers
        can retry.
        """
        conn = self._get_conn()
        try:
            if immediate:
                conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.commit()
        except sqlite3.OperationalError as e:
            conn.rollback()
            if _is_lock_error(e):
                raise ConcurrencyConflict(str(e)) from e
            raise
        except BaseException:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    description TEXT,
                    created_by TEXT NOT NULL,
                    assigned_to TEXT,
                    project_id TEXT,
                    completed INTEGER NOT NULL DEFAULT 0,
                    completed_at TEXT,
                    due_date TEXT,
                    priority INTEGER NOT NULL DEFAULT 4,
                    labels TEXT NOT NULL DEFAULT '[]',
                    is_recurring INTEGER NOT NULL DEFAULT 0,
                    recurrence TEXT,
                    last_completed TEXT,
                    is_shared INTEGER NOT NULL DEFAULT 0,
                    pending_reset_at TEXT,
                    due_date_before_completion TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS daily_stats (
                    user_id TEXT NOT NULL,
                    day TEXT NOT NULL,
                    completed_count INTEGER NOT NULL DEFAULT 0,
                    streak INTEGER NOT NULL DEFAULT 0,
                    PRIMARY KEY (user_id, day)
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS streak_resets (
                    user_id TEXT PRIMARY KEY,
                    reset_on TEXT NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS projects (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    color TEXT NOT NULL DEFAULT '#6366f1',
                    owner_id TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )

            # Migrations (safe): add missing columns to tasks created by older versions.
            cur.execute("PRAGMA table_info(tasks)")
            cols = {row["name"] for row in cur.fetchall()}

            def add_col(name: str, decl: str) -> None:
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE tasks ADD COLUMN {name} {decl}")
                logger.info("TaskStore migration: added column %s", name)

            add_col("pending_reset_at", "TEXT")
            add_col("due_date_before_completion", "TEXT")

            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_owner ON tasks(created_by, completed)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_due ON tasks(due_date)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_pending_reset ON tasks(pending_reset_at)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_projects_owner ON projects(owner_id)")

            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _labels_to_str(labels: list[str] | None) -> str:
        return json.dumps(sorted(set(labels or [])), ensure_ascii=False)

    @staticmethod
    def _str_to_labels(s: str | None) -> list[str]:
        if not s:
            return []
        try:
            val = json.loads(s)
        except json.JSONDecodeError:
            logger.warning("Bad labels JSON in tasks table: %r", s)
            return []
        return [str(x) for x in val] if isinstance(val, list) else []

    def _row_to_task(self, row: sqlite3.Row) -> Task:
        return Task(
            id=str(row["id"]),
            title=str(row["title"] or ""),
            description=row["description"],
            created_by=str(row["created_by"]),
            assigned_to=row["assigned_to"],
            project_id=row["project_id"],
            completed=bool(row["completed"]),
            completed_at=_dt(row["completed_at"]),
            due_date=_d(row["due_date"]),
            priority=int(row["priority"] or 4),
            labels=self._str_to_labels(row["labels"]),
            is_recurring=bool(row["is_recurring"]),
            recurrence=Recurrence.from_db(row["recurrence"]),
            last_completed=_dt(row["last_completed"]),
            is_shared=bool(row["is_shared"]),
            pending_reset_at=_dt(row["pending_reset_at"]),
            due_date_before_completion=_d(row["due_date_before_completion"]),
            created_at=_dt(row["created_at"]) or datetime.min,
            updated_at=_dt(row["updated_at"]) or datetime.min,
        )

    def _task_params(self, task: Task) -> tuple[Any, ...]:
        return (
            task.id,
            task.title.strip(),
            task.description,
            task.created_by,
            task.assigned_to,
            task.project_id,
            int(task.completed),
            _iso(task.completed_at),
            _iso(task.due_date),
            int(task.priority),
            self._labels_to_str(task.labels),
            int(task.is_recurring),
            task.recurrence.value if task.recurrence else None,
            _iso(task.last_completed),
            int(task.is_shared),
            _iso(task.pending_reset_at),
            _iso(task.due_date_before_completion),
            _iso(task.created_at),
            _iso(task.updated_at),
        )

    @staticmethod
    def _row_to_stat(row: sqlite3.Row) -> DailyStat:
        return DailyStat(
            user_id=str(row["user_id"]),
            day=date.fromisoformat(row["day"]),
            completed_count=int(row["completed_count"]),
            streak=int(row["streak"]),
        )

    @staticmethod
    def _row_to_project(row: sqlite3.Row) -> Project:
        return Project(
            id=str(row["id"]),
            name=str(row["name"]),
            color=str(row["color"]),
            owner_id=row["owner_id"],
            created_at=_dt(row["created_at"]) or datetime.min,
            updated_at=_dt(row["updated_at"]) or datetime.min,
        )

    # ---- tasks ----

    def count_tasks(self, predicate: Predicate | None = None) -> int:
        pred = predicate or TRUE
        conn = self._get_conn()
        try:
            (n,) = conn.execute(f"SELECT COUNT(*) FROM tasks WHERE {pred.sql}", pred.params).fetchone()
            return int(n)
        finally:
            conn.close()

    def get_task(self, task_id: str) -> Task | None:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
            return self._row_to_task(row) if row else None
        finally:
            conn.close()

    def upsert_task(self, task: Task) -> Task:
        """Insert or fully overwrite the row (last write wins)."""
        cols = ", ".join(_TASK_COLUMNS)
        placeholders = ", ".join("?" for _ in _TASK_COLUMNS)
        updates = ", ".join(f"{c} = excluded.{c}" for c in _TASK_COLUMNS if c not in ("id", "created_at"))
        with self._write() as conn:
            conn.execute(
                f"INSERT INTO tasks({cols}) VALUES ({placeholders}) "
                f"ON CONFLICT(id) DO UPDATE SET {updates}",
                self._task_params(task),
            )
        logger.debug("Task upserted id=%s completed=%s due=%s", task.id, task.completed, task.due_date)
        return task

    def delete_task(self, task_id: str) -> bool:
        with self._write() as conn:
            cur = conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
            return cur.rowcount == 1

    def list_tasks(self, predicate: Predicate | None = None, limit: int = 500) -> list[Task]:
        pred = predicate or TRUE
        conn = self._get_conn()
        try:
            rows = conn.execute(
                f"""
                SELECT *
                FROM tasks
                WHERE {pred.sql}
                ORDER BY priority ASC, due_date IS NULL, due_date ASC, created_at DESC
                    LIMIT ?
                """,
                (*pred.params, int(limit)),
            ).fetchall()
            return [self._row_to_task(r) for r in rows]
        finally:
            conn.close()

    def list_due_resets(self, *, now: datetime, limit: int = 100) -> list[Task]:
        """Recurring tasks whose deferred reset is overdue (pending_reset_at <= now)."""
        conn = self._get_conn()
        try:
            rows = conn.execute(
                """
                SELECT *
                FROM tasks
                WHERE pending_reset_at IS NOT NULL
                  AND pending_reset_at <= ?
                ORDER BY pending_reset_at ASC
                    LIMIT ?
                """,
                (now.isoformat(), int(limit)),
            ).fetchall()
            return [self._row_to_task(r) for r in rows]
        finally:
            conn.close()

    # ---- daily stats ----

    def upsert_daily_stat(self, user_id: str, day: date, delta: int) -> DailyStat:
        """
        Atomic increment-or-create of the (user_id, day) row, floored at 0.

        Runs under BEGIN IMMEDIATE: the write lock is taken before the read, so the
        returned row reflects exactly this increment.
        """
        with self._write(immediate=True) as conn:
            conn.execute(
                """
                INSERT INTO daily_stats(user_id, day, completed_count, streak)
                VALUES (?, ?, MAX(0, ?), 0)
                ON CONFLICT(user_id, day)
                    DO UPDATE SET completed_count = MAX(0, daily_stats.completed_count + ?)
                """,
                (user_id, day.isoformat(), int(delta), int(delta)),
            )
            row = conn.execute(
                "SELECT * FROM daily_stats WHERE user_id = ? AND day = ?",
                (user_id, day.isoformat()),
            ).fetchone()
        return self._row_to_stat(row)

    def set_daily_streak(self, user_id: str, day: date, streak: int) -> DailyStat:
        with self._write(immediate=True) as conn:
            conn.execute(
                """
                INSERT INTO daily_stats(user_id, day, completed_count, streak)
                VALUES (?, ?, 0, ?)
                ON CONFLICT(user_id, day) DO UPDATE SET streak = excluded.streak
                """,
                (user_id, day.isoformat(), max(0, int(streak))),
            )
            row = conn.execute(
                "SELECT * FROM daily_stats WHERE user_id = ? AND day = ?",
                (user_id, day.isoformat()),
            ).fetchone()
        return self._row_to_stat(row)

    def get_daily_stat(self, user_id: str, day: date) -> DailyStat | None:
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT * FROM daily_stats WHERE user_id = ? AND day = ?",
                (user_id, day.isoformat()),
            ).fetchone()
            return self._row_to_stat(row) if row else None
        finally:
            conn.close()

    def list_daily_stats(
        self,
        user_id: str,
        from_day: date,
        to_day: date,
        *,
        descending: bool = False,
    ) -> list[DailyStat]:
        order = "DESC" if descending else "ASC"
        conn = self._get_conn()
        try:
            rows = conn.execute(
                f"""
                SELECT *
                FROM daily_stats
                WHERE user_id = ?
                  AND day BETWEEN ? AND ?
                ORDER BY day {order}
                """,
                (user_id, from_day.isoformat(), to_day.isoformat()),
            ).fetchall()
            return [self._row_to_stat(r) for r in rows]
        finally:
            conn.close()

    def delete_daily_stats(self, user_id: str, day: date | None = None) -> int:
        with self._write() as conn:
            if day is None:
                cur = conn.execute("DELETE FROM daily_stats WHERE user_id = ?", (user_id,))
                conn.execute("DELETE FROM streak_resets WHERE user_id = ?", (user_id,))
            else:
                cur = conn.execute(
                    "DELETE FROM daily_stats WHERE user_id = ? AND day = ?",
                    (user_id, day.isoformat()),
                )
            n = int(cur.rowcount)
        logger.info("Deleted %s daily stat rows user=%s day=%s", n, user_id, day)
        return n

    def clear_streaks(self, user_id: str, reset_on: date) -> int:
        """Zero stored streaks and record reset_on as a chain break for later recomputes."""
        with self._write(immediate=True) as conn:
            cur = conn.execute("UPDATE daily_stats SET streak = 0 WHERE user_id = ?", (user_id,))
            conn.execute(
                """
                INSERT INTO streak_resets(user_id, reset_on)
                VALUES (?, ?)
                ON CONFLICT(user_id) DO UPDATE SET reset_on = excluded.reset_on
                """,
                (user_id, reset_on.isoformat()),
            )
            return int(cur.rowcount)

    def get_streak_reset(self, user_id: str) -> date | None:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT reset_on FROM streak_resets WHERE user_id = ?", (user_id,)).fetchone()
            return date.fromisoformat(row["reset_on"]) if row else None
        finally:
            conn.close()

    # ---- projects ----

    def get_project(self, project_id: str) -> Project | None:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT * FROM projects WHERE id = ?", (project_id,)).fetchone()
            return self._row_to_project(row) if row else None
        finally:
            conn.close()

    def upsert_project(self, project: Project) -> Project:
        with self._write() as conn:
            conn.execute(
                """
                INSERT INTO projects(id, name, color, owner_id, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name = excluded.name,
                    color = excluded.color,
                    owner_id = excluded.owner_id,
                    updated_at = excluded.updated_at
                """,
                (
                    project.id,
                    project.name.strip(),
                    project.color,
                    project.owner_id,
                    _iso(project.created_at),
                    _iso(project.updated_at),
                ),
            )
        return project

    def delete_project(self, project_id: str) -> bool:
        """Delete the project and detach its tasks (project_id -> NULL)."""
        with self._write() as conn:
            conn.execute("UPDATE tasks SET project_id = NULL WHERE project_id = ?", (project_id,))
            cur = conn.execute("DELETE FROM projects WHERE id = ?", (project_id,))
            return cur.rowcount == 1

    def list_projects_for_user(self, user_id: str) -> list[Project]:
        """Projects owned by user_id plus shared (owner-less) ones, newest first."""
        conn = self._get_conn()
        try:
            rows = conn.execute(
                """
                SELECT *
                FROM projects
                WHERE owner_id = ? OR owner_id IS NULL
                ORDER BY created_at DESC
                """,
                (user_id,),
            ).fetchall()
            return [self._row_to_project(r) for r in rows]
        finally:
            conn.close()

    def count_tasks_in_project(self, project_id: str) -> int:
        conn = self._get_conn()
        try:
            (n,) = conn.execute(
                "SELECT COUNT(*) FROM tasks WHERE project_id = ?", (project_id,)
            ).fetchone()
            return int(n)
        finally:
            conn.close()

    def count_projects(self) -> int:
        conn = self._get_conn()
        try:
            (n,) = conn.execute("SELECT COUNT(*) FROM projects").fetchone()
            return int(n)
        finally:
            conn.close()
