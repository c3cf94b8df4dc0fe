# src/routinelink/core/errors.py

from __future__ import annotations


class RoutineLinkError(Exception):
    """Base class for errors raised by the routinelink core."""


class NotFound(RoutineLinkError):
    """Referenced task / project / stat row does not exist."""

    def __init__(self, kind: str, ident: str) -> None:
        super().__init__(f"{kind} not found: {ident}")
        self.kind = kind
        self.ident = ident


class InvalidTransition(RoutineLinkError):
    """Requested change is inconsistent with the entity's state (e.g. recurrence vs is_recurring)."""


class ConcurrencyConflict(RoutineLinkError):
    """Lost the race on a per-day upsert (store busy/locked)."""


class SchedulingFailure(RoutineLinkError):
    """
    A deferred recurring reset could not be persisted.

    Never raised into the request that completed the task: the scheduler logs it
    and leaves pending_reset_at in place for reconciliation.
    """

    def __init__(self, task_id: str, reason: str) -> None:
        super().__init__(f"deferred reset failed for task {task_id}: {reason}")
        self.task_id = task_id


class PermissionDenied(RoutineLinkError):
    """Ownership rule violated (e.g. non-admin editing a shared project)."""
