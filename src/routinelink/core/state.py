# src/routinelink/core/state.py

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from ..connectors.event_bus import InMemoryEventBus
from ..stats.accumulator import DailyStatAccumulator
from ..tasks.orchestrator import TaskCompletionOrchestrator
from ..tasks.recurrence import RecurrenceScheduler
from .locks import KeyedLocks
from .ports import Clock, RecordStore


@dataclass
class AppState:
    """
    Application state container.

    Holds settings plus all long-lived components (store, clock, event bus and the
    core services wired on top of them). Built by cli.bootstrap.create_initial_state().
    """

    # Store Settings on the state for easy access in other modules later.
    settings: Any

    store: RecordStore
    clock: Clock
    bus: InMemoryEventBus
    task_locks: KeyedLocks
    accumulator: DailyStatAccumulator
    scheduler: RecurrenceScheduler
    orchestrator: TaskCompletionOrchestrator

    # Console: which of the fixed users is acting.
    current_user: str = ""
    background: list[Any] = field(default_factory=list)

    def is_admin(self, user_id: str | None) -> bool:
        admins = getattr(self.settings, "admin_users", None) or []
        return bool(user_id) and user_id in admins
