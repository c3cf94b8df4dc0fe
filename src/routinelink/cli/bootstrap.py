# src/routinelink/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires concrete implementations into AppState (store/clock/event bus/core services),
- starts and stops the background work (event bus, reset sweeper, pending timers).
"""

from __future__ import annotations

import asyncio
import contextlib
import logging

from ..config import get_settings
from ..connectors.event_bus import InMemoryEventBus
from ..core.clock import SystemClock
from ..core.locks import KeyedLocks
from ..core.ports import Clock
from ..core.state import AppState
from ..stats.accumulator import DailyStatAccumulator
from ..tasks.orchestrator import TaskCompletionOrchestrator
from ..tasks.recurrence import RecurrenceScheduler, run_reset_sweeper
from ..tasks.task_store import TaskStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.db_path.parent.mkdir(parents=True, exist_ok=True)


def create_initial_state(*, settings=None, clock: Clock | None = None, store=None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings (and clock/store) injectable makes the app easier to test and
    avoids hidden global config reads. If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    clock = clock or SystemClock()
    if store is None:
        store = TaskStore(settings.db_path, timeout=getattr(settings, "sqlite_timeout_seconds", 30.0))
    bus = InMemoryEventBus()
    task_locks = KeyedLocks()

    accumulator = DailyStatAccumulator(
        store,
        bus,
        retry_attempts=getattr(settings, "upsert_retry_attempts", 5),
        retry_backoff_seconds=getattr(settings, "upsert_retry_backoff_seconds", 0.05),
        history_days=getattr(settings, "stats_retention_days", 365),
    )
    scheduler = RecurrenceScheduler(store, clock, bus, task_locks=task_locks)
    orchestrator = TaskCompletionOrchestrator(
        store, accumulator, scheduler, clock, bus, task_locks=task_locks
    )

    return AppState(
        settings=settings,
        store=store,
        clock=clock,
        bus=bus,
        task_locks=task_locks,
        accumulator=accumulator,
        scheduler=scheduler,
        orchestrator=orchestrator,
        current_user=getattr(settings, "default_user", ""),
    )


async def start_background(state: AppState) -> None:
    """Start the event bus, reconcile resets missed while we were down, start the sweeper."""
    state.bus.start()

    reconciled = await state.scheduler.reconcile_due()
    if reconciled:
        logger.info("Startup reconciliation reset %s recurring tasks", reconciled)

    sweeper = asyncio.create_task(
        run_reset_sweeper(
            state.scheduler,
            interval_seconds=getattr(state.settings, "reset_sweep_interval_seconds", 30.0),
        ),
        name="reset-sweeper",
    )
    state.background.append(sweeper)


async def shutdown(state: AppState) -> None:
    """Best-effort shutdown (no exceptions should escape)."""
    for t in state.background:
        t.cancel()
    for t in state.background:
        with contextlib.suppress(asyncio.CancelledError):
            await t
    state.background.clear()

    # Pending resets are persisted (pending_reset_at); the next start reconciles them.
    try:
        await state.scheduler.cancel_all()
    except Exception:
        logger.exception("Failed to cancel pending reset timers.")

    try:
        await state.bus.close()
    except Exception:
        logger.exception("Event bus close failed.")

    # TaskStore uses short-lived sqlite connections per call; close() is a hook for other stores.
    try:
        store = getattr(state, "store", None)
        if store is not None and hasattr(store, "close"):
            store.close()
    except Exception:
        logger.debug("Store close failed.", exc_info=True)
