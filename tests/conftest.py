# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from routinelink.cli.bootstrap import create_initial_state
from routinelink.core.state import AppState
from routinelink.tasks.task_store import TaskStore

from .fakes import FakeClock


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and core modules.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="routinelink-test",
        log_level="DEBUG",
        # Fixed user set
        users=["alice", "bob"],
        admin_users=["alice"],
        default_user="alice",
        # Paths (tmp per test run)
        data_dir=tmp_path,
        db_path=tmp_path / "routinelink.sqlite3",
        sqlite_timeout_seconds=5.0,
        # Stats
        stats_retention_days=365,
        heatmap_default_days=30,
        # Background work
        reset_sweep_interval_seconds=0.5,
        upsert_retry_attempts=5,
        upsert_retry_backoff_seconds=0.0,
    )


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def store(settings: SimpleNamespace) -> TaskStore:
    return TaskStore(settings.db_path)


@pytest.fixture()
def state(settings: SimpleNamespace, clock: FakeClock, store: TaskStore) -> AppState:
    """
    AppState wired like production, but with a FakeClock.

    NOTE: We keep the real SQLite store here because its upsert semantics are
    part of what we want to test.
    """
    st = create_initial_state(settings=settings, clock=clock, store=store)
    st.bus.start()
    return st
