# src/routinelink/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app.
- Nothing required at import time: every value has a local default.
- The composition root can inject its own Settings (tests do).
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import List

from dotenv import load_dotenv

ENV_PREFIX = "ROUTINELINK"

load_dotenv(override=False)


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return list(default)
    parts = [p.strip() for p in raw.replace(",", " ").split() if p.strip()]
    return parts


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Users (small fixed set) ----
    users: List[str]
    admin_users: List[str]
    default_user: str

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    db_path: Path
    sqlite_timeout_seconds: float

    # ---- Stats ----
    stats_retention_days: int
    heatmap_default_days: int

    # ---- Background work / retries ----
    reset_sweep_interval_seconds: float
    upsert_retry_attempts: int
    upsert_retry_backoff_seconds: float

    def is_admin(self, user_id: str | None) -> bool:
        return bool(user_id) and user_id in self.admin_users

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "routinelink") or "routinelink"
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        users = _env_list(_k("USERS"), ["alice", "bob"])
        # First configured user doubles as admin unless told otherwise.
        admin_users = _env_list(_k("ADMIN_USERS"), users[:1])
        default_user = _env(_k("DEFAULT_USER"), users[0] if users else "alice")

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/routinelink"))
        db_path = _env_path(_k("DB_PATH"), data_dir / "routinelink.sqlite3")
        sqlite_timeout_seconds = _env_float(_k("SQLITE_TIMEOUT_SECONDS"), 30.0)

        stats_retention_days = _env_int(_k("STATS_RETENTION_DAYS"), 365)
        heatmap_default_days = _env_int(_k("HEATMAP_DEFAULT_DAYS"), 365)

        reset_sweep_interval_seconds = _env_float(_k("RESET_SWEEP_INTERVAL_SECONDS"), 30.0)
        upsert_retry_attempts = _env_int(_k("UPSERT_RETRY_ATTEMPTS"), 5)
        upsert_retry_backoff_seconds = _env_float(_k("UPSERT_RETRY_BACKOFF_SECONDS"), 0.05)

        return Settings(
            app_name=app_name,
            log_level=log_level,
            users=users,
            admin_users=admin_users,
            default_user=default_user,
            data_dir=data_dir,
            db_path=db_path,
            sqlite_timeout_seconds=sqlite_timeout_seconds,
            stats_retention_days=max(1, stats_retention_days),
            heatmap_default_days=max(1, heatmap_default_days),
            reset_sweep_interval_seconds=max(0.5, reset_sweep_interval_seconds),
            upsert_retry_attempts=max(1, upsert_retry_attempts),
            upsert_retry_backoff_seconds=max(0.0, upsert_retry_backoff_seconds),
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
