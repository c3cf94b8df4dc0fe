# src/routinelink/logging_setup.py

from __future__ import annotations

import logging
import sys
from pathlib import Path

LOG_FILE_NAME = "routinelink.log"

# (logger name, function) pairs that only reach the console at WARNING+.
_BACKGROUND_SOURCES = frozenset(
    {
        ("routinelink.tasks.recurrence", "run_reset_sweeper"),
        ("routinelink.tasks.recurrence", "_run_deferred"),
    }
)


class _ConsoleNoiseFilter(logging.Filter):
    """Keep the REPL readable: background loops and other packages only surface problems."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.name.startswith("routinelink."):
            if (record.name, record.funcName) in _BACKGROUND_SOURCES:
                return record.levelno >= logging.WARNING
            return True
        # py.warnings and every third-party logger
        return record.levelno >= logging.ERROR


def resolve_level(name: str | int | None, default: int = logging.INFO) -> int:
    if isinstance(name, int):
        return name
    level = logging.getLevelName(str(name or "").strip().upper())
    return level if isinstance(level, int) else default


def setup_logging(
    *,
    log_dir: str | Path = ".local/routinelink",
    console_level: str | int = logging.INFO,
    file_level: str | int = logging.DEBUG,
) -> Path:
    """
    Console handler (filtered) on stderr plus a full-detail file under log_dir.

    Replaces any handlers already on the root logger. Returns the log file path.
    """
    log_file = Path(log_dir) / LOG_FILE_NAME
    log_file.parent.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for h in list(root.handlers):
        root.removeHandler(h)

    fmt = logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(resolve_level(console_level))
    console.setFormatter(fmt)
    console.addFilter(_ConsoleNoiseFilter())
    root.addHandler(console)

    to_file = logging.FileHandler(str(log_file), encoding="utf-8")
    to_file.setLevel(resolve_level(file_level, logging.DEBUG))
    to_file.setFormatter(fmt)
    root.addHandler(to_file)

    logging.captureWarnings(True)
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    return log_file
