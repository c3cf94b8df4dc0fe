# src/routinelink/core/clock.py

from __future__ import annotations

from datetime import date, datetime


class SystemClock:
    """Wall clock in local time (naive datetimes, same as the store's ISO columns)."""

    def now(self) -> datetime:
        return datetime.now()


def same_day(ts: datetime | None, day: date) -> bool:
    return ts is not None and ts.date() == day
