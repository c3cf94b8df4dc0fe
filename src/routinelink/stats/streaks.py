# src/routinelink/stats/streaks.py

from __future__ import annotations

"""
Streak calculation over per-day completion counts.

Pure functions, no I/O. History items are either (day, completed_count) pairs or
DailyStat rows; compute_streak() expects them ordered by day, most recent first.
"""

from collections.abc import Iterable
from datetime import date, timedelta
from typing import Union

from ..tasks.task_models import DailyStat

HistoryItem = Union[tuple[date, int], DailyStat]

_ONE_DAY = timedelta(days=1)


def _unpack(item: HistoryItem) -> tuple[date, int]:
    if isinstance(item, DailyStat):
        return item.day, item.completed_count
    day, count = item
    return day, int(count)


def compute_streak(history: Iterable[HistoryItem], as_of: date, *, reset_on: date | None = None) -> int:
    """
    Count consecutive days with at least one completion, ending at as_of or the day before.

    - as_of is still open: a missing row for it, or a row with count 0, is skipped
      instead of breaking the chain.
    - The walk stops at the first earlier day with count 0 or at the first gap.
    - Rows dated after as_of are ignored.
    - reset_on (an admin streak reset) breaks the chain: that day and earlier never count.
    """
    streak = 0
    expected = as_of

    for item in history:
        day, count = _unpack(item)
        if day > as_of:
            continue
        if reset_on is not None and day <= reset_on:
            break

        if day == as_of and count <= 0:
            expected = as_of - _ONE_DAY
            continue

        if expected == as_of and day < as_of:
            # No row for as_of yet: the chain may still end yesterday.
            expected = as_of - _ONE_DAY

        if day != expected or count <= 0:
            break

        streak += 1
        expected = day - _ONE_DAY

    return streak


def longest_streak(history: Iterable[HistoryItem]) -> int:
    """Best run of consecutive positive days, history in any order."""
    days = sorted({d for d, c in map(_unpack, history) if c > 0})
    best = run = 0
    prev: date | None = None
    for d in days:
        run = run + 1 if prev is not None and d - prev == _ONE_DAY else 1
        best = max(best, run)
        prev = d
    return best
