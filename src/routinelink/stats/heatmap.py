# src/routinelink/stats/heatmap.py

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from datetime import date, timedelta

from ..tasks.task_models import DailyStat

# (minimum count, level), checked top-down: 0 | 1-2 | 3-5 | 6-10 | 11+
LEVEL_THRESHOLDS: tuple[tuple[int, int], ...] = ((11, 4), (6, 3), (3, 2), (1, 1))


def heatmap_level(count: int) -> int:
    for minimum, level in LEVEL_THRESHOLDS:
        if count >= minimum:
            return level
    return 0


@dataclass(frozen=True, slots=True)
class HeatmapPoint:
    day: date
    count: int
    level: int

    def to_dict(self) -> dict[str, object]:
        return {"date": self.day.isoformat(), "count": self.count, "level": self.level}


class HeatmapProjection:
    """
    One HeatmapPoint per calendar day of [window_start, window_end], inclusive.

    Points are produced lazily; iterating again restarts from window_start.
    Days without a stat row get count 0 / level 0.
    """

    def __init__(self, stats: Iterable[DailyStat], window_start: date, window_end: date) -> None:
        if window_end < window_start:
            raise ValueError(f"window_end {window_end} is before window_start {window_start}")
        self.window_start = window_start
        self.window_end = window_end
        self._counts: dict[date, int] = {}
        for s in stats:
            if window_start <= s.day <= window_end:
                self._counts[s.day] = self._counts.get(s.day, 0) + max(0, s.completed_count)

    def __len__(self) -> int:
        return (self.window_end - self.window_start).days + 1

    def __iter__(self) -> Iterator[HeatmapPoint]:
        day = self.window_start
        step = timedelta(days=1)
        while day <= self.window_end:
            count = self._counts.get(day, 0)
            yield HeatmapPoint(day=day, count=count, level=heatmap_level(count))
            day += step


def project_heatmap(stats: Iterable[DailyStat], window_start: date, window_end: date) -> HeatmapProjection:
    return HeatmapProjection(stats, window_start, window_end)
