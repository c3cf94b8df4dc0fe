# src/routinelink/stats/accumulator.py

from __future__ import annotations

"""
Daily stat accumulator.

The only writer of DailyStat.completed_count / DailyStat.streak on the request path.
apply_delta() is increment-then-recompute; the two store calls are not one
transaction, so every (user_id, day) is serialized with a keyed asyncio lock.
"""

import asyncio
import logging
from datetime import date, timedelta

from ..core.errors import ConcurrencyConflict
from ..core.events import publish_event, stats_updated
from ..core.locks import KeyedLocks
from ..core.ports import EventPublisher, StatsRepo
from ..tasks.task_models import DailyStat
from .streaks import compute_streak

logger = logging.getLogger(__name__)

STREAK_HISTORY_DAYS = 365


class DailyStatAccumulator:
    def __init__(
            self,
            store: StatsRepo,
            publisher: EventPublisher | None = None,
            *,
            retry_attempts: int = 5,
            retry_backoff_seconds: float = 0.05,
            history_days: int = STREAK_HISTORY_DAYS,
    ) -> None:
        self._store = store
        self._publisher = publisher
        self._locks = KeyedLocks()
        self._retry_attempts = max(1, int(retry_attempts))
        self._retry_backoff = max(0.0, float(retry_backoff_seconds))
        self._history_days = max(1, int(history_days))

    async def apply_delta(self, user_id: str, day: date, delta: int) -> DailyStat:
        """
        Add delta (+1 / -1) to the user's row for day, recompute the streak, publish stats-updated.

        completed_count never goes below zero (double-uncomplete is clamped).
        Raises ConcurrencyConflict once the retry budget is spent.
        """
        if delta not in (1, -1):
            raise ValueError(f"delta must be +1 or -1, got {delta!r}")
        if not user_id:
            raise ValueError("user_id is required")

        async with self._locks.hold((user_id, day)):
            await self._upsert_with_retry(user_id, day, delta)
            stat = self.recompute_streak(user_id, day)

        logger.debug(
            "Stat applied user=%s day=%s delta=%+d count=%s streak=%s",
            user_id,
            day,
            delta,
            stat.completed_count,
            stat.streak,
        )
        await publish_event(self._publisher, stats_updated(stat))
        return stat

    def recompute_streak(self, user_id: str, day: date) -> DailyStat:
        """Recompute the streak from the trailing history and store it on day's row."""
        history = self._store.list_daily_stats(
            user_id,
            day - timedelta(days=self._history_days - 1),
            day,
            descending=True,
        )
        streak = compute_streak(history, as_of=day, reset_on=self._store.get_streak_reset(user_id))
        return self._store.set_daily_streak(user_id, day, streak)

    async def _upsert_with_retry(self, user_id: str, day: date, delta: int) -> DailyStat:
        attempt = 0
        while True:
            try:
                return self._store.upsert_daily_stat(user_id, day, delta)
            except ConcurrencyConflict:
                attempt += 1
                if attempt >= self._retry_attempts:
                    logger.error(
                        "Stat upsert gave up after %s attempts user=%s day=%s", attempt, user_id, day
                    )
                    raise
                backoff = self._retry_backoff * (2 ** (attempt - 1))
                logger.warning(
                    "Stat upsert conflict user=%s day=%s attempt=%s; retrying in %.3fs",
                    user_id,
                    day,
                    attempt,
                    backoff,
                )
                await asyncio.sleep(backoff)
