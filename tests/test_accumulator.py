# tests/test_accumulator.py

from __future__ import annotations

import asyncio
from datetime import date, timedelta

import pytest

from routinelink.core.errors import ConcurrencyConflict
from routinelink.core.events import EventKind
from routinelink.stats.accumulator import DailyStatAccumulator
from routinelink.tasks.task_store import TaskStore

from .fakes import InMemoryStatsRepo, RecordingPublisher

DAY = date(2024, 3, 4)


@pytest.mark.asyncio
async def test_concurrent_increments_are_not_lost(store: TaskStore) -> None:
    acc = DailyStatAccumulator(store, retry_backoff_seconds=0.0)

    await asyncio.gather(*(acc.apply_delta("alice", DAY, 1) for _ in range(100)))

    stat = store.get_daily_stat("alice", DAY)
    assert stat is not None
    assert stat.completed_count == 100
    assert stat.streak == 1


@pytest.mark.asyncio
async def test_decrement_is_clamped_at_zero(store: TaskStore) -> None:
    acc = DailyStatAccumulator(store)

    await acc.apply_delta("alice", DAY, 1)
    await acc.apply_delta("alice", DAY, -1)
    stat = await acc.apply_delta("alice", DAY, -1)

    assert stat.completed_count == 0


@pytest.mark.asyncio
async def test_streak_is_written_on_current_day(store: TaskStore) -> None:
    acc = DailyStatAccumulator(store)

    await acc.apply_delta("alice", DAY - timedelta(days=2), 1)
    await acc.apply_delta("alice", DAY - timedelta(days=1), 1)
    stat = await acc.apply_delta("alice", DAY, 1)

    assert stat.streak == 3
    assert store.get_daily_stat("alice", DAY).streak == 3
    # Other users are independent.
    other = await acc.apply_delta("bob", DAY, 1)
    assert other.streak == 1


@pytest.mark.asyncio
async def test_stats_updated_event_carries_new_streak() -> None:
    pub = RecordingPublisher()
    acc = DailyStatAccumulator(InMemoryStatsRepo(), pub)

    await acc.apply_delta("alice", DAY, 1)

    assert pub.kinds() == [EventKind.STATS_UPDATED]
    payload = pub.events[0].payload
    assert payload["user_id"] == "alice"
    assert payload["streak"] == 1
    assert payload["stat"]["completed_count"] == 1


@pytest.mark.asyncio
async def test_publish_failure_does_not_fail_write() -> None:
    repo = InMemoryStatsRepo()
    acc = DailyStatAccumulator(repo, RecordingPublisher(fail=True))

    stat = await acc.apply_delta("alice", DAY, 1)

    assert stat.completed_count == 1
    assert repo.get_daily_stat("alice", DAY).completed_count == 1


@pytest.mark.asyncio
async def test_conflicts_are_retried_then_succeed() -> None:
    repo = InMemoryStatsRepo(conflicts_left=2)
    acc = DailyStatAccumulator(repo, retry_attempts=3, retry_backoff_seconds=0.0)

    stat = await acc.apply_delta("alice", DAY, 1)

    assert stat.completed_count == 1
    assert repo.upsert_calls == 3


@pytest.mark.asyncio
async def test_conflict_surfaces_after_retry_budget() -> None:
    repo = InMemoryStatsRepo(conflicts_left=10)
    acc = DailyStatAccumulator(repo, retry_attempts=3, retry_backoff_seconds=0.0)

    with pytest.raises(ConcurrencyConflict):
        await acc.apply_delta("alice", DAY, 1)
    assert repo.upsert_calls == 3
    assert repo.get_daily_stat("alice", DAY) is None


@pytest.mark.asyncio
async def test_delta_must_be_unit() -> None:
    acc = DailyStatAccumulator(InMemoryStatsRepo())
    with pytest.raises(ValueError):
        await acc.apply_delta("alice", DAY, 2)
