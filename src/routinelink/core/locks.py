# src/routinelink/core/locks.py

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator, Hashable


class KeyedLocks:
    """
    One asyncio.Lock per key, created on demand and dropped when nobody holds or waits on it.

    Used to serialize:
    - stat mutations per (user_id, day)
    - completion/reset/delete per task id
    """

    def __init__(self) -> None:
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._users: dict[Hashable, int] = {}

    @contextlib.asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            left = self._users[key] - 1
            if left <= 0:
                self._users.pop(key, None)
                self._locks.pop(key, None)
            else:
                self._users[key] = left

    def __len__(self) -> int:
        return len(self._locks)
