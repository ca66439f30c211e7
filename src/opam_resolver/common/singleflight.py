"""Single-flight initialization and per-key mutual exclusion."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Dict, Generic, Optional, TypeVar

T = TypeVar("T")


class SingleFlight(Generic[T]):
    """Run an expensive async initializer at most once.

    The first caller starts the task and stores it; every caller, concurrent
    or later, awaits that same task. A failed initialization stays failed
    until ``reset()`` is called.
    """

    def __init__(self) -> None:
        self._task: Optional["asyncio.Future[T]"] = None

    @property
    def started(self) -> bool:
        return self._task is not None

    async def get(self, factory: Callable[[], Awaitable[T]]) -> T:
        if self._task is None:
            self._task = asyncio.ensure_future(factory())
        # shield: one waiter being cancelled must not cancel the shared init
        return await asyncio.shield(self._task)

    def reset(self) -> None:
        self._task = None


class KeyedLock:
    """One ``asyncio.Lock`` per key, dropped once nobody holds or waits on it."""

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)
