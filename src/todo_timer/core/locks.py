# src/todo_timer/core/locks.py

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class OwnerLocks:
    """
    One asyncio.Lock per owner id.

    The app is single-threaded, but every store call is an await point, so a
    check-then-act sequence (is a timer running? then start one) can be
    interleaved by a second invocation for the same owner. Holding the
    owner's lock across the whole sequence serialises them.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def get(self, owner_id: str) -> asyncio.Lock:
        lock = self._locks.get(owner_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[owner_id] = lock
        return lock

    @asynccontextmanager
    async def hold(self, owner_id: str) -> AsyncIterator[None]:
        async with self.get(owner_id):
            yield
