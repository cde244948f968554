"""Per-owner concurrency bounds and per-name upload locks."""

import asyncio
from collections import deque
from contextlib import asynccontextmanager
from typing import AsyncIterator, Deque, Dict, Hashable, Tuple


class TransferSlots:
    """
    Counts running transfers per owner. The limit is passed on every
    acquire, so a changed setting applies at once and transfers already
    running keep counting against it.
    """

    def __init__(self):
        self._active: Dict[str, int] = {}
        self._waiters: Dict[str, Deque[asyncio.Future]] = {}

    def in_use(self, owner_id: str) -> int:
        return self._active.get(owner_id, 0)

    async def acquire(self, owner_id: str, limit: int) -> None:
        limit = max(1, limit)
        while self.in_use(owner_id) >= limit:
            waiter = asyncio.get_running_loop().create_future()
            queue = self._waiters.setdefault(owner_id, deque())
            queue.append(waiter)
            try:
                await waiter
            finally:
                if waiter in queue:
                    queue.remove(waiter)
                if not queue and self._waiters.get(owner_id) is queue:
                    del self._waiters[owner_id]
        self._active[owner_id] = self.in_use(owner_id) + 1

    def release(self, owner_id: str) -> None:
        remaining = self.in_use(owner_id) - 1
        if remaining > 0:
            self._active[owner_id] = remaining
        else:
            self._active.pop(owner_id, None)

        # every waiter re-checks against the limit it was given
        for waiter in self._waiters.get(owner_id, ()):
            if not waiter.done():
                waiter.set_result(None)

    @asynccontextmanager
    async def hold(self, owner_id: str, limit: int) -> AsyncIterator[None]:
        await self.acquire(owner_id, limit)
        try:
            yield
        finally:
            self.release(owner_id)


class KeyedLocks:
    """
    asyncio locks created on first use and dropped once nobody holds or
    waits for them.
    """

    def __init__(self):
        self._locks: Dict[Hashable, Tuple[asyncio.Lock, int]] = {}

    async def acquire(self, key: Hashable) -> None:
        lock, users = self._locks.get(key, (None, 0))
        if lock is None:
            lock = asyncio.Lock()
        self._locks[key] = (lock, users + 1)
        try:
            await lock.acquire()
        except BaseException:
            self._forget(key)
            raise

    def release(self, key: Hashable) -> None:
        lock, _ = self._locks[key]
        lock.release()
        self._forget(key)

    def _forget(self, key: Hashable) -> None:
        lock, users = self._locks[key]
        if users <= 1:
            del self._locks[key]
        else:
            self._locks[key] = (lock, users - 1)

    def __len__(self) -> int:
        return len(self._locks)
