"""Per-flow serialization of engine operations."""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator


class FlowLocks:
    """One asyncio.Lock per flow id, dropped when nobody holds or awaits it.

    Not re-entrant: engine internals that already hold a flow's lock work on
    the loaded Flow object instead of calling back into public operations.
    """

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, flow_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(flow_id, asyncio.Lock())
        self._waiters[flow_id] = self._waiters.get(flow_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[flow_id] -= 1
            if self._waiters[flow_id] == 0:
                del self._waiters[flow_id]
                del self._locks[flow_id]

    def is_locked(self, flow_id: str) -> bool:
        lock = self._locks.get(flow_id)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)
