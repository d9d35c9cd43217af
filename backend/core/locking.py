"""
Keyed asyncio locks for serializing mutations on a single entity.

Row locks (SELECT ... FOR UPDATE) are no-ops on SQLite and only protect a
single transaction; this registry additionally serializes coroutines inside
one process that touch the same table or order.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Tuple

logger = logging.getLogger(__name__)


class EntityLockRegistry:
    def __init__(self):
        self._locks: Dict[Tuple[str, str], asyncio.Lock] = {}
        self._waiters: Dict[Tuple[str, str], int] = {}

    @asynccontextmanager
    async def hold(self, kind: str, entity_id: Any):
        key = (kind, str(entity_id))
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._waiters[key] = self._waiters.get(key, 0) + 1

        if lock.locked():
            logger.debug(f"Waiting for {kind} {entity_id} lock")
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            # Drop idle locks so the registry does not grow without bound
            if self._waiters[key] == 0:
                del self._waiters[key]
                self._locks.pop(key, None)

    def is_locked(self, kind: str, entity_id: Any) -> bool:
        lock = self._locks.get((kind, str(entity_id)))
        return lock is not None and lock.locked()

    def __len__(self):
        return len(self._locks)


entity_locks = EntityLockRegistry()
