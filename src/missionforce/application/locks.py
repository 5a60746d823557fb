"""Per-mission locks.

Serializes executor and monitor work on the same mission inside one process.
Different missions never share a lock. Cross-process safety comes from the
store's optimistic version check.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class MissionLocks:
    """Registry of asyncio locks keyed by (owner_id, mission_id)."""

    def __init__(self) -> None:
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}

    def _get_lock(self, owner_id: str, mission_id: str) -> asyncio.Lock:
        key = (owner_id, mission_id)
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    def is_locked(self, owner_id: str, mission_id: str) -> bool:
        lock = self._locks.get((owner_id, mission_id))
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, owner_id: str, mission_id: str) -> AsyncIterator[None]:
        async with self._get_lock(owner_id, mission_id):
            yield

    def discard(self, owner_id: str, mission_id: str) -> None:
        """Forget the lock of a deleted mission."""
        lock = self._locks.get((owner_id, mission_id))
        if lock is not None and not lock.locked():
            del self._locks[(owner_id, mission_id)]
