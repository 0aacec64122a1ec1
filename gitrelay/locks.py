"""
Per-key asyncio locks for gitrelay.

Work on one repository path is serialized while other paths proceed.
An entry lives only while some task holds or waits for it.
"""

from contextlib import asynccontextmanager
from typing import Dict, Hashable
import asyncio


class KeyedLocks:
    """
    A lock per key, created on first use and dropped when unused.

    Example:
        locks = KeyedLocks()
        async with locks.hold(path):
            ...
    """

    def __init__(self):
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._users: Dict[Hashable, int] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable):
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._locks
