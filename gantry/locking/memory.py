"""
Gantry Locking - In-process lock manager.
"""

from __future__ import annotations

import asyncio

from loguru import logger

from gantry.locking.base import Clock, Lock, LockManager
from gantry.utils.logger import log_prefix


class MemoryLockManager(LockManager):
    """Lock table kept in a dict, guarded by an asyncio lock."""

    def __init__(self, clock: Clock | None = None) -> None:
        super().__init__(clock)
        self._locks: dict[str, Lock] = {}
        self._guard = asyncio.Lock()

    async def acquire(self, key: str, holder_id: str, ttl: float) -> Lock:
        async with self._guard:
            lock = self._grant(key, holder_id, ttl, self._locks.get(key))
            self._locks[key] = lock
            return lock

    async def release(self, lock: Lock) -> bool:
        async with self._guard:
            existing = self._locks.get(lock.key)
            if existing is None or existing.token != lock.token:
                logger.warning(f"{log_prefix('⚠️')} Lock on '{lock.key}' was not held at release")
                return False
            del self._locks[lock.key]
            logger.info(f"{log_prefix('🔓')} Lock on '{lock.key}' released by '{lock.holder_id}'")
            return True

    async def renew(self, lock: Lock, ttl: float) -> Lock:
        async with self._guard:
            renewed = self._extend(lock, ttl, self._locks.get(lock.key))
            self._locks[lock.key] = renewed
            return renewed

    async def current(self, key: str) -> Lock | None:
        async with self._guard:
            return self._locks.get(key)

    async def force_release(self, key: str) -> bool:
        async with self._guard:
            existing = self._locks.pop(key, None)
        if existing is not None:
            logger.warning(f"{log_prefix('🔓')} Lock on '{key}' held by '{existing.holder_id}' force-released")
        return existing is not None
