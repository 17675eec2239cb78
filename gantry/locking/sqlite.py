"""
Gantry Locking - SQLite lock manager.

One row per locked artifact. Every decision reads and writes the row inside a
single immediate transaction, so concurrent processes see exactly one winner.
"""

from __future__ import annotations

from pathlib import Path

import aiosqlite
from loguru import logger

from gantry.locking.base import Clock, Lock, LockManager
from gantry.utils.logger import log_prefix


class SQLiteLockManager(LockManager):
    """Lock table in the same SQLite file as the state store."""

    def __init__(self, db_path: Path | str | None = None, clock: Clock | None = None):
        super().__init__(clock)
        if db_path is None:
            db_path = Path.home() / ".gantry" / "state.db"
        self._db_path = Path(db_path)
        self._initialized = False

    def _connect(self) -> aiosqlite.Connection:
        return aiosqlite.connect(self._db_path, isolation_level=None)

    async def initialize(self) -> None:
        """Create the lock table."""
        if self._initialized:
            return

        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with self._connect() as db:
            await db.execute("""
                CREATE TABLE IF NOT EXISTS state_locks (
                    artifact_key TEXT PRIMARY KEY,
                    holder_id TEXT NOT NULL,
                    token TEXT NOT NULL,
                    acquired_at REAL NOT NULL,
                    expires_at REAL NOT NULL
                )
            """)
        self._initialized = True

    @staticmethod
    async def _fetch(db: aiosqlite.Connection, key: str) -> Lock | None:
        cursor = await db.execute(
            "SELECT artifact_key, holder_id, token, acquired_at, expires_at "
            "FROM state_locks WHERE artifact_key = ?",
            (key,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return Lock(key=row[0], holder_id=row[1], token=row[2], acquired_at=row[3], expires_at=row[4])

    @staticmethod
    async def _store(db: aiosqlite.Connection, lock: Lock) -> None:
        await db.execute(
            """
            INSERT OR REPLACE INTO state_locks
                (artifact_key, holder_id, token, acquired_at, expires_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (lock.key, lock.holder_id, lock.token, lock.acquired_at, lock.expires_at),
        )

    async def acquire(self, key: str, holder_id: str, ttl: float) -> Lock:
        await self.initialize()
        async with self._connect() as db:
            await db.execute("BEGIN IMMEDIATE")
            try:
                lock = self._grant(key, holder_id, ttl, await self._fetch(db, key))
                await self._store(db, lock)
            except BaseException:
                await db.execute("ROLLBACK")
                raise
            await db.execute("COMMIT")
        return lock

    async def release(self, lock: Lock) -> bool:
        await self.initialize()
        async with self._connect() as db:
            cursor = await db.execute(
                "DELETE FROM state_locks WHERE artifact_key = ? AND token = ?",
                (lock.key, lock.token),
            )
            released = cursor.rowcount == 1

        if released:
            logger.info(f"{log_prefix('🔓')} Lock on '{lock.key}' released by '{lock.holder_id}'")
        else:
            logger.warning(f"{log_prefix('⚠️')} Lock on '{lock.key}' was not held at release")
        return released

    async def renew(self, lock: Lock, ttl: float) -> Lock:
        await self.initialize()
        async with self._connect() as db:
            await db.execute("BEGIN IMMEDIATE")
            try:
                renewed = self._extend(lock, ttl, await self._fetch(db, lock.key))
                await self._store(db, renewed)
            except BaseException:
                await db.execute("ROLLBACK")
                raise
            await db.execute("COMMIT")
        return renewed

    async def current(self, key: str) -> Lock | None:
        await self.initialize()
        async with self._connect() as db:
            return await self._fetch(db, key)

    async def force_release(self, key: str) -> bool:
        await self.initialize()
        async with self._connect() as db:
            cursor = await db.execute("DELETE FROM state_locks WHERE artifact_key = ?", (key,))
            removed = cursor.rowcount == 1
        if removed:
            logger.warning(f"{log_prefix('🔓')} Lock on '{key}' force-released")
        return removed
