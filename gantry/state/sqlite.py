"""
Gantry State - SQLite store.

SQLite persistence for state artifacts, one row per artifact key holding the
JSON document and its version. Writes are compare-and-swap on the version
column inside an immediate transaction.
"""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Mapping
from datetime import datetime
from pathlib import Path

import aiosqlite
from loguru import logger

from gantry.core.exceptions import VersionConflict
from gantry.state.models import StateDocument, StateRecord, utcnow
from gantry.state.store import StateStore


class SQLiteStateStore(StateStore):
    """
    SQLite-based state persistence.

    The database file stands in for the object storage bucket a remote
    backend would use: key -> (version, document).
    """

    SCHEMA_VERSION = 1

    def __init__(self, db_path: Path | str | None = None):
        """
        Initialize the store.

        Args:
            db_path: Path to SQLite database (default: ~/.gantry/state.db)
        """
        if db_path is None:
            db_path = Path.home() / ".gantry" / "state.db"
        self._db_path = Path(db_path)
        self._initialized = False

    @property
    def db_path(self) -> Path:
        """Get the database path."""
        return self._db_path

    def _connect(self) -> aiosqlite.Connection:
        # Autocommit mode: transactions are opened explicitly
        return aiosqlite.connect(self._db_path, isolation_level=None)

    async def initialize(self) -> None:
        """Initialize the database schema."""
        if self._initialized:
            return

        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        async with self._connect() as db:
            await db.execute("BEGIN IMMEDIATE")
            await db.execute("""
                CREATE TABLE IF NOT EXISTS state_schema_version (
                    version INTEGER PRIMARY KEY
                )
            """)

            cursor = await db.execute("SELECT version FROM state_schema_version LIMIT 1")
            row = await cursor.fetchone()
            current_version = row[0] if row else 0

            if current_version < self.SCHEMA_VERSION:
                await self._migrate(db, current_version)

            await db.execute("COMMIT")

        self._initialized = True
        logger.debug(f"State store initialized at {self._db_path}")

    async def _migrate(self, db: aiosqlite.Connection, from_version: int) -> None:
        """Run database migrations."""
        if from_version < 1:
            await db.execute("""
                CREATE TABLE IF NOT EXISTS state_artifacts (
                    artifact_key TEXT PRIMARY KEY,
                    version INTEGER NOT NULL,
                    records TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            await db.execute("DELETE FROM state_schema_version")
            await db.execute(
                "INSERT INTO state_schema_version (version) VALUES (?)",
                (self.SCHEMA_VERSION,),
            )

            logger.info("Migrated state database to version 1")

    async def read(self, key: str) -> StateDocument:
        await self.initialize()

        async with self._connect() as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "SELECT * FROM state_artifacts WHERE artifact_key = ?",
                (key,),
            )
            row = await cursor.fetchone()

        if row is None:
            return StateDocument(key=key)
        return self._row_to_document(row)

    async def write(
        self, key: str, records: Mapping[str, StateRecord], expected_version: int
    ) -> StateDocument:
        await self.initialize()

        new_version = expected_version + 1
        updated_at = utcnow()
        payload = json.dumps(
            {lid: record.model_dump(mode="json") for lid, record in records.items()}
        )

        async with self._connect() as db:
            await db.execute("BEGIN IMMEDIATE")
            try:
                if expected_version == 0:
                    try:
                        await db.execute(
                            """
                            INSERT INTO state_artifacts (artifact_key, version, records, updated_at)
                            VALUES (?, ?, ?, ?)
                            """,
                            (key, new_version, payload, updated_at.isoformat()),
                        )
                        applied = True
                    except sqlite3.IntegrityError:
                        applied = False
                else:
                    cursor = await db.execute(
                        """
                        UPDATE state_artifacts
                        SET version = ?, records = ?, updated_at = ?
                        WHERE artifact_key = ? AND version = ?
                        """,
                        (new_version, payload, updated_at.isoformat(), key, expected_version),
                    )
                    applied = cursor.rowcount == 1

                if not applied:
                    cursor = await db.execute(
                        "SELECT version FROM state_artifacts WHERE artifact_key = ?",
                        (key,),
                    )
                    row = await cursor.fetchone()
                    await db.execute("ROLLBACK")
                    raise VersionConflict(key, expected_version, row[0] if row else 0)

                await db.execute("COMMIT")
            except sqlite3.Error:
                await db.execute("ROLLBACK")
                raise

        logger.debug(f"State '{key}' written at version {new_version}")
        return StateDocument(
            key=key,
            version=new_version,
            records={lid: r.model_copy(deep=True) for lid, r in records.items()},
            updated_at=updated_at,
        )

    async def keys(self) -> list[str]:
        await self.initialize()

        async with self._connect() as db:
            cursor = await db.execute("SELECT artifact_key FROM state_artifacts ORDER BY artifact_key")
            rows = await cursor.fetchall()
        return [row[0] for row in rows]

    def _row_to_document(self, row: aiosqlite.Row) -> StateDocument:
        """Convert a database row to StateDocument."""
        raw = json.loads(row["records"])
        return StateDocument(
            key=row["artifact_key"],
            version=row["version"],
            records={lid: StateRecord.model_validate(data) for lid, data in raw.items()},
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )
