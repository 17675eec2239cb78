"""
Gantry State - Handle.

The handle is the only way the engine touches a state artifact. It carries
the version it last saw, refuses to write unless the artifact's lock is still
held, and serializes record commits from concurrent apply tasks.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable

from loguru import logger

from gantry.config.constants import STATE_COMMIT_ATTEMPTS
from gantry.core.exceptions import LockLostError, VersionConflict
from gantry.locking.keeper import LockKeeper
from gantry.state.models import StateDocument, StateRecord
from gantry.state.store import StateStore
from gantry.utils.logger import log_prefix

RecordMutation = Callable[[dict[str, StateRecord]], None]


class StateHandle:
    """
    Versioned, lock-guarded access to one state artifact.

    Args:
        store: Backing store
        key: Artifact key
        keeper: Keeper of the artifact's lock; required for writes
        commit_attempts: Re-read/re-apply attempts on VersionConflict
    """

    def __init__(
        self,
        store: StateStore,
        key: str,
        keeper: LockKeeper | None = None,
        commit_attempts: int = STATE_COMMIT_ATTEMPTS,
    ) -> None:
        if keeper is not None and keeper.key != key:
            raise ValueError(f"Lock is for '{keeper.key}', not '{key}'")
        self.store = store
        self.key = key
        self.keeper = keeper
        self.commit_attempts = commit_attempts
        self._document: StateDocument | None = None
        self._commit_lock = asyncio.Lock()

    @property
    def document(self) -> StateDocument:
        if self._document is None:
            raise RuntimeError("State not loaded; call refresh() first")
        return self._document

    @property
    def loaded(self) -> bool:
        return self._document is not None

    @property
    def version(self) -> int:
        return self.document.version

    @property
    def records(self) -> dict[str, StateRecord]:
        return self.document.records

    async def refresh(self) -> StateDocument:
        """Re-read the artifact from the store."""
        self._document = await self.store.read(self.key)
        return self._document

    async def _guard(self) -> None:
        if self.keeper is None:
            raise LockLostError(self.key, "state writes require a held lock")
        await self.keeper.verify()

    async def commit(self, mutate: RecordMutation, description: str = "") -> StateDocument:
        """
        Apply a record mutation and write it.

        The mutation is applied to a copy of the current records. On
        VersionConflict the artifact is re-read and the mutation re-applied,
        up to commit_attempts times.

        Raises:
            LockLostError: If the lock is no longer held
            VersionConflict: If every attempt conflicted
        """
        async with self._commit_lock:
            if self._document is None:
                await self.refresh()

            for attempt in range(1, self.commit_attempts + 1):
                await self._guard()
                records = {lid: r.model_copy(deep=True) for lid, r in self.records.items()}
                mutate(records)
                try:
                    self._document = await self.store.write(self.key, records, self.version)
                except VersionConflict as e:
                    if attempt == self.commit_attempts:
                        raise
                    logger.warning(
                        f"{log_prefix('🔄')} {e}; re-reading before retrying commit "
                        f"({attempt}/{self.commit_attempts})"
                    )
                    await self.refresh()
                    continue

                logger.debug(
                    f"{log_prefix('💾')} State '{self.key}' v{self.version}"
                    + (f": {description}" if description else "")
                )
                return self._document

        raise RuntimeError("Commit logic error")

    async def put(self, record: StateRecord) -> StateDocument:
        """Write or replace one record."""
        def mutate(records: dict[str, StateRecord]) -> None:
            records[record.logical_id] = record

        return await self.commit(mutate, f"put {record.logical_id}")

    async def remove(self, logical_id: str) -> StateDocument:
        """Remove one record."""
        def mutate(records: dict[str, StateRecord]) -> None:
            records.pop(logical_id, None)

        return await self.commit(mutate, f"remove {logical_id}")
