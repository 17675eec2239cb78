"""
Gantry State - Store contract.

read(key) returns the current document; write(key, records, expected_version)
succeeds only if the stored version still equals expected_version, otherwise
it raises VersionConflict and the caller must re-read.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Mapping

from loguru import logger

from gantry.core.exceptions import VersionConflict
from gantry.state.models import StateDocument, StateRecord, utcnow


class StateStore(ABC):
    """Abstract versioned state storage."""

    @abstractmethod
    async def read(self, key: str) -> StateDocument:
        """Read the document stored at key (version 0, no records, if absent)."""

    @abstractmethod
    async def write(
        self, key: str, records: Mapping[str, StateRecord], expected_version: int
    ) -> StateDocument:
        """
        Replace the records stored at key.

        Returns:
            The stored document, at expected_version + 1

        Raises:
            VersionConflict: If the stored version is not expected_version
        """

    @abstractmethod
    async def keys(self) -> list[str]:
        """List artifact keys."""

    async def close(self) -> None:
        """Release backend resources."""


class MemoryStateStore(StateStore):
    """Process-local store, for tests and dry runs."""

    def __init__(self) -> None:
        self._documents: dict[str, StateDocument] = {}
        self._lock = asyncio.Lock()

    async def read(self, key: str) -> StateDocument:
        async with self._lock:
            document = self._documents.get(key)
            if document is None:
                return StateDocument(key=key)
            return document.model_copy(deep=True)

    async def write(
        self, key: str, records: Mapping[str, StateRecord], expected_version: int
    ) -> StateDocument:
        async with self._lock:
            current = self._documents.get(key)
            actual = current.version if current else 0
            if actual != expected_version:
                raise VersionConflict(key, expected_version, actual)

            document = StateDocument(
                key=key,
                version=expected_version + 1,
                records={lid: r.model_copy(deep=True) for lid, r in records.items()},
                updated_at=utcnow(),
            )
            self._documents[key] = document
            logger.debug(f"State '{key}' written at version {document.version}")
            return document.model_copy(deep=True)

    async def keys(self) -> list[str]:
        async with self._lock:
            return sorted(self._documents)
