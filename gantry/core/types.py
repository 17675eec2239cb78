"""
Gantry Core - Shared types and enums.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any


class ChangeAction(StrEnum):
    """Kind of change planned for a resource."""

    CREATE = "create"
    UPDATE = "update"
    REPLACE = "replace"
    DESTROY = "destroy"
    NOOP = "no-op"


class StepPhase(StrEnum):
    """Half of a change executed by a single step."""

    APPLY = "apply"
    DESTROY = "destroy"


class NodeOutcome(StrEnum):
    """Final outcome of a change-set entry after apply."""

    APPLIED = "applied"
    SKIPPED = "skipped"
    FAILED = "failed"
    NOOP = "no-op"


class _Unknown:
    """Value only known after apply (a computed output of a changing resource)."""

    _instance: _Unknown | None = None

    def __new__(cls) -> _Unknown:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "<known after apply>"

    def __reduce__(self) -> str:
        return "UNKNOWN"


UNKNOWN: Any = _Unknown()
