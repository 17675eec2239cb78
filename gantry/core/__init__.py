"""
Gantry Core - Shared types and errors.
"""

from gantry.core.types import UNKNOWN, ChangeAction, NodeOutcome, StepPhase

__all__ = [
    "UNKNOWN",
    "ChangeAction",
    "NodeOutcome",
    "StepPhase",
]
