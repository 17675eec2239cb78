"""
Gantry Engine - Plan execution and cycle orchestration.
"""

from gantry.engine.engine import Engine
from gantry.engine.executor import ApplyExecutor
from gantry.engine.report import ApplyReport, EntryResult

__all__ = [
    "ApplyExecutor",
    "ApplyReport",
    "Engine",
    "EntryResult",
]
