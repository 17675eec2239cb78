"""
Gantry State - Versioned state artifacts.
"""

from gantry.state.handle import StateHandle
from gantry.state.models import StateDocument, StateRecord
from gantry.state.sqlite import SQLiteStateStore
from gantry.state.store import MemoryStateStore, StateStore

__all__ = [
    "MemoryStateStore",
    "SQLiteStateStore",
    "StateDocument",
    "StateHandle",
    "StateRecord",
    "StateStore",
]
