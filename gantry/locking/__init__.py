"""
Gantry Locking - Mutual exclusion over state artifacts.
"""

from gantry.locking.base import Lock, LockManager, default_holder_id
from gantry.locking.keeper import LockKeeper
from gantry.locking.memory import MemoryLockManager
from gantry.locking.sqlite import SQLiteLockManager

__all__ = [
    "Lock",
    "LockKeeper",
    "LockManager",
    "MemoryLockManager",
    "SQLiteLockManager",
    "default_holder_id",
]
