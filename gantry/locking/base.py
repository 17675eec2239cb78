"""
Gantry Locking - Lock contract.

One named lock per state artifact, at most one holder at a time. An expired
lock may be taken over by a new holder; the previous holder's renewals then
fail with LockLostError.
"""

from __future__ import annotations

import getpass
import os
import socket
import time
import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, replace

from loguru import logger

from gantry.core.exceptions import AlreadyLocked, LockLostError
from gantry.utils.logger import log_prefix

Clock = Callable[[], float]


@dataclass(frozen=True)
class Lock:
    """Held lock token."""

    key: str
    holder_id: str
    token: str
    acquired_at: float
    expires_at: float

    def expired(self, now: float) -> bool:
        return now >= self.expires_at

    def remaining(self, now: float) -> float:
        return max(0.0, self.expires_at - now)


def default_holder_id() -> str:
    """user@host:pid identity for lock holders."""
    try:
        user = getpass.getuser()
    except (KeyError, OSError):
        user = "unknown"
    return f"{user}@{socket.gethostname()}:{os.getpid()}"


def new_lock(key: str, holder_id: str, ttl: float, now: float) -> Lock:
    return Lock(
        key=key,
        holder_id=holder_id,
        token=uuid.uuid4().hex,
        acquired_at=now,
        expires_at=now + ttl,
    )


class LockManager(ABC):
    """Abstract lock manager."""

    def __init__(self, clock: Clock | None = None) -> None:
        self.clock: Clock = clock or time.time

    @abstractmethod
    async def acquire(self, key: str, holder_id: str, ttl: float) -> Lock:
        """
        Acquire the lock on key, all-or-nothing.

        Raises:
            AlreadyLocked: If another holder has a live lock
        """

    @abstractmethod
    async def release(self, lock: Lock) -> bool:
        """Release a held lock. Returns False if it was no longer held."""

    @abstractmethod
    async def renew(self, lock: Lock, ttl: float) -> Lock:
        """
        Extend a held lock.

        Raises:
            LockLostError: If the lock expired or belongs to someone else
        """

    @abstractmethod
    async def current(self, key: str) -> Lock | None:
        """Current lock on key, live or stale, if any."""

    @abstractmethod
    async def force_release(self, key: str) -> bool:
        """Remove any lock on key regardless of holder."""

    async def verify(self, lock: Lock) -> None:
        """
        Check the lock is still held by its token and not expired.

        Raises:
            LockLostError: If it is not
        """
        existing = await self.current(lock.key)
        self._check_owned(lock, existing)
        if existing is not None and existing.expired(self.clock()):
            raise LockLostError(lock.key, "lock expired")

    async def close(self) -> None:
        """Release backend resources."""

    # Shared decision logic for backends

    def _grant(self, key: str, holder_id: str, ttl: float, existing: Lock | None) -> Lock:
        now = self.clock()
        if existing is not None:
            if not existing.expired(now):
                raise AlreadyLocked(key, existing.holder_id, existing.expires_at)
            logger.warning(
                f"{log_prefix('🔒')} Taking over stale lock on '{key}' from '{existing.holder_id}' "
                f"(expired {now - existing.expires_at:.1f}s ago)"
            )
        lock = new_lock(key, holder_id, ttl, now)
        logger.info(f"{log_prefix('🔒')} Lock on '{key}' acquired by '{holder_id}'")
        return lock

    def _extend(self, lock: Lock, ttl: float, existing: Lock | None) -> Lock:
        self._check_owned(lock, existing)
        now = self.clock()
        if existing is not None and existing.expired(now):
            raise LockLostError(lock.key, "lock expired before renewal")
        return replace(lock, expires_at=now + ttl)

    @staticmethod
    def _check_owned(lock: Lock, existing: Lock | None) -> None:
        if existing is None:
            raise LockLostError(lock.key, "lock was released")
        if existing.token != lock.token:
            raise LockLostError(lock.key, f"lock taken over by '{existing.holder_id}'")
