"""
Gantry Locking - Lock keeper.

Renews a held lock in the background for the duration of a plan/apply cycle.
A failed renewal, or reaching the expiry time without one, marks the lock
lost; holders must then stop writing.

Example:
    >>> async with LockKeeper(manager, lock, ttl=120, renew_interval=30) as keeper:
    ...     keeper.ensure_held()
    ...     await do_work()
"""

from __future__ import annotations

import asyncio
from typing import Any

from loguru import logger

from gantry.core.exceptions import LockLostError
from gantry.locking.base import Lock, LockManager
from gantry.utils.logger import log_prefix


class LockKeeper:
    """
    Background renewal for a held lock.

    Attributes:
        lock: The latest renewed lock.
        ttl: Time-to-live requested on every renewal.
        renew_interval: Seconds between renewals.
    """

    def __init__(
        self,
        manager: LockManager,
        lock: Lock,
        ttl: float,
        renew_interval: float,
        release_on_exit: bool = True,
    ) -> None:
        if renew_interval >= ttl:
            raise ValueError(f"renew_interval ({renew_interval}) must be shorter than ttl ({ttl})")
        self.manager = manager
        self.lock = lock
        self.ttl = ttl
        self.renew_interval = renew_interval
        self.release_on_exit = release_on_exit

        self._lost_reason: str | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def key(self) -> str:
        return self.lock.key

    @property
    def is_lost(self) -> bool:
        if self._lost_reason is None and self.lock.expired(self.manager.clock()):
            self._mark_lost("lock expired without renewal")
        return self._lost_reason is not None

    @property
    def lost_reason(self) -> str | None:
        return self._lost_reason

    def _mark_lost(self, reason: str) -> None:
        if self._lost_reason is None:
            self._lost_reason = reason
            logger.error(f"{log_prefix('❌')} Lock on '{self.key}' lost: {reason}")

    def ensure_held(self) -> None:
        """
        Raise if the lock has been lost (local check, no I/O).

        Raises:
            LockLostError: If renewal failed or the lock expired
        """
        if self.is_lost:
            raise LockLostError(self.key, self._lost_reason or "unknown")

    async def verify(self) -> None:
        """
        Check the lock against the manager before a write.

        Raises:
            LockLostError: If the lock is lost locally or remotely
        """
        self.ensure_held()
        try:
            await self.manager.verify(self.lock)
        except LockLostError as e:
            self._mark_lost(e.reason)
            raise

    async def renew_now(self) -> None:
        """Renew immediately."""
        self.ensure_held()
        try:
            self.lock = await self.manager.renew(self.lock, self.ttl)
        except LockLostError as e:
            self._mark_lost(e.reason)
            raise
        except Exception as e:
            # Transient backend failure: retry on the next tick unless expired
            logger.warning(f"{log_prefix('⚠️')} Lock renewal for '{self.key}' failed: {e}")
            if self.lock.expired(self.manager.clock()):
                self._mark_lost(f"renewal failed until expiry: {e}")
                raise LockLostError(self.key, self._lost_reason or str(e)) from e
            return
        logger.debug(
            f"{log_prefix('🔒')} Lock on '{self.key}' renewed, "
            f"{self.lock.remaining(self.manager.clock()):.0f}s left"
        )

    async def _renew_loop(self) -> None:
        """Background task that renews until cancelled or lost."""
        while self._lost_reason is None:
            await asyncio.sleep(self.renew_interval)
            try:
                await self.renew_now()
            except LockLostError:
                break

    async def __aenter__(self) -> LockKeeper:
        """Start background renewal."""
        self._task = asyncio.create_task(self._renew_loop())
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> bool:
        """Stop renewal and release the lock if still held."""
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

        if self.release_on_exit and self._lost_reason is None:
            await self.manager.release(self.lock)

        return False
