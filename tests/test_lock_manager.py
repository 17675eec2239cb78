"""
Tests for lock managers.

Both backends are checked against the same contract, with an injected clock
for expiry and takeover.
"""

from __future__ import annotations

import asyncio

import pytest
from loguru import logger

from gantry.core.exceptions import AlreadyLocked, LockLostError
from gantry.locking.base import Lock, default_holder_id
from gantry.locking.memory import MemoryLockManager
from gantry.locking.sqlite import SQLiteLockManager


@pytest.fixture(params=["memory", "sqlite"])
def make_manager(request, temp_db_path, clock):
    """Factory for managers sharing one backend and clock."""
    shared = MemoryLockManager(clock) if request.param == "memory" else None

    def make():
        if shared is not None:
            return shared
        return SQLiteLockManager(temp_db_path, clock=clock)

    return make


@pytest.fixture
def warnings():
    """Capture WARNING+ log messages."""
    messages: list[str] = []
    handler_id = logger.add(lambda m: messages.append(m.record["message"]), level="WARNING")
    yield messages
    logger.remove(handler_id)


class TestAcquire:
    """Acquire and release."""

    @pytest.mark.asyncio
    async def test_acquire_and_release(self, make_manager, clock) -> None:
        manager = make_manager()
        lock = await manager.acquire("default", "alice", ttl=60)

        assert lock.holder_id == "alice"
        assert lock.expires_at == clock.now + 60
        assert await manager.current("default") == lock

        assert await manager.release(lock) is True
        assert await manager.current("default") is None

    @pytest.mark.asyncio
    async def test_second_holder_is_rejected(self, make_manager) -> None:
        """A live lock cannot be acquired by another holder."""
        await make_manager().acquire("default", "alice", ttl=60)

        with pytest.raises(AlreadyLocked) as exc_info:
            await make_manager().acquire("default", "bob", ttl=60)
        assert exc_info.value.holder_id == "alice"
        assert exc_info.value.key == "default"

    @pytest.mark.asyncio
    async def test_concurrent_acquire_exactly_one_wins(self, make_manager) -> None:
        """Of two simultaneous acquires, one gets the lock, the other AlreadyLocked."""
        results = await asyncio.gather(
            make_manager().acquire("default", "alice", ttl=60),
            make_manager().acquire("default", "bob", ttl=60),
            return_exceptions=True,
        )

        locks = [r for r in results if isinstance(r, Lock)]
        rejected = [r for r in results if isinstance(r, AlreadyLocked)]
        assert len(locks) == 1
        assert len(rejected) == 1
        assert rejected[0].holder_id == locks[0].holder_id

    @pytest.mark.asyncio
    async def test_keys_are_independent(self, make_manager) -> None:
        manager = make_manager()
        await manager.acquire("prod", "alice", ttl=60)
        lock = await manager.acquire("dev", "bob", ttl=60)
        assert lock.key == "dev"

    @pytest.mark.asyncio
    async def test_release_after_takeover_is_refused(self, make_manager, clock) -> None:
        """A holder whose lock was taken over cannot release the new one."""
        manager = make_manager()
        old = await manager.acquire("default", "alice", ttl=10)
        clock.advance(11)
        new = await manager.acquire("default", "bob", ttl=10)

        assert await manager.release(old) is False
        assert await manager.current("default") == new


class TestStaleTakeover:
    """Expired locks."""

    @pytest.mark.asyncio
    async def test_expired_lock_is_taken_over(self, make_manager, clock, warnings) -> None:
        """An expired lock goes to the new holder, with a warning."""
        manager = make_manager()
        await manager.acquire("default", "alice", ttl=10)
        clock.advance(10.5)

        lock = await manager.acquire("default", "bob", ttl=10)

        assert lock.holder_id == "bob"
        assert any("stale lock" in m and "alice" in m for m in warnings)

    @pytest.mark.asyncio
    async def test_old_holder_renewal_fails_after_takeover(self, make_manager, clock) -> None:
        manager = make_manager()
        old = await manager.acquire("default", "alice", ttl=10)
        clock.advance(11)
        await manager.acquire("default", "bob", ttl=10)

        with pytest.raises(LockLostError, match="taken over by 'bob'"):
            await manager.renew(old, ttl=10)

    @pytest.mark.asyncio
    async def test_renew_extends_expiry(self, make_manager, clock) -> None:
        manager = make_manager()
        lock = await manager.acquire("default", "alice", ttl=10)
        clock.advance(5)

        renewed = await manager.renew(lock, ttl=10)

        assert renewed.token == lock.token
        assert renewed.expires_at == clock.now + 10
        await manager.verify(renewed)

    @pytest.mark.asyncio
    async def test_renew_after_expiry_fails(self, make_manager, clock) -> None:
        """Renewing an expired (but not yet taken) lock is refused."""
        manager = make_manager()
        lock = await manager.acquire("default", "alice", ttl=10)
        clock.advance(20)

        with pytest.raises(LockLostError, match="expired"):
            await manager.renew(lock, ttl=10)

    @pytest.mark.asyncio
    async def test_force_release(self, make_manager, warnings) -> None:
        manager = make_manager()
        lock = await manager.acquire("default", "alice", ttl=60)

        assert await manager.force_release("default") is True
        assert await manager.force_release("default") is False
        with pytest.raises(LockLostError, match="released"):
            await manager.verify(lock)
        assert any("force-released" in m for m in warnings)


def test_default_holder_id() -> None:
    """Holder ids identify user, host and process."""
    holder = default_holder_id()
    assert "@" in holder
    assert holder.rsplit(":", 1)[1].isdigit()


def test_lock_expiry_helpers() -> None:
    lock = Lock(key="k", holder_id="h", token="t", acquired_at=0.0, expires_at=10.0)
    assert not lock.expired(5.0)
    assert lock.expired(10.0)
    assert lock.remaining(4.0) == 6.0
    assert lock.remaining(12.0) == 0.0
