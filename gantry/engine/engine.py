"""
Gantry Engine - Plan/apply/destroy cycle orchestration.

A cycle:
1. Build the resource graph (build errors abort before any lock or provider call)
2. Acquire the state lock, retrying with backoff while another holder has it
3. Read state and plan
4. Execute the plan while the lock keeper renews the lock
5. On VersionConflict, re-read state and re-plan (up to max_replans)
6. Release the lock
"""

from __future__ import annotations

import inspect
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping
from contextlib import asynccontextmanager
from typing import Any

from loguru import logger

from gantry.config.loader import Config
from gantry.core.exceptions import AlreadyLocked, VersionConflict
from gantry.core.types import ChangeAction
from gantry.core.resilience import retry
from gantry.engine.executor import ApplyExecutor
from gantry.engine.report import ApplyReport
from gantry.graph.builder import GraphBuilder
from gantry.graph.loader import DeclarationSet
from gantry.graph.models import ResourceGraph
from gantry.locking.base import Lock, LockManager, default_holder_id
from gantry.locking.keeper import LockKeeper
from gantry.locking.memory import MemoryLockManager
from gantry.locking.sqlite import SQLiteLockManager
from gantry.planning.models import Plan
from gantry.planning.planner import Planner
from gantry.providers.registry import ProviderRegistry
from gantry.state.handle import StateHandle
from gantry.state.sqlite import SQLiteStateStore
from gantry.state.store import MemoryStateStore, StateStore
from gantry.utils.logger import log_prefix

# Called with the plan before execution; False declines the apply
Approval = Callable[[Plan], "bool | Awaitable[bool]"]


class Engine:
    """
    Provisioning engine.

    Args:
        registry: Providers by resource type
        store: State store
        lock_manager: Lock manager guarding the store's artifacts
        config: Engine configuration (defaults when None)
        holder_id: Lock holder identity (config, then user@host:pid)
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        store: StateStore,
        lock_manager: LockManager,
        config: Config | None = None,
        holder_id: str | None = None,
    ) -> None:
        self.registry = registry
        self.store = store
        self.lock_manager = lock_manager
        self.config = config or Config()
        self.holder_id = holder_id or self.config.lock.holder_id or default_holder_id()
        self.builder = GraphBuilder(registry)
        self.planner = Planner(registry)
        self._executor: ApplyExecutor | None = None
        self._cancel_requested = False

    @classmethod
    def from_config(cls, config: Config, registry: ProviderRegistry | None = None) -> Engine:
        """
        Create an engine with the configured backends and provider plugins.

        Raises:
            InvalidConfigError: If a provider plugin cannot be loaded
        """
        registry = registry if registry is not None else ProviderRegistry()
        for path in config.providers.plugins:
            registry.load_plugin(path)

        store: StateStore
        lock_manager: LockManager
        if config.state.backend == "sqlite":
            store = SQLiteStateStore(config.state.path)
            lock_manager = SQLiteLockManager(config.state.path)
        else:
            store = MemoryStateStore()
            lock_manager = MemoryLockManager()

        return cls(registry, store, lock_manager, config=config)

    async def close(self) -> None:
        """Close backend connections."""
        await self.store.close()
        await self.lock_manager.close()

    async def __aenter__(self) -> Engine:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    # -------------------------------------------------------------------------
    # Cycles
    # -------------------------------------------------------------------------

    def build(
        self, declarations: DeclarationSet, values: Mapping[str, Any] | None = None
    ) -> ResourceGraph:
        """Build the resource graph for a declaration set."""
        return self.builder.build(declarations.resources, declarations.variables, values)

    async def plan(
        self,
        declarations: DeclarationSet | None,
        values: Mapping[str, Any] | None = None,
        state_key: str | None = None,
        destroy: bool = False,
        lock: bool | None = None,
    ) -> Plan:
        """
        Compute a plan without applying it.

        Args:
            declarations: Declared resources and variables (unused for destroy)
            values: Variable values
            state_key: State artifact (config default when None)
            destroy: Plan destruction of every stored resource
            lock: Hold the state lock while reading (config default when None)

        Raises:
            ConfigurationError: On build errors
            AlreadyLocked: If the lock could not be acquired
        """
        key = state_key or self.config.state.key
        graph = None if destroy or declarations is None else self.build(declarations, values)
        use_lock = self.config.lock.enabled if lock is None else lock

        if not use_lock:
            return self.planner.plan(graph, await self.store.read(key), destroy=destroy)

        async with self._locked(key):
            return self.planner.plan(graph, await self.store.read(key), destroy=destroy)

    async def apply(
        self,
        declarations: DeclarationSet,
        values: Mapping[str, Any] | None = None,
        state_key: str | None = None,
        approve: Approval | None = None,
        concurrency: int | None = None,
    ) -> ApplyReport | None:
        """
        Plan and apply under the state lock.

        Returns:
            The apply report, or None if approve declined the plan

        Raises:
            ConfigurationError: On build errors
            AlreadyLocked: If the lock could not be acquired
            LockLostError: If the lock was lost mid-apply (partial report attached)
            VersionConflict: If state kept changing after max_replans re-plans
        """
        graph = self.build(declarations, values)
        return await self._run(graph, state_key, approve, concurrency, destroy=False)

    async def destroy(
        self,
        state_key: str | None = None,
        approve: Approval | None = None,
        concurrency: int | None = None,
    ) -> ApplyReport | None:
        """Destroy every resource recorded in the state artifact."""
        return await self._run(None, state_key, approve, concurrency, destroy=True)

    def cancel(self) -> None:
        """Cancel the running apply between step completions."""
        self._cancel_requested = True
        if self._executor is not None:
            self._executor.cancel()

    async def _run(
        self,
        graph: ResourceGraph | None,
        state_key: str | None,
        approve: Approval | None,
        concurrency: int | None,
        destroy: bool,
    ) -> ApplyReport | None:
        key = state_key or self.config.state.key
        apply_config = self.config.apply
        self._cancel_requested = False

        async with self._locked(key) as keeper:
            handle = StateHandle(self.store, key, keeper)
            approved_changes: set[tuple[ChangeAction, str]] = set()
            for attempt in range(apply_config.max_replans + 1):
                document = await handle.refresh()
                plan = self.planner.plan(graph, document, destroy=destroy)

                changes = {(entry.action, entry.logical_id) for entry in plan.changes()}
                unapproved = changes - approved_changes
                if attempt > 0 and unapproved:
                    listed = ", ".join(f"{action.value} {lid}" for action, lid in sorted(unapproved))
                    logger.warning(f"{log_prefix('📋')} Re-plan for '{key}' has new changes: {listed}")

                if approve is not None and unapproved:
                    approved = approve(plan)
                    if inspect.isawaitable(approved):
                        approved = await approved
                    if not approved:
                        logger.info(f"{log_prefix('🛑')} Plan for '{key}' not approved")
                        return None
                approved_changes |= changes

                executor = ApplyExecutor(
                    self.registry,
                    handle,
                    concurrency=concurrency or apply_config.concurrency,
                    provider_retries=apply_config.provider_retries,
                    retry_delay=apply_config.retry_delay,
                )
                self._executor = executor
                if self._cancel_requested:
                    executor.cancel()
                try:
                    return await executor.execute(plan)
                except VersionConflict as e:
                    if attempt == apply_config.max_replans:
                        raise
                    logger.warning(
                        f"{log_prefix('🔄')} {e}; re-planning "
                        f"({attempt + 1}/{apply_config.max_replans})"
                    )
                finally:
                    self._executor = None

        raise RuntimeError("Re-plan logic error")

    # -------------------------------------------------------------------------
    # Locking
    # -------------------------------------------------------------------------

    async def acquire_lock(self, key: str) -> Lock:
        """
        Acquire the lock on key, backing off while another holder has it.

        Raises:
            AlreadyLocked: If still held after lock.acquire_attempts attempts
        """
        lock_config = self.config.lock

        @retry(
            max_attempts=lock_config.acquire_attempts,
            initial_delay=lock_config.backoff_initial,
            max_delay=lock_config.backoff_max,
            exceptions=(AlreadyLocked,),
        )
        async def acquire_state_lock() -> Lock:
            return await self.lock_manager.acquire(key, self.holder_id, lock_config.ttl)

        return await acquire_state_lock()

    @asynccontextmanager
    async def _locked(self, key: str) -> AsyncIterator[LockKeeper]:
        lock = await self.acquire_lock(key)
        keeper = LockKeeper(
            self.lock_manager,
            lock,
            ttl=self.config.lock.ttl,
            renew_interval=self.config.lock.renew_interval,
        )
        try:
            async with keeper:
                yield keeper
        finally:
            if keeper.is_lost:
                logger.warning(f"{log_prefix('🔓')} Lock on '{key}' was lost, not released")
            else:
                logger.info(f"{log_prefix('🔓')} Lock on '{key}' released")

