"""
Apply Executor.

Walks a plan's step graph with:
- Parallel execution of independent steps, bounded by a concurrency limit
- Provider retries with exponential backoff
- A state commit after every successful step
- Failure isolation: a failed step's successors are skipped, independent
  branches continue
- Cancellation between step completions
- Abort on lost lock, without further state writes
"""

from __future__ import annotations

import asyncio
import heapq
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from loguru import logger

from gantry.config.constants import DEFAULT_CONCURRENCY
from gantry.core.exceptions import LockLostError, ProviderError, VersionConflict
from gantry.core.resilience import retry
from gantry.core.types import ChangeAction, NodeOutcome, StepPhase
from gantry.engine.report import ApplyReport, EntryResult
from gantry.graph.declarations import Reference, substitute
from gantry.locking.keeper import LockKeeper
from gantry.planning.models import ChangeSetEntry, Plan, PlanStep
from gantry.providers.base import ResourceProvider
from gantry.providers.registry import ProviderRegistry
from gantry.state.handle import StateHandle
from gantry.state.models import StateRecord, utcnow
from gantry.utils.logger import log_prefix


class StepStatus(str, Enum):
    """Execution status of a plan step."""
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class StepResult:
    """Result of executing a step."""
    key: str
    status: StepStatus
    error: str | None = None
    duration_ms: int = 0
    provider_id: str | None = None
    fatal: Exception | None = None


class ApplyExecutor:
    """
    Execute a plan against providers, committing state as steps succeed.

    Args:
        registry: Providers by resource type
        handle: State handle for the plan's artifact (holds the lock keeper)
        concurrency: Maximum steps in flight
        provider_retries: Extra attempts per provider call
        retry_delay: Initial delay between provider retries (seconds)
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        handle: StateHandle,
        concurrency: int = DEFAULT_CONCURRENCY,
        provider_retries: int = 0,
        retry_delay: float = 1.0,
    ) -> None:
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got: {concurrency}")
        self.registry = registry
        self.handle = handle
        self.concurrency = concurrency
        self.provider_retries = provider_retries
        self.retry_delay = retry_delay
        self._cancel_requested = asyncio.Event()

    @property
    def keeper(self) -> LockKeeper | None:
        return self.handle.keeper

    def cancel(self) -> None:
        """Stop dispatching new steps; in-flight steps finish and are committed."""
        if not self._cancel_requested.is_set():
            logger.warning(f"{log_prefix('🛑')} Cancellation requested, no new steps will start")
            self._cancel_requested.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_requested.is_set()

    async def execute(self, plan: Plan) -> ApplyReport:
        """
        Execute a plan.

        Returns:
            Report listing every entry's outcome

        Raises:
            LockLostError: If the lock was lost (report attached as .report)
            VersionConflict: If a state commit kept conflicting
        """
        if plan.state_key != self.handle.key:
            raise ValueError(f"Plan is for '{plan.state_key}', handle is for '{self.handle.key}'")

        start_time = time.time()
        entries = {entry.logical_id: entry for entry in plan.entries}
        steps = {step.key: step for step in plan.steps}
        index = {step.key: i for i, step in enumerate(plan.steps)}
        waiting = {key: set(step.after) for key, step in steps.items()}
        successors: dict[str, list[str]] = {key: [] for key in steps}
        for key, step in steps.items():
            for pred in step.after:
                successors[pred].append(key)

        logger.info(
            f"{log_prefix('🚀')} Executing {len(steps)} steps for '{plan.state_key}' "
            f"(concurrency={self.concurrency})"
        )

        results: dict[str, StepResult] = {}
        ready = [(index[key], key) for key, preds in waiting.items() if not preds]
        heapq.heapify(ready)
        running: dict[asyncio.Task[StepResult], str] = {}
        fatal: Exception | None = None

        while True:
            if fatal is None and self.keeper is not None:
                try:
                    self.keeper.ensure_held()
                except LockLostError as e:
                    fatal = e

            while ready and len(running) < self.concurrency and fatal is None and not self.cancelled:
                _, key = heapq.heappop(ready)
                step = steps[key]
                task = asyncio.create_task(self._run_step(step, entries[step.logical_id]))
                running[task] = key

            if not running:
                break

            done, _ = await asyncio.wait(running, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                key = running.pop(task)
                result = task.result()
                results[key] = result

                if result.fatal is not None and fatal is None:
                    fatal = result.fatal
                if result.status == StepStatus.SUCCEEDED:
                    for succ in successors[key]:
                        waiting[succ].discard(key)
                        if not waiting[succ]:
                            heapq.heappush(ready, (index[succ], succ))

        for key in steps:
            if key not in results:
                results[key] = StepResult(key, StepStatus.SKIPPED, error=self._skip_reason(key, steps, results, fatal))

        report = self._build_report(plan, results)
        report.duration_sec = time.time() - start_time
        report.cancelled = self.cancelled and fatal is None
        report.state_version = self.handle.version if self.handle.loaded else plan.state_version

        counts = ", ".join(f"{n} {o}" for o, n in report.counts().items() if n)
        logger.info(f"{log_prefix('✅' if report.success else '⚠️')} Apply finished: {counts}")

        if fatal is not None:
            report.aborted = str(fatal)
            if isinstance(fatal, LockLostError):
                fatal.report = report
            raise fatal
        return report

    # -------------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------------

    async def _run_step(self, step: PlanStep, entry: ChangeSetEntry) -> StepResult:
        start = time.monotonic()
        logger.info(f"{log_prefix('🗑️' if step.phase == StepPhase.DESTROY else '🚀')} {step.key} ({entry.action.value})")

        try:
            if step.phase == StepPhase.APPLY:
                provider_id = await self._apply(entry)
            else:
                provider_id = await self._destroy(entry)
        except ProviderError as e:
            logger.error(f"{log_prefix('❌')} {e}")
            return StepResult(step.key, StepStatus.FAILED, error=str(e), duration_ms=_elapsed_ms(start))
        except (LockLostError, VersionConflict) as e:
            logger.error(f"{log_prefix('❌')} {step.key} not committed: {e}")
            return StepResult(step.key, StepStatus.FAILED, error=str(e), duration_ms=_elapsed_ms(start), fatal=e)
        except Exception as e:
            logger.exception(f"{log_prefix('❌')} {step.key} failed unexpectedly: {e}")
            return StepResult(step.key, StepStatus.FAILED, error=str(e), duration_ms=_elapsed_ms(start), fatal=e)

        return StepResult(
            step.key, StepStatus.SUCCEEDED, duration_ms=_elapsed_ms(start), provider_id=provider_id
        )

    async def _apply(self, entry: ChangeSetEntry) -> str:
        assert entry.node is not None
        provider = self.registry.get(entry.resource_type)
        attributes = self._resolve(entry)
        before = entry.before
        dependencies = sorted(entry.node.dependencies)

        if entry.action == ChangeAction.UPDATE:
            assert before is not None
            outputs = await self._call(
                entry.logical_id, "update", provider.update, before.provider_id, attributes
            )
            record = before.model_copy(
                update={
                    "attributes": attributes,
                    "outputs": outputs,
                    "dependencies": dependencies,
                    "applied_at": utcnow(),
                },
                deep=True,
            )
        else:
            provider_id, outputs = await self._call(
                entry.logical_id, "create", provider.create, attributes
            )
            deposed = list(before.deposed) if before is not None else []
            if entry.action == ChangeAction.REPLACE and before is not None:
                deposed.append(before.provider_id)
            record = StateRecord(
                logical_id=entry.logical_id,
                resource_type=entry.resource_type,
                provider_id=provider_id,
                attributes=attributes,
                outputs=outputs,
                dependencies=dependencies,
                deposed=deposed,
            )

        try:
            await self.handle.put(record)
        except (LockLostError, VersionConflict):
            logger.error(
                f"{log_prefix('❌')} {entry.logical_id} ({record.provider_id}) was applied "
                f"but could not be recorded"
            )
            raise
        return record.provider_id

    async def _destroy(self, entry: ChangeSetEntry) -> str | None:
        before = entry.before
        assert before is not None
        provider = self.registry.get(before.resource_type)

        current = self.handle.records.get(entry.logical_id)
        for provider_id in list(current.deposed if current is not None else entry.deposed):
            await self._call(entry.logical_id, "destroy", provider.destroy, provider_id)
            await self.handle.commit(
                _drop_deposed(entry.logical_id, provider_id), f"destroyed deposed {provider_id}"
            )

        if entry.action != ChangeAction.DESTROY:
            return None

        await self._call(entry.logical_id, "destroy", provider.destroy, before.provider_id)
        await self.handle.remove(entry.logical_id)
        return before.provider_id

    def _resolve(self, entry: ChangeSetEntry) -> dict[str, Any]:
        """Substitute references with values from committed records."""
        assert entry.node is not None
        records = self.handle.records

        def resolve(ref: Reference) -> Any:
            record = records.get(ref.resource)
            if record is None:
                raise ProviderError(entry.logical_id, "resolve", f"{ref} has no applied state")
            try:
                return record.value_of(ref.attribute)
            except (KeyError, IndexError, TypeError) as e:
                raise ProviderError(entry.logical_id, "resolve", f"{ref} is not available") from e

        return substitute(dict(entry.node.attributes), resolve)

    async def _call(
        self,
        logical_id: str,
        operation: str,
        func: Callable[..., Awaitable[Any]],
        *args: Any,
    ) -> Any:
        async def call_provider() -> Any:
            return await func(*args)

        call_provider.__name__ = f"{operation} {logical_id}"
        wrapped = retry(
            max_attempts=self.provider_retries + 1,
            initial_delay=self.retry_delay,
        )(call_provider)

        try:
            return await wrapped()
        except Exception as e:
            raise ProviderError(logical_id, operation, str(e) or type(e).__name__) from e

    # -------------------------------------------------------------------------
    # Reporting
    # -------------------------------------------------------------------------

    def _skip_reason(
        self,
        key: str,
        steps: dict[str, PlanStep],
        results: dict[str, StepResult],
        fatal: Exception | None,
    ) -> str:
        for pred in sorted(steps[key].after):
            result = results.get(pred)
            if result is not None and result.status == StepStatus.FAILED:
                return f"dependency {pred} failed"
        if fatal is not None:
            return f"aborted: {fatal}"
        if self.cancelled:
            return "cancelled"
        for pred in sorted(steps[key].after):
            if results.get(pred) is not None and results[pred].status == StepStatus.SKIPPED:
                return f"dependency {pred} skipped"
        return "not started"

    def _build_report(self, plan: Plan, results: dict[str, StepResult]) -> ApplyReport:
        by_entry: dict[str, list[StepResult]] = {}
        for step in plan.steps:
            by_entry.setdefault(step.logical_id, []).append(results[step.key])

        report = ApplyReport(state_key=plan.state_key, state_version=plan.state_version)
        for entry in plan.entries:
            step_results = by_entry.get(entry.logical_id, [])
            report.results.append(_entry_result(entry, step_results))
        return report


def _entry_result(entry: ChangeSetEntry, step_results: list[StepResult]) -> EntryResult:
    duration = sum(r.duration_ms for r in step_results)
    provider_id = next((r.provider_id for r in step_results if r.provider_id), None)
    result = EntryResult(
        logical_id=entry.logical_id,
        action=entry.action,
        outcome=NodeOutcome.NOOP,
        duration_ms=duration,
        provider_id=provider_id,
    )
    if not step_results:
        return result

    statuses = [r.status for r in step_results]
    failed = next((r for r in step_results if r.status == StepStatus.FAILED), None)
    if failed is not None:
        result.outcome = NodeOutcome.FAILED
        result.error = failed.error
    elif all(s == StepStatus.SUCCEEDED for s in statuses):
        result.outcome = NodeOutcome.APPLIED
    elif StepStatus.SUCCEEDED in statuses:
        # Replacement created, old instance kept as deposed
        result.outcome = NodeOutcome.APPLIED
        result.note = "old instance deposed, destroy pending"
    else:
        result.outcome = NodeOutcome.SKIPPED
        result.error = next(r.error for r in step_results if r.status == StepStatus.SKIPPED)
    return result


def _drop_deposed(logical_id: str, provider_id: str) -> Callable[[dict[str, StateRecord]], None]:
    def mutate(records: dict[str, StateRecord]) -> None:
        record = records.get(logical_id)
        if record is not None and provider_id in record.deposed:
            record.deposed = [pid for pid in record.deposed if pid != provider_id]

    return mutate


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
