"""
Gantry Engine - Apply report.

Every entry of the plan appears in the report with its outcome; nothing is
dropped silently.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime

from gantry.core.types import ChangeAction, NodeOutcome


@dataclass
class EntryResult:
    """Outcome of one change-set entry."""

    logical_id: str
    action: ChangeAction
    outcome: NodeOutcome
    error: str | None = None
    note: str | None = None
    duration_ms: int = 0
    provider_id: str | None = None


@dataclass
class ApplyReport:
    """Result of an apply or destroy cycle."""

    state_key: str
    results: list[EntryResult] = field(default_factory=list)
    cancelled: bool = False
    aborted: str | None = None
    state_version: int = 0
    duration_sec: float = 0.0
    started_at: datetime = field(default_factory=datetime.now)

    @property
    def success(self) -> bool:
        return not self.cancelled and self.aborted is None and not self.failed()

    def outcome(self, logical_id: str) -> NodeOutcome:
        return self.result(logical_id).outcome

    def result(self, logical_id: str) -> EntryResult:
        for result in self.results:
            if result.logical_id == logical_id:
                return result
        raise KeyError(logical_id)

    def outcomes(self) -> dict[str, NodeOutcome]:
        return {r.logical_id: r.outcome for r in self.results}

    def failed(self) -> list[EntryResult]:
        return [r for r in self.results if r.outcome == NodeOutcome.FAILED]

    def counts(self) -> dict[str, int]:
        counts = Counter(r.outcome.value for r in self.results)
        return {outcome.value: counts.get(outcome.value, 0) for outcome in NodeOutcome}
