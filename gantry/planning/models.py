"""
Gantry Planning - Plan models.

A Plan holds one ChangeSetEntry per resource, in an order that respects both
the forward (create/update) and the reverse (destroy) dependency orders, and
the executable PlanSteps derived from them.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any

from gantry.core.types import ChangeAction, StepPhase
from gantry.graph.models import ResourceNode
from gantry.state.models import StateRecord


@dataclass(frozen=True)
class ChangeSetEntry:
    """
    Planned change for one resource.

    Attributes:
        action: What the apply will do
        logical_id: Resource logical id
        resource_type: Resource type
        before: Stored record, None for create
        after: Planned attributes (UNKNOWN where only known after apply),
            None for destroy
        changed: Attribute names that differ between before and after
        replace_reasons: Changed attributes that force a replacement
        node: Graph node, None for destroy of an undeclared resource
        deposed: Provider ids of old instances still to be destroyed
    """

    action: ChangeAction
    logical_id: str
    resource_type: str
    before: StateRecord | None = None
    after: dict[str, Any] | None = None
    changed: tuple[str, ...] = ()
    replace_reasons: tuple[str, ...] = ()
    node: ResourceNode | None = field(default=None, repr=False, compare=False)
    deposed: tuple[str, ...] = ()

    @property
    def is_change(self) -> bool:
        return self.action != ChangeAction.NOOP or bool(self.deposed)

    def describe(self) -> str:
        text = f"{self.action.value} {self.logical_id}"
        if self.replace_reasons:
            text += f" (forced by {', '.join(self.replace_reasons)})"
        elif self.changed and self.action == ChangeAction.UPDATE:
            text += f" ({', '.join(self.changed)})"
        return text


@dataclass(frozen=True)
class PlanStep:
    """One executable half of an entry."""

    logical_id: str
    phase: StepPhase
    action: ChangeAction
    after: frozenset[str] = frozenset()  # step keys that must succeed first

    @property
    def key(self) -> str:
        return step_key(self.phase, self.logical_id)


def step_key(phase: StepPhase, logical_id: str) -> str:
    return f"{phase.value}:{logical_id}"


@dataclass
class Plan:
    """Ordered change set for one state artifact."""

    state_key: str
    state_version: int
    entries: list[ChangeSetEntry] = field(default_factory=list)
    steps: list[PlanStep] = field(default_factory=list)
    destroy: bool = False

    @property
    def has_changes(self) -> bool:
        return any(entry.is_change for entry in self.entries)

    def entry(self, logical_id: str) -> ChangeSetEntry:
        for entry in self.entries:
            if entry.logical_id == logical_id:
                return entry
        raise KeyError(logical_id)

    def changes(self) -> list[ChangeSetEntry]:
        return [entry for entry in self.entries if entry.is_change]

    def actions(self) -> list[tuple[ChangeAction, str]]:
        """(action, logical id) pairs in plan order."""
        return [(entry.action, entry.logical_id) for entry in self.entries]

    def summary(self) -> dict[str, int]:
        counts = Counter(entry.action.value for entry in self.entries)
        return {action.value: counts.get(action.value, 0) for action in ChangeAction}

    def step_order(self) -> list[str]:
        return [step.key for step in self.steps]
