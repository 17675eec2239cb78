"""
Diff/Planner.

Compares declared configuration with stored state, resource by resource in
topological order, and produces an ordered change set plus the step graph the
executor walks.

Ordering rules:
- a node's create/update follows its dependencies' changes and precedes its
  dependents' changes
- a node's destroy (including the destroy half of a replace) follows every
  step of every resource depending on it, old or new
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from loguru import logger

from gantry.core.types import UNKNOWN, ChangeAction, StepPhase
from gantry.graph.declarations import Reference, substitute
from gantry.graph.models import ResourceGraph, ResourceNode, topological_sort
from gantry.planning.differ import changed_attributes
from gantry.planning.models import ChangeSetEntry, Plan, PlanStep, step_key
from gantry.providers.base import ID_ATTRIBUTE
from gantry.providers.registry import ProviderRegistry
from gantry.state.models import StateDocument, StateRecord
from gantry.utils.logger import log_prefix

_FORWARD = (ChangeAction.CREATE, ChangeAction.UPDATE, ChangeAction.REPLACE)
_NEW_INSTANCE = (ChangeAction.CREATE, ChangeAction.REPLACE)


class Planner:
    """Compute plans against a provider registry's schemas."""

    def __init__(self, registry: ProviderRegistry) -> None:
        self.registry = registry

    def plan(
        self,
        graph: ResourceGraph | None,
        document: StateDocument,
        destroy: bool = False,
    ) -> Plan:
        """
        Plan the changes reconciling graph with document.

        Args:
            graph: Declared resources (ignored when destroy is True)
            document: Stored state
            destroy: Plan the destruction of every stored resource

        Raises:
            UnknownResourceTypeError: If a declared type has no provider
        """
        records = document.records
        entries: dict[str, ChangeSetEntry] = {}

        if not destroy and graph is not None:
            for node in graph:
                entries[node.logical_id] = self._plan_node(node, graph, records, entries)

        for lid, record in records.items():
            if lid in entries:
                continue
            entries[lid] = ChangeSetEntry(
                action=ChangeAction.DESTROY,
                logical_id=lid,
                resource_type=record.resource_type,
                before=record,
                deposed=tuple(record.deposed),
            )

        old_dependents = _old_dependents(records)
        new_graph = None if destroy else graph
        ordered = self._order_entries(entries, new_graph, records, old_dependents)
        steps = self._build_steps(ordered, new_graph, old_dependents)

        plan = Plan(
            state_key=document.key,
            state_version=document.version,
            entries=ordered,
            steps=steps,
            destroy=destroy,
        )
        counts = ", ".join(f"{n} {a}" for a, n in plan.summary().items() if n)
        logger.info(f"{log_prefix('📋')} Plan for '{document.key}' v{document.version}: {counts or 'empty'}")
        for entry in plan.changes():
            logger.debug(f"{log_prefix('📋')}   {entry.describe()}")
        return plan

    # -------------------------------------------------------------------------
    # Per-node diff
    # -------------------------------------------------------------------------

    def _plan_node(
        self,
        node: ResourceNode,
        graph: ResourceGraph,
        records: Mapping[str, StateRecord],
        entries: Mapping[str, ChangeSetEntry],
    ) -> ChangeSetEntry:
        schema = self.registry.schema(node.type)
        after = substitute(
            dict(node.attributes),
            lambda ref: _planned_value(ref, graph, records, entries),
        )
        record = records.get(node.logical_id)
        common = {
            "logical_id": node.logical_id,
            "resource_type": node.type,
            "before": record,
            "after": after,
            "node": node,
        }

        if record is None:
            return ChangeSetEntry(action=ChangeAction.CREATE, changed=tuple(sorted(after)), **common)

        deposed = tuple(record.deposed)
        if record.resource_type != node.type:
            return ChangeSetEntry(
                action=ChangeAction.REPLACE,
                changed=("type",),
                replace_reasons=("type",),
                deposed=deposed,
                **common,
            )

        changed = changed_attributes(record.attributes, after)
        if not changed:
            return ChangeSetEntry(action=ChangeAction.NOOP, deposed=deposed, **common)

        forcing = tuple(name for name in changed if schema.requires_replace(name))
        action = ChangeAction.REPLACE if forcing else ChangeAction.UPDATE
        return ChangeSetEntry(
            action=action,
            changed=tuple(changed),
            replace_reasons=forcing,
            deposed=deposed,
            **common,
        )

    # -------------------------------------------------------------------------
    # Ordering
    # -------------------------------------------------------------------------

    def _order_entries(
        self,
        entries: dict[str, ChangeSetEntry],
        graph: ResourceGraph | None,
        records: Mapping[str, StateRecord],
        old_dependents: Mapping[str, set[str]],
    ) -> list[ChangeSetEntry]:
        """Topological sort of the combined graph, destroy edges inverted."""
        predecessors: dict[str, set[str]] = {lid: set() for lid in entries}
        for lid, entry in entries.items():
            if entry.action != ChangeAction.DESTROY and graph is not None:
                predecessors[lid].update(graph.dependencies_of(lid))

        # Dependents being destroyed go before the resources they used
        for lid, entry in entries.items():
            if entry.action not in (ChangeAction.DESTROY, ChangeAction.REPLACE):
                continue
            for dependent in old_dependents.get(lid, ()):
                if entries[dependent].action == ChangeAction.DESTROY:
                    predecessors[lid].add(dependent)

        record_order = {lid: i for i, lid in enumerate(records)}
        priority: dict[str, tuple[int, int, str]] = {}
        for lid, entry in entries.items():
            if entry.action == ChangeAction.DESTROY:
                priority[lid] = (1, -record_order.get(lid, 0), lid)
            else:
                priority[lid] = (0, graph.position(lid) if graph is not None else 0, lid)

        order = topological_sort(list(entries), predecessors, priority)
        return [entries[lid] for lid in order]

    def _build_steps(
        self,
        ordered: list[ChangeSetEntry],
        graph: ResourceGraph | None,
        old_dependents: Mapping[str, set[str]],
    ) -> list[PlanStep]:
        apply_keys: dict[str, str] = {}
        destroy_keys: dict[str, str] = {}
        for entry in ordered:
            if entry.action in _FORWARD:
                apply_keys[entry.logical_id] = step_key(StepPhase.APPLY, entry.logical_id)
            if entry.action in (ChangeAction.DESTROY, ChangeAction.REPLACE) or entry.deposed:
                destroy_keys[entry.logical_id] = step_key(StepPhase.DESTROY, entry.logical_id)

        steps: dict[str, PlanStep] = {}
        for entry in ordered:
            lid = entry.logical_id
            if lid in apply_keys:
                deps = graph.dependencies_of(lid) if graph is not None else frozenset()
                after = {apply_keys[d] for d in deps if d in apply_keys}
                steps[apply_keys[lid]] = PlanStep(lid, StepPhase.APPLY, entry.action, frozenset(after))

            if lid in destroy_keys:
                after = set()
                if lid in apply_keys:
                    after.add(apply_keys[lid])
                new_dependents = graph.dependents_of(lid) if graph is not None and lid in graph else ()
                for dependent in set(new_dependents) | old_dependents.get(lid, set()):
                    if dependent in apply_keys:
                        after.add(apply_keys[dependent])
                for dependent in old_dependents.get(lid, set()):
                    if dependent in destroy_keys:
                        after.add(destroy_keys[dependent])
                steps[destroy_keys[lid]] = PlanStep(
                    lid, StepPhase.DESTROY, entry.action, frozenset(after)
                )

        entry_index = {entry.logical_id: i for i, entry in enumerate(ordered)}
        priority = {
            key: (entry_index[step.logical_id], 0 if step.phase == StepPhase.APPLY else 1, key)
            for key, step in steps.items()
        }
        order = topological_sort(list(steps), {k: s.after for k, s in steps.items()}, priority)
        return [steps[key] for key in order]


def _old_dependents(records: Mapping[str, StateRecord]) -> dict[str, set[str]]:
    """logical id -> stored resources that depended on it when applied."""
    dependents: dict[str, set[str]] = {}
    for lid, record in records.items():
        for dep in record.dependencies:
            if dep in records:
                dependents.setdefault(dep, set()).add(lid)
    return dependents


def _planned_value(
    ref: Reference,
    graph: ResourceGraph,
    records: Mapping[str, StateRecord],
    entries: Mapping[str, ChangeSetEntry],
) -> Any:
    """
    Value a reference will have once its target's change is applied.

    Existing instances resolve through their record, the same lookup the
    executor makes. Computed outputs of a new instance or an in-place update
    are UNKNOWN; the provider id survives an update.
    """
    target = entries[ref.resource]
    head, _, rest = ref.attribute.partition(".")
    declared = head in graph[ref.resource].attributes
    record = target.before

    if target.action in _NEW_INSTANCE or record is None:
        if not declared or target.after is None:
            return UNKNOWN
        value = target.after[head]
    elif target.action == ChangeAction.UPDATE and head != ID_ATTRIBUTE and (
        not declared or head in target.changed
    ):
        if not declared:
            return UNKNOWN
        value = target.after[head]
    else:
        try:
            return record.value_of(ref.attribute)
        except (KeyError, IndexError, TypeError):
            return UNKNOWN

    for part in rest.split(".") if rest else ():
        if value is UNKNOWN:
            return UNKNOWN
        try:
            value = value[part]
        except (KeyError, IndexError, TypeError):
            return UNKNOWN
    return value
