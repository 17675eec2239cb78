"""
Gantry Graph - Resource graph.

ResourceNode wraps a declaration with resolved dependency edges;
ResourceGraph is the acyclic whole, built once by GraphBuilder.
"""

from __future__ import annotations

import heapq
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from typing import Any

from gantry.graph.declarations import Reference, ResourceDeclaration


@dataclass(frozen=True)
class ResourceNode:
    """Declaration with variables substituted and dependencies resolved."""

    declaration: ResourceDeclaration
    attributes: Mapping[str, Any]  # may still contain References
    dependencies: frozenset[str]
    references: tuple[Reference, ...] = ()

    @property
    def logical_id(self) -> str:
        return self.declaration.logical_id

    @property
    def type(self) -> str:
        return self.declaration.type

    @property
    def name(self) -> str:
        return self.declaration.name


class ResourceGraph:
    """
    Directed acyclic dependency graph.

    Edges point from a dependent to its dependencies. `order` lists logical
    ids with every dependency before its dependents, ties broken by
    declaration order.
    """

    def __init__(self, nodes: Iterable[ResourceNode]) -> None:
        self._nodes: dict[str, ResourceNode] = {node.logical_id: node for node in nodes}
        self._dependents: dict[str, set[str]] = {lid: set() for lid in self._nodes}
        for node in self._nodes.values():
            for dep in node.dependencies:
                self._dependents[dep].add(node.logical_id)
        self._order = topological_sort(
            list(self._nodes), {lid: n.dependencies for lid, n in self._nodes.items()}
        )
        self._position = {lid: i for i, lid in enumerate(self._order)}

    def __contains__(self, logical_id: object) -> bool:
        return logical_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[ResourceNode]:
        """Iterate nodes in topological order."""
        return (self._nodes[lid] for lid in self._order)

    def __getitem__(self, logical_id: str) -> ResourceNode:
        return self._nodes[logical_id]

    @property
    def order(self) -> list[str]:
        return list(self._order)

    def position(self, logical_id: str) -> int:
        return self._position[logical_id]

    def dependencies_of(self, logical_id: str) -> frozenset[str]:
        return self._nodes[logical_id].dependencies

    def dependents_of(self, logical_id: str) -> frozenset[str]:
        return frozenset(self._dependents[logical_id])

    def ancestors_of(self, logical_id: str) -> set[str]:
        """Transitive dependencies."""
        return _closure(logical_id, lambda lid: self._nodes[lid].dependencies)

    def descendants_of(self, logical_id: str) -> set[str]:
        """Transitive dependents."""
        return _closure(logical_id, lambda lid: self._dependents[lid])


def _closure(start: str, neighbours) -> set[str]:
    seen: set[str] = set()
    stack = list(neighbours(start))
    while stack:
        current = stack.pop()
        if current in seen:
            continue
        seen.add(current)
        stack.extend(neighbours(current))
    return seen


def topological_sort(
    keys: list[str],
    predecessors: Mapping[str, Iterable[str]],
    priority: Mapping[str, Any] | None = None,
) -> list[str]:
    """
    Kahn's algorithm: every predecessor before its successors.

    Ready keys are taken lowest priority first (default: position in keys).
    Predecessors outside keys are ignored. Raises ValueError on a cycle.
    """
    if priority is None:
        priority = {key: i for i, key in enumerate(keys)}
    key_set = set(keys)
    remaining = {key: {p for p in predecessors.get(key, ()) if p in key_set} for key in keys}
    successors: dict[str, list[str]] = {key: [] for key in keys}
    for key, preds in remaining.items():
        for pred in preds:
            successors[pred].append(key)

    ready = [(priority[key], key) for key, preds in remaining.items() if not preds]
    heapq.heapify(ready)
    order: list[str] = []
    while ready:
        _, key = heapq.heappop(ready)
        order.append(key)
        for succ in successors[key]:
            remaining[succ].discard(key)
            if not remaining[succ]:
                heapq.heappush(ready, (priority[succ], succ))

    if len(order) != len(keys):
        stuck = sorted(key for key in keys if key not in set(order))
        raise ValueError(f"cycle among: {', '.join(stuck)}")
    return order
