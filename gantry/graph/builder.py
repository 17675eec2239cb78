"""
Resource Graph Builder.

Turns a flat sequence of declarations into a ResourceGraph:
- substitutes input variables
- resolves resource references into dependency edges
- rejects unknown targets and dependency cycles

Pure transformation: no I/O, no provider calls.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from loguru import logger

from gantry.core.exceptions import (
    CycleError,
    DuplicateResourceError,
    UnresolvedReferenceError,
)
from gantry.graph.declarations import (
    Reference,
    ResourceDeclaration,
    Variable,
    VariableReference,
    iter_references,
    substitute,
)
from gantry.graph.models import ResourceGraph, ResourceNode
from gantry.providers.base import ID_ATTRIBUTE
from gantry.providers.registry import ProviderRegistry

# DFS colours
_WHITE, _GREY, _BLACK = 0, 1, 2


class GraphBuilder:
    """
    Build dependency graphs from declarations.

    With a registry, references may target computed attributes declared in the
    target type's schema, and unknown resource types are rejected. Without
    one, only declared attributes and "id" can be referenced.
    """

    def __init__(self, registry: ProviderRegistry | None = None) -> None:
        self.registry = registry

    def build(
        self,
        declarations: Iterable[ResourceDeclaration],
        variables: Iterable[Variable] | None = None,
        values: Mapping[str, Any] | None = None,
    ) -> ResourceGraph:
        """
        Build the graph.

        Args:
            declarations: Resource declarations, in declaration order
            variables: Declared input variables
            values: Supplied variable values, overriding defaults

        Raises:
            DuplicateResourceError: Two declarations share a logical id
            UnresolvedReferenceError: A reference names a missing resource,
                attribute or variable
            UnknownResourceTypeError: No provider for a declared type
                (only with a registry)
            CycleError: The references form a cycle
        """
        declared: dict[str, ResourceDeclaration] = {}
        for decl in declarations:
            if decl.logical_id in declared:
                raise DuplicateResourceError(decl.logical_id)
            if self.registry is not None:
                self.registry.get(decl.type)
            declared[decl.logical_id] = decl

        variable_values = self._variable_values(variables or (), values or {})

        nodes: list[ResourceNode] = []
        for decl in declared.values():
            attributes = self._substitute_variables(decl, variable_values)
            refs = [ref for ref in iter_references(attributes) if isinstance(ref, Reference)]
            for ref in refs:
                self._check_reference(decl.logical_id, ref, declared)

            dependencies = {ref.resource for ref in refs}
            for hint in decl.depends_on:
                if hint not in declared:
                    raise UnresolvedReferenceError(
                        decl.logical_id, hint, "depends_on names an undeclared resource"
                    )
                dependencies.add(hint)

            nodes.append(
                ResourceNode(
                    declaration=decl,
                    attributes=attributes,
                    dependencies=frozenset(dependencies),
                    references=tuple(refs),
                )
            )

        self._check_acyclic(nodes)
        graph = ResourceGraph(nodes)
        logger.debug(f"Built resource graph: {len(graph)} nodes, order={graph.order}")
        return graph

    def _variable_values(
        self, variables: Iterable[Variable], values: Mapping[str, Any]
    ) -> dict[str, Any]:
        declared = {var.name: var for var in variables}
        for name in values:
            if name not in declared:
                logger.warning(f"Value supplied for undeclared variable '{name}' is ignored")

        resolved: dict[str, Any] = {}
        for name, var in declared.items():
            if name in values:
                resolved[name] = values[name]
            elif not var.required:
                resolved[name] = var.default
        return resolved

    def _substitute_variables(
        self, decl: ResourceDeclaration, variable_values: Mapping[str, Any]
    ) -> dict[str, Any]:
        def resolve(ref: Reference | VariableReference) -> Any:
            if isinstance(ref, Reference):
                return ref
            if ref.name not in variable_values:
                raise UnresolvedReferenceError(
                    decl.logical_id, str(ref), "variable is undeclared or has no value"
                )
            return variable_values[ref.name]

        return substitute(dict(decl.attributes), resolve)

    def _check_reference(
        self, source: str, ref: Reference, declared: Mapping[str, ResourceDeclaration]
    ) -> None:
        target = declared.get(ref.resource)
        if target is None:
            raise UnresolvedReferenceError(source, str(ref), "no such resource")

        attribute = ref.attribute.split(".")[0]
        if attribute == ID_ATTRIBUTE or attribute in target.attributes:
            return
        if self.registry is not None and attribute in self.registry.schema(target.type).computed:
            return
        raise UnresolvedReferenceError(
            source, str(ref), f"'{ref.resource}' has no attribute '{attribute}'"
        )

    def _check_acyclic(self, nodes: list[ResourceNode]) -> None:
        """Depth-first traversal with a recursion-stack marker."""
        edges = {node.logical_id: sorted(node.dependencies) for node in nodes}
        colour = dict.fromkeys(edges, _WHITE)

        for root in edges:
            if colour[root] != _WHITE:
                continue
            colour[root] = _GREY
            path = [root]
            stack = [iter(edges[root])]
            while stack:
                child = next(stack[-1], None)
                if child is None:
                    colour[path.pop()] = _BLACK
                    stack.pop()
                    continue
                if colour[child] == _GREY:
                    cycle = path[path.index(child):] + [child]
                    raise CycleError(cycle)
                if colour[child] == _WHITE:
                    colour[child] = _GREY
                    path.append(child)
                    stack.append(iter(edges[child]))
