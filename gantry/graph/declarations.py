"""
Gantry Graph - Declarations.

Parsed resource declarations and the symbolic references between them.
Declarations are immutable once parsed.
"""

from __future__ import annotations

import copy
import re
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

# "${aws_vpc.main.id}" or "${var.cluster_name}"
REFERENCE_PATTERN = re.compile(r"^\$\{\s*([A-Za-z0-9_\-.]+)\s*\}$")
VARIABLE_PREFIX = "var."


@dataclass(frozen=True)
class Reference:
    """Symbolic reference to an attribute of another resource."""

    resource: str  # logical id, "type.name"
    attribute: str

    def __str__(self) -> str:
        return f"${{{self.resource}.{self.attribute}}}"


@dataclass(frozen=True)
class VariableReference:
    """Symbolic reference to a named input variable."""

    name: str

    def __str__(self) -> str:
        return f"${{{VARIABLE_PREFIX}{self.name}}}"


@dataclass(frozen=True)
class Variable:
    """Named input variable with an optional default."""

    name: str
    default: Any = None
    description: str = ""
    required: bool = False  # True when no default was declared


def logical_id(resource_type: str, name: str) -> str:
    """Build the logical id of a resource."""
    return f"{resource_type}.{name}"


@dataclass(frozen=True)
class ResourceDeclaration:
    """
    A single declared resource.

    Attributes map names to literals, References or VariableReferences
    (possibly nested in lists and dicts). depends_on holds explicit ordering
    hints as logical ids.
    """

    type: str
    name: str
    attributes: Mapping[str, Any] = field(default_factory=dict)
    depends_on: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not self.type or "." in self.type:
            raise ValueError(f"Invalid resource type: {self.type!r}")
        if not self.name or "." in self.name:
            raise ValueError(f"Invalid resource name: {self.name!r}")
        object.__setattr__(self, "attributes", MappingProxyType(copy.deepcopy(dict(self.attributes))))
        object.__setattr__(self, "depends_on", tuple(self.depends_on))

    @property
    def logical_id(self) -> str:
        return logical_id(self.type, self.name)

    def references(self) -> list[Reference]:
        """All resource references found in the attributes, in order."""
        return [ref for ref in iter_references(dict(self.attributes)) if isinstance(ref, Reference)]


def parse_reference(text: str) -> Reference | VariableReference | None:
    """
    Parse a "${...}" reference string.

    Returns None when the string is not a whole-value reference.
    """
    match = REFERENCE_PATTERN.match(text.strip())
    if not match:
        return None
    path = match.group(1)
    if path.startswith(VARIABLE_PREFIX):
        name = path[len(VARIABLE_PREFIX):]
        return VariableReference(name) if name else None
    parts = path.split(".")
    if len(parts) < 3 or not all(parts):
        return None
    return Reference(resource=f"{parts[0]}.{parts[1]}", attribute=".".join(parts[2:]))


def iter_references(value: Any) -> Iterator[Reference | VariableReference]:
    """Walk a (nested) attribute value and yield every reference in it."""
    if isinstance(value, (Reference, VariableReference)):
        yield value
    elif isinstance(value, Mapping):
        for item in value.values():
            yield from iter_references(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from iter_references(item)


def substitute(value: Any, resolve: Callable[[Reference | VariableReference], Any]) -> Any:
    """Return a copy of value with every reference replaced by resolve(ref)."""
    if isinstance(value, (Reference, VariableReference)):
        return resolve(value)
    if isinstance(value, Mapping):
        return {k: substitute(v, resolve) for k, v in value.items()}
    if isinstance(value, tuple):
        return tuple(substitute(v, resolve) for v in value)
    if isinstance(value, list):
        return [substitute(v, resolve) for v in value]
    return value
