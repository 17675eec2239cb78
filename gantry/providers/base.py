"""
Base Provider - Capability interface implemented per resource type.

The engine never branches on resource types: every type-specific behaviour
(what gets created, which attributes force a replacement, which attributes the
cloud API computes) lives behind this interface.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

ID_ATTRIBUTE = "id"


@dataclass(frozen=True)
class ResourceSchema:
    """
    Provider-declared shape of a resource type.

    Attributes:
        type: Resource type name (e.g. "aws_vpc")
        force_new: Attributes that cannot change in place; a change replaces
            the resource
        computed: Attributes assigned by the provider on create ("id" is always
            computed)
    """

    type: str
    force_new: frozenset[str] = field(default_factory=frozenset)
    computed: frozenset[str] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        object.__setattr__(self, "force_new", frozenset(self.force_new))
        object.__setattr__(self, "computed", frozenset(self.computed) | {ID_ATTRIBUTE})

    def requires_replace(self, attribute: str) -> bool:
        return attribute in self.force_new


class ResourceProvider(ABC):
    """
    Abstract base class for resource providers.

    Subclasses must define `schema` and implement the three lifecycle calls.
    Any exception raised by a call is reported as a ProviderError for the node.
    """

    schema: ResourceSchema

    def __init__(self) -> None:
        if not isinstance(getattr(self, "schema", None), ResourceSchema):
            raise TypeError(
                f"{self.__class__.__name__} must define a 'schema' ResourceSchema attribute"
            )

    @property
    def resource_type(self) -> str:
        return self.schema.type

    @abstractmethod
    async def create(self, attributes: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        """Create the resource; return (provider id, output attributes)."""

    @abstractmethod
    async def update(self, provider_id: str, attributes: dict[str, Any]) -> dict[str, Any]:
        """Update the resource in place; return output attributes."""

    @abstractmethod
    async def destroy(self, provider_id: str) -> None:
        """Destroy the resource."""
