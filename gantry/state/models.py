"""
Gantry State - Data models.

Pydantic models for the persisted state artifact.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StateRecord(BaseModel):
    """
    Last-applied state of one resource.

    Absent before the first apply, written on every successful create or
    update, removed on successful destroy.
    """

    logical_id: str = Field(description="Resource logical id, 'type.name'")
    resource_type: str = Field(description="Resource type name")
    provider_id: str = Field(description="Identifier assigned by the provider")
    attributes: dict[str, Any] = Field(
        default_factory=dict, description="Resolved input attributes last applied"
    )
    outputs: dict[str, Any] = Field(
        default_factory=dict, description="Attributes returned by the provider"
    )
    dependencies: list[str] = Field(
        default_factory=list, description="Logical ids this resource depended on when applied"
    )
    deposed: list[str] = Field(
        default_factory=list, description="Provider ids of replaced instances not yet destroyed"
    )
    applied_at: datetime = Field(default_factory=utcnow, description="Last apply timestamp")

    def value_of(self, attribute: str) -> Any:
        """Current value of an attribute, outputs first then inputs."""
        head, _, rest = attribute.partition(".")
        if head in self.outputs:
            value = self.outputs[head]
        elif head in self.attributes:
            value = self.attributes[head]
        elif head == "id":
            value = self.provider_id
        else:
            raise KeyError(attribute)
        for part in rest.split(".") if rest else ():
            value = value[part]
        return value


class StateDocument(BaseModel):
    """Versioned state artifact: logical id -> StateRecord."""

    key: str
    version: int = Field(default=0, ge=0, description="0 when never written")
    records: dict[str, StateRecord] = Field(default_factory=dict)
    updated_at: datetime | None = None

    def get(self, logical_id: str) -> StateRecord | None:
        return self.records.get(logical_id)

    def __contains__(self, logical_id: object) -> bool:
        return logical_id in self.records

    def __len__(self) -> int:
        return len(self.records)
