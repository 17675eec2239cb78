"""
Memory Provider - In-process provider for any resource type.

Keeps "provisioned" objects in a dict shared across providers of one
MemoryCloud. Used for dry runs, local experiments and tests; supports
simulated latency and failure injection.
"""

from __future__ import annotations

import asyncio
import itertools
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from gantry.providers.base import ID_ATTRIBUTE, ResourceProvider, ResourceSchema


@dataclass
class MemoryCloud:
    """Backing store shared by MemoryProvider instances."""

    objects: dict[str, dict[str, Any]] = field(default_factory=dict)
    calls: list[tuple[str, str, str]] = field(default_factory=list)  # (op, type, id or "")
    _counter: itertools.count = field(default_factory=lambda: itertools.count(1))

    def next_id(self, resource_type: str) -> str:
        return f"{resource_type}-{next(self._counter):04d}"


# (operation, attributes or provider id) -> raise?
FailurePredicate = Callable[[str, Any], bool]


class MemoryProvider(ResourceProvider):
    """Provider keeping objects in a MemoryCloud."""

    def __init__(
        self,
        schema: ResourceSchema,
        cloud: MemoryCloud | None = None,
        latency: float = 0.0,
        fail_when: FailurePredicate | None = None,
    ) -> None:
        self.schema = schema
        super().__init__()
        self.cloud = cloud if cloud is not None else MemoryCloud()
        self.latency = latency
        self.fail_when = fail_when

    async def _simulate(self, operation: str, subject: Any) -> None:
        if self.latency:
            await asyncio.sleep(self.latency)
        if self.fail_when is not None and self.fail_when(operation, subject):
            raise RuntimeError(f"simulated {operation} failure for {self.resource_type}")

    def _outputs(self, provider_id: str, attributes: dict[str, Any]) -> dict[str, Any]:
        outputs = dict(attributes)
        for name in sorted(self.schema.computed):
            outputs[name] = provider_id if name == ID_ATTRIBUTE else f"{name}-{provider_id}"
        return outputs

    async def create(self, attributes: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        await self._simulate("create", attributes)
        provider_id = self.cloud.next_id(self.resource_type)
        outputs = self._outputs(provider_id, attributes)
        self.cloud.objects[provider_id] = outputs
        self.cloud.calls.append(("create", self.resource_type, provider_id))
        logger.debug(f"memory: created {provider_id}")
        return provider_id, outputs

    async def update(self, provider_id: str, attributes: dict[str, Any]) -> dict[str, Any]:
        await self._simulate("update", provider_id)
        if provider_id not in self.cloud.objects:
            raise KeyError(f"{provider_id} does not exist")
        outputs = self._outputs(provider_id, attributes)
        self.cloud.objects[provider_id] = outputs
        self.cloud.calls.append(("update", self.resource_type, provider_id))
        return outputs

    async def destroy(self, provider_id: str) -> None:
        await self._simulate("destroy", provider_id)
        if self.cloud.objects.pop(provider_id, None) is None:
            raise KeyError(f"{provider_id} does not exist")
        self.cloud.calls.append(("destroy", self.resource_type, provider_id))


def memory_providers(
    schemas: Iterable[ResourceSchema],
    cloud: MemoryCloud | None = None,
    latency: float = 0.0,
) -> list[MemoryProvider]:
    """Build one MemoryProvider per schema sharing a single cloud."""
    cloud = cloud if cloud is not None else MemoryCloud()
    return [MemoryProvider(schema, cloud=cloud, latency=latency) for schema in schemas]
