"""
End-to-end tests for plan/apply/destroy cycles.

Scenario: A (aws_vpc) and B (aws_subnet referencing A's id).
"""

from __future__ import annotations

from typing import Any

import pytest

from gantry.core.exceptions import AlreadyLocked, CycleError
from gantry.core.types import ChangeAction, NodeOutcome
from gantry.engine.engine import Engine
from gantry.graph.loader import DeclarationSet, parse_document
from gantry.providers.base import ResourceProvider, ResourceSchema
from gantry.providers.memory import MemoryProvider
from gantry.providers.registry import ProviderRegistry
from gantry.state.models import StateRecord
from gantry.state.store import MemoryStateStore

A = "aws_vpc.main"
B = "aws_subnet.public"


class TestScenarios:
    """Create, no-op, replace and failure."""

    @pytest.mark.asyncio
    async def test_create_then_noop(self, engine, network, store, cloud) -> None:
        """First apply creates A then B; re-planning is all no-op."""
        first = await engine.plan(network())
        assert first.actions() == [(ChangeAction.CREATE, A), (ChangeAction.CREATE, B)]

        report = await engine.apply(network())
        assert report.success
        assert report.outcomes() == {A: NodeOutcome.APPLIED, B: NodeOutcome.APPLIED}
        assert [call[:2] for call in cloud.calls] == [("create", "aws_vpc"), ("create", "aws_subnet")]

        second = await engine.plan(network())
        assert second.actions() == [(ChangeAction.NOOP, A), (ChangeAction.NOOP, B)]
        assert not second.has_changes

    @pytest.mark.asyncio
    async def test_reapply_makes_no_provider_calls(self, engine, network, cloud) -> None:
        await engine.apply(network())
        calls = len(cloud.calls)

        report = await engine.apply(network())

        assert set(report.outcomes().values()) == {NodeOutcome.NOOP}
        assert len(cloud.calls) == calls

    @pytest.mark.asyncio
    async def test_immutable_change_replaces_both(self, engine, network, store, cloud) -> None:
        """Changing A's cidr_block replaces A and, through its id, B."""
        await engine.apply(network())
        old = await store.read("default")
        old_a, old_b = old.records[A].provider_id, old.records[B].provider_id

        plan = await engine.plan(network(cidr_block="10.1.0.0/16"))
        assert plan.actions() == [(ChangeAction.REPLACE, A), (ChangeAction.REPLACE, B)]

        cloud.calls.clear()
        report = await engine.apply(network(cidr_block="10.1.0.0/16"))

        assert report.success
        assert report.outcomes() == {A: NodeOutcome.APPLIED, B: NodeOutcome.APPLIED}
        calls = [(op, pid) for op, _, pid in cloud.calls]
        # New instances first, then the old subnet, then the old VPC
        assert [op for op, _ in calls] == ["create", "create", "destroy", "destroy"]
        assert calls[2] == ("destroy", old_b)
        assert calls[3] == ("destroy", old_a)

        state = await store.read("default")
        assert state.records[A].attributes["cidr_block"] == "10.1.0.0/16"
        assert state.records[B].attributes["vpc_id"] == state.records[A].provider_id
        assert state.records[A].deposed == []
        assert set(cloud.objects) == {state.records[A].provider_id, state.records[B].provider_id}

        replan = await engine.plan(network(cidr_block="10.1.0.0/16"))
        assert not replan.has_changes

    @pytest.mark.asyncio
    async def test_failure_of_a_skips_b(self, engine, registry, network, store, cloud) -> None:
        """A fails: A failed, B skipped, no records."""
        registry.register(
            MemoryProvider(registry.schema("aws_vpc"), cloud=cloud,
                           fail_when=lambda operation, subject: True),
            replace=True,
        )

        report = await engine.apply(network())

        assert report.outcomes() == {A: NodeOutcome.FAILED, B: NodeOutcome.SKIPPED}
        assert not report.success
        assert (await store.read("default")).records == {}

    @pytest.mark.asyncio
    async def test_update_in_place(self, engine, network, store) -> None:
        """A mutable change keeps the provider id."""
        await engine.apply(network())
        before = (await store.read("default")).records[A].provider_id

        changed = parse_document({
            "resources": [
                {"type": "aws_vpc", "name": "main",
                 "attributes": {"cidr_block": "10.0.0.0/16", "tags": {"env": "prod"}}},
                {"type": "aws_subnet", "name": "public",
                 "attributes": {"vpc_id": "${aws_vpc.main.id}", "cidr_block": "10.0.1.0/24"}},
            ]
        })
        plan = await engine.plan(changed)
        assert plan.actions() == [(ChangeAction.UPDATE, A), (ChangeAction.NOOP, B)]

        report = await engine.apply(changed)

        assert report.outcome(A) == NodeOutcome.APPLIED
        record = (await store.read("default")).records[A]
        assert record.provider_id == before
        assert record.attributes["tags"] == {"env": "prod"}

    @pytest.mark.asyncio
    async def test_removed_declaration_is_destroyed(self, engine, network, store, cloud) -> None:
        await engine.apply(network())
        only_vpc = parse_document({
            "resources": [{"type": "aws_vpc", "name": "main",
                           "attributes": {"cidr_block": "10.0.0.0/16", "tags": {"env": "test"}}}]
        })

        report = await engine.apply(only_vpc)

        assert report.result(B).action == ChangeAction.DESTROY
        assert report.outcome(B) == NodeOutcome.APPLIED
        assert set((await store.read("default")).records) == {A}
        assert len(cloud.objects) == 1

    @pytest.mark.asyncio
    async def test_destroy_everything(self, engine, network, store, cloud) -> None:
        await engine.apply(network())

        report = await engine.destroy()

        assert report.success
        assert [r.logical_id for r in report.results] == [B, A]
        assert (await store.read("default")).records == {}
        assert cloud.objects == {}


class TestCycleGuards:
    """Build errors, locking and approval."""

    @pytest.mark.asyncio
    async def test_build_error_before_lock(self, engine, lock_manager) -> None:
        cyclic = parse_document({
            "resources": [
                {"type": "aws_vpc", "name": "a", "attributes": {"x": "${aws_vpc.b.id}"}},
                {"type": "aws_vpc", "name": "b", "attributes": {"x": "${aws_vpc.a.id}"}},
            ]
        })
        with pytest.raises(CycleError):
            await engine.apply(cyclic)
        assert await lock_manager.current("default") is None

    @pytest.mark.asyncio
    async def test_lock_released_after_apply(self, engine, network, lock_manager) -> None:
        await engine.apply(network())
        assert await lock_manager.current("default") is None

    @pytest.mark.asyncio
    async def test_contention_raises_already_locked(self, engine, network, lock_manager, cloud) -> None:
        """Another live holder makes the apply fail without provider calls."""
        await lock_manager.acquire("default", "someone-else", ttl=60)

        with pytest.raises(AlreadyLocked) as exc_info:
            await engine.apply(network())
        assert exc_info.value.holder_id == "someone-else"
        assert cloud.calls == []

    @pytest.mark.asyncio
    async def test_acquire_retries_with_backoff(self, engine, network, lock_manager, config) -> None:
        """With more attempts the engine waits for the holder to finish."""
        config.lock.acquire_attempts = 5
        held = await lock_manager.acquire("default", "someone-else", ttl=60)

        attempts = []
        original_acquire = lock_manager.acquire

        async def acquire(key, holder_id, ttl):
            attempts.append(holder_id)
            if len(attempts) == 2:
                await lock_manager.release(held)
            return await original_acquire(key, holder_id, ttl)

        lock_manager.acquire = acquire
        report = await engine.apply(network())

        assert report.success
        assert attempts == ["tester", "tester"]

    @pytest.mark.asyncio
    async def test_plan_without_lock(self, engine, network, lock_manager) -> None:
        await lock_manager.acquire("default", "someone-else", ttl=60)

        plan = await engine.plan(network(), lock=False)
        assert len(plan.entries) == 2

        with pytest.raises(AlreadyLocked):
            await engine.plan(network())

    @pytest.mark.asyncio
    async def test_declined_approval(self, engine, network, store, cloud) -> None:
        seen = []

        def approve(plan):
            seen.append(plan)
            return False

        assert await engine.apply(network(), approve=approve) is None
        assert len(seen) == 1
        assert cloud.calls == []
        assert (await store.read("default")).version == 0

    @pytest.mark.asyncio
    async def test_async_approval(self, engine, network) -> None:
        async def approve(plan):
            return True

        report = await engine.apply(network(), approve=approve)
        assert report.success

    @pytest.mark.asyncio
    async def test_state_keys_are_separate(self, engine, network, store) -> None:
        await engine.apply(network(), state_key="staging")

        assert (await store.read("default")).version == 0
        assert len(await store.read("staging")) == 2


class TestReplanning:
    """VersionConflict handling."""

    @pytest.mark.asyncio
    async def test_replans_when_state_keeps_moving(self, registry, lock_manager, config, network) -> None:
        """Exhausted commit retries re-read and re-plan the whole cycle."""

        class MovingStore(MemoryStateStore):
            conflicts_left = 3

            async def write(self, key, records, expected_version):
                if self.conflicts_left:
                    self.conflicts_left -= 1
                    current = await self.read(key)
                    await super().write(key, current.records, current.version)
                return await super().write(key, records, expected_version)

        store = MovingStore()
        engine = Engine(registry, store, lock_manager, config=config, holder_id="tester")

        report = await engine.apply(network())

        assert report.success
        assert len(await store.read("default")) == 2

    @pytest.mark.asyncio
    async def test_replan_with_same_changes_keeps_approval(
        self, registry, lock_manager, config, network
    ) -> None:
        class MovingStore(MemoryStateStore):
            conflicts_left = 3

            async def write(self, key, records, expected_version):
                if self.conflicts_left:
                    self.conflicts_left -= 1
                    current = await self.read(key)
                    await super().write(key, current.records, current.version)
                return await super().write(key, records, expected_version)

        engine = Engine(registry, MovingStore(), lock_manager, config=config, holder_id="tester")
        seen = []

        def approve(plan):
            seen.append(plan)
            return True

        report = await engine.apply(network(), approve=approve)

        assert report.success
        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_replan_with_new_changes_asks_again(
        self, registry, lock_manager, config, network, cloud
    ) -> None:
        """A resource written by someone else mid-apply needs a fresh approval."""
        stray = "aws_vpc.stray"

        class StrayStore(MemoryStateStore):
            conflicts_left = 3

            async def write(self, key, records, expected_version):
                if self.conflicts_left:
                    self.conflicts_left -= 1
                    current = await self.read(key)
                    moved = dict(current.records)
                    moved[stray] = StateRecord(
                        logical_id=stray, resource_type="aws_vpc", provider_id="vpc-stray"
                    )
                    await super().write(key, moved, current.version)
                return await super().write(key, records, expected_version)

        store = StrayStore()
        engine = Engine(registry, store, lock_manager, config=config, holder_id="tester")
        seen = []

        def approve(plan):
            seen.append(plan)
            return len(seen) == 1

        assert await engine.apply(network(), approve=approve) is None

        assert len(seen) == 2
        assert (ChangeAction.DESTROY, stray) not in seen[0].actions()
        assert (ChangeAction.DESTROY, stray) in seen[1].actions()
        assert stray in (await store.read("default")).records
        assert ("destroy", "aws_vpc", "vpc-stray") not in cloud.calls

    @pytest.mark.asyncio
    async def test_from_config_uses_memory_backends(self, config, registry) -> None:
        engine = Engine.from_config(config, registry)
        assert isinstance(engine.store, MemoryStateStore)
        assert engine.holder_id
        await engine.close()


class ZoneProvider(ResourceProvider):
    """Lower-cases the zone name and bumps a serial on every write."""

    schema = ResourceSchema("dns_zone", force_new=frozenset({"name"}), computed=frozenset({"serial"}))

    def __init__(self) -> None:
        super().__init__()
        self.serials: dict[str, int] = {}

    async def create(self, attributes: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        provider_id = f"zone-{len(self.serials) + 1}"
        self.serials[provider_id] = 1
        return provider_id, {"name": attributes["name"].lower(), "serial": 1}

    async def update(self, provider_id: str, attributes: dict[str, Any]) -> dict[str, Any]:
        self.serials[provider_id] += 1
        return {"name": attributes["name"].lower(), "serial": self.serials[provider_id]}

    async def destroy(self, provider_id: str) -> None:
        del self.serials[provider_id]


class RecordProvider(ResourceProvider):
    """Echoes its inputs."""

    schema = ResourceSchema("dns_record")

    def __init__(self) -> None:
        super().__init__()
        self.writes: list[dict[str, Any]] = []

    async def create(self, attributes: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        self.writes.append(attributes)
        return f"record-{len(self.writes)}", {}

    async def update(self, provider_id: str, attributes: dict[str, Any]) -> dict[str, Any]:
        self.writes.append(attributes)
        return {}

    async def destroy(self, provider_id: str) -> None:
        pass


def zone_document(record_attributes: dict[str, Any], ttl: int = 300) -> DeclarationSet:
    return parse_document({
        "resources": [
            {"type": "dns_zone", "name": "main", "attributes": {"name": "Example.COM", "ttl": ttl}},
            {"type": "dns_record", "name": "www", "attributes": record_attributes},
        ]
    })


class TestProviderOutputs:
    """Dependents see the values providers report, not only the declared ones."""

    @pytest.fixture
    def records(self) -> RecordProvider:
        return RecordProvider()

    @pytest.fixture
    def dns_engine(self, records: RecordProvider, store, lock_manager, config) -> Engine:
        registry = ProviderRegistry([ZoneProvider(), records])
        return Engine(registry, store, lock_manager, config=config, holder_id="tester")

    @pytest.mark.asyncio
    async def test_normalised_output_settles(self, dns_engine: Engine, records: RecordProvider) -> None:
        """A dependent of a lower-cased name is a no-op after apply."""
        declarations = zone_document({"zone": "${dns_zone.main.name}"})

        report = await dns_engine.apply(declarations)
        assert report.success
        assert records.writes == [{"zone": "example.com"}]

        plan = await dns_engine.plan(declarations)
        assert plan.actions() == [
            (ChangeAction.NOOP, "dns_zone.main"),
            (ChangeAction.NOOP, "dns_record.www"),
        ]

    @pytest.mark.asyncio
    async def test_computed_output_changed_by_update(
        self, dns_engine: Engine, records: RecordProvider
    ) -> None:
        """An update that moves a computed output re-applies its dependents."""
        record = {"serial": "${dns_zone.main.serial}"}
        await dns_engine.apply(zone_document(record, ttl=300))

        plan = await dns_engine.plan(zone_document(record, ttl=600))
        assert plan.actions() == [
            (ChangeAction.UPDATE, "dns_zone.main"),
            (ChangeAction.UPDATE, "dns_record.www"),
        ]

        report = await dns_engine.apply(zone_document(record, ttl=600))
        assert report.success
        assert records.writes == [{"serial": 1}, {"serial": 2}]

        settled = await dns_engine.plan(zone_document(record, ttl=600))
        assert not settled.has_changes
