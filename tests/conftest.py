"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import tempfile
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING, Any

import pytest

from gantry.config.loader import Config
from gantry.config.models import ApplyConfig, LockConfig, StateConfig
from gantry.engine.engine import Engine
from gantry.graph.loader import DeclarationSet, parse_document
from gantry.locking.memory import MemoryLockManager
from gantry.providers.base import ResourceSchema
from gantry.providers.memory import MemoryCloud, memory_providers
from gantry.providers.registry import ProviderRegistry
from gantry.state.store import MemoryStateStore
from gantry.utils.log_config import reset_log_config

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Iterator

VPC_SCHEMA = ResourceSchema("aws_vpc", force_new=frozenset({"cidr_block"}), computed=frozenset({"arn"}))
SUBNET_SCHEMA = ResourceSchema("aws_subnet", force_new=frozenset({"vpc_id", "cidr_block"}))
INSTANCE_SCHEMA = ResourceSchema("aws_instance", force_new=frozenset({"subnet_id"}))

SCHEMAS = (VPC_SCHEMA, SUBNET_SCHEMA, INSTANCE_SCHEMA)


class FakeClock:
    """Manually advanced clock for lock expiry tests."""

    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def isolated_logs(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Keep log files and log config out of the user's home."""
    monkeypatch.setenv("GANTRY_LOG_DIR", str(tmp_path / "logs"))
    for var in ("GANTRY_STATE_BACKEND", "GANTRY_STATE_PATH", "GANTRY_STATE_KEY", "GANTRY_CONCURRENCY"):
        monkeypatch.delenv(var, raising=False)
    reset_log_config()
    yield
    reset_log_config()


@pytest.fixture
async def temp_db_path() -> AsyncGenerator[Path, None]:
    """Create a temporary database path."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir) / "state.db"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cloud() -> MemoryCloud:
    return MemoryCloud()


@pytest.fixture
def registry(cloud: MemoryCloud) -> ProviderRegistry:
    return ProviderRegistry(memory_providers(SCHEMAS, cloud=cloud))


@pytest.fixture
def store() -> MemoryStateStore:
    return MemoryStateStore()


@pytest.fixture
def lock_manager() -> MemoryLockManager:
    return MemoryLockManager()


@pytest.fixture
def config() -> Config:
    return Config(
        state=StateConfig(backend="memory", key="default"),
        lock=LockConfig(ttl=30, renew_interval=10, backoff_initial=0.01, backoff_max=0.05),
        apply=ApplyConfig(concurrency=4, retry_delay=0),
    )


@pytest.fixture
def engine(
    registry: ProviderRegistry,
    store: MemoryStateStore,
    lock_manager: MemoryLockManager,
    config: Config,
) -> Engine:
    return Engine(registry, store, lock_manager, config=config, holder_id="tester")


def network_document(cidr_block: str = "10.0.0.0/16", subnet_cidr: str = "10.0.1.0/24") -> dict[str, Any]:
    """A VPC (A) and a subnet (B) referencing its id."""
    return {
        "resources": [
            {
                "type": "aws_vpc",
                "name": "main",
                "attributes": {"cidr_block": cidr_block, "tags": {"env": "test"}},
            },
            {
                "type": "aws_subnet",
                "name": "public",
                "attributes": {"vpc_id": "${aws_vpc.main.id}", "cidr_block": subnet_cidr},
            },
        ]
    }


@pytest.fixture
def network() -> Callable[..., DeclarationSet]:
    """Factory for the VPC + subnet declaration set."""

    def build(**kwargs: Any) -> DeclarationSet:
        return parse_document(network_document(**kwargs))

    return build
