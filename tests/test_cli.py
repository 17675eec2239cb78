"""
Tests for the gantry CLI.

Commands run through click's CliRunner against a SQLite state file in a
temporary directory and in-memory providers injected through ctx.obj.
"""

from __future__ import annotations

import asyncio

import pytest
import yaml
from click.testing import CliRunner
from loguru import logger
from rich.console import Console

from gantry.cli import cli
from gantry.locking.sqlite import SQLiteLockManager
from gantry.providers.memory import MemoryProvider
from gantry.ui.console import GANTRY_THEME, ConsoleUI

RESOURCES = {
    "resources": [
        {"type": "aws_vpc", "name": "main", "attributes": {"cidr_block": "10.0.0.0/16", "tags": {"env": "test"}}},
        {"type": "aws_subnet", "name": "public",
         "attributes": {"vpc_id": "${aws_vpc.main.id}", "cidr_block": "10.0.1.0/24"}},
    ]
}


@pytest.fixture(autouse=True)
def wide_console(monkeypatch):
    """Render without wrapping so assertions can match whole lines."""
    monkeypatch.setattr("gantry.cli.ui", ConsoleUI(console=Console(theme=GANTRY_THEME, width=200)))
    yield
    logger.remove()


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    """Project directory with gantry.yaml and resources.yaml."""
    monkeypatch.chdir(tmp_path)
    config = {
        "state": {"backend": "sqlite", "path": str(tmp_path / "state.db")},
        "lock": {"ttl": 30, "renew_interval": 10},
        "apply": {"retry_delay": 0},
    }
    (tmp_path / "gantry.yaml").write_text(yaml.safe_dump(config))
    (tmp_path / "resources.yaml").write_text(yaml.safe_dump(RESOURCES))
    return tmp_path


@pytest.fixture
def run(registry, workdir):
    """Invoke the CLI with the shared in-memory providers."""
    runner = CliRunner()

    def invoke(*args: str, input: str | None = None):
        return runner.invoke(cli, list(args), obj={"registry": registry}, input=input)

    return invoke


class TestPlan:
    """plan command."""

    def test_plan_shows_creates(self, run, cloud) -> None:
        result = run("plan")

        assert result.exit_code == 0, result.output
        assert "aws_vpc.main" in result.output
        assert "aws_subnet.public" in result.output
        assert "Plan: 2 to create, 0 to update, 0 to replace, 0 to destroy." in result.output
        assert cloud.calls == []

    def test_plan_without_lock(self, run, workdir) -> None:
        asyncio.run(SQLiteLockManager(workdir / "state.db").acquire("default", "ci-runner", ttl=60))

        assert run("plan").exit_code == 2
        assert run("plan", "--no-lock").exit_code == 0

    def test_cycle_is_an_error(self, run, workdir) -> None:
        (workdir / "cyclic.yaml").write_text(yaml.safe_dump({
            "resources": [
                {"type": "aws_vpc", "name": "a", "attributes": {"x": "${aws_vpc.b.id}"}},
                {"type": "aws_vpc", "name": "b", "attributes": {"x": "${aws_vpc.a.id}"}},
            ]
        }))

        result = run("plan", "cyclic.yaml")

        assert result.exit_code == 1
        assert "cycle" in result.output.lower()

    def test_missing_declarations_file(self, run) -> None:
        result = run("plan", "nowhere.yaml")
        assert result.exit_code == 1
        assert "Cannot read declarations" in result.output

    def test_variables(self, run, workdir) -> None:
        (workdir / "vars.yaml").write_text(yaml.safe_dump({
            "variables": {"cidr": {}},
            "resources": [{"type": "aws_vpc", "name": "main", "attributes": {"cidr_block": "${var.cidr}"}}],
        }))

        assert run("plan", "vars.yaml").exit_code == 1

        result = run("plan", "vars.yaml", "--var", "cidr=10.9.0.0/16")
        assert result.exit_code == 0, result.output
        assert "10.9.0.0/16" in result.output

    def test_malformed_var(self, run) -> None:
        result = run("plan", "--var", "novalue")
        assert result.exit_code == 2
        assert "NAME=VALUE" in result.output


class TestApply:
    """apply and destroy commands."""

    def test_apply_then_no_changes(self, run, cloud) -> None:
        result = run("apply", "resources.yaml", "--auto-approve")

        assert result.exit_code == 0, result.output
        assert "Apply complete" in result.output
        assert len(cloud.objects) == 2

        result = run("apply", "resources.yaml", "-y")
        assert result.exit_code == 0
        assert "No changes" in result.output

        result = run("plan")
        assert "no changes" in result.output

    def test_declined_apply(self, run, cloud) -> None:
        result = run("apply", "resources.yaml", input="n\n")

        assert result.exit_code == 0
        assert "Do you want to apply these changes?" in result.output
        assert "cancelled, nothing was changed" in result.output
        assert cloud.calls == []

    def test_confirmed_apply(self, run, cloud) -> None:
        result = run("apply", "resources.yaml", input="y\n")
        assert result.exit_code == 0, result.output
        assert len(cloud.objects) == 2

    def test_provider_failure_exits_one(self, run, registry, cloud) -> None:
        registry.register(
            MemoryProvider(registry.schema("aws_vpc"), cloud=cloud,
                           fail_when=lambda operation, subject: operation == "create"),
            replace=True,
        )

        result = run("apply", "resources.yaml", "-y")

        assert result.exit_code == 1
        assert "simulated create failure" in result.output
        assert "skipped" in result.output

    def test_locked_state_exits_two(self, run, workdir, cloud) -> None:
        asyncio.run(SQLiteLockManager(workdir / "state.db").acquire("default", "ci-runner", ttl=60))

        result = run("apply", "resources.yaml", "-y")

        assert result.exit_code == 2
        assert "locked by 'ci-runner'" in result.output
        assert cloud.calls == []

    def test_destroy(self, run, cloud) -> None:
        run("apply", "resources.yaml", "-y")

        result = run("destroy", "--auto-approve")

        assert result.exit_code == 0, result.output
        assert cloud.objects == {}
        assert "is empty" in run("state", "list").output

    def test_state_key_option(self, run) -> None:
        run("--state-key", "staging", "apply", "resources.yaml", "-y")

        assert "is empty" in run("state", "list").output
        result = run("-k", "staging", "state", "list")
        assert "aws_vpc.main" in result.output


class TestStateAndLock:
    """state and lock commands."""

    def test_state_show(self, run) -> None:
        run("apply", "resources.yaml", "-y")

        result = run("state", "list")
        assert result.exit_code == 0
        assert "State artifacts: default" in result.output
        assert "aws_subnet.public" in result.output

        result = run("state", "show", "aws_subnet.public")
        assert result.exit_code == 0
        assert "depends on" in result.output
        assert "aws_vpc.main" in result.output

    def test_state_show_unknown(self, run) -> None:
        result = run("state", "show", "aws_vpc.ghost")
        assert result.exit_code == 1
        assert "not in state" in result.output

    def test_lock_show_and_force_unlock(self, run, workdir) -> None:
        assert "is not locked" in run("lock", "show").output

        asyncio.run(SQLiteLockManager(workdir / "state.db").acquire("default", "ci-runner", ttl=60))
        result = run("lock", "show")
        assert "ci-runner" in result.output
        assert "held" in result.output

        result = run("lock", "force-unlock", "--yes")
        assert result.exit_code == 0
        assert "removed" in result.output
        assert "is not locked" in run("lock", "show").output

    def test_force_unlock_declined(self, run, workdir) -> None:
        asyncio.run(SQLiteLockManager(workdir / "state.db").acquire("default", "ci-runner", ttl=60))

        result = run("lock", "force-unlock", input="n\n")

        assert "Cancelled" in result.output
        assert "ci-runner" in run("lock", "show").output


def test_version() -> None:
    result = CliRunner().invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert "gantry" in result.output
