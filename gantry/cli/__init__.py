"""
Gantry CLI - plan, apply and destroy declared infrastructure.

Exit codes:
    0  success (including "no changes" and a declined apply)
    1  build, plan or apply error
    2  the state lock is held by someone else
"""

from __future__ import annotations

import asyncio
import signal
import sys
import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime
from pathlib import Path
from typing import Any, TypeVar

import click
import yaml
from loguru import logger
from rich.markup import escape

from gantry import __version__
from gantry.config.constants import DEFAULT_DECLARATIONS_FILENAME, EXIT_ERROR, EXIT_LOCKED, EXIT_OK
from gantry.config.loader import Config, load_config
from gantry.core.exceptions import AlreadyLocked, GantryError, LockLostError
from gantry.core.types import ChangeAction, NodeOutcome
from gantry.engine.engine import Engine
from gantry.engine.report import ApplyReport
from gantry.graph.loader import load_declarations
from gantry.planning.models import Plan
from gantry.providers.registry import ProviderRegistry
from gantry.ui.console import ConsoleUI
from gantry.utils.log_config import get_log_config
from gantry.utils.logger import setup_logger

T = TypeVar("T")

ui = ConsoleUI()


def _configure_logging(config: Config, verbose: bool, run_id: str) -> None:
    log_config = get_log_config()
    overrides = config.logging.model_fields_set
    if "console_level" in overrides:
        log_config.console_level = config.logging.console_level.upper()
    if "file_level" in overrides:
        log_config.file_level = config.logging.file_level.upper()
    if "json_logs" in overrides:
        log_config.json_logs = config.logging.json_logs
    if config.logging.log_dir is not None:
        log_config.log_dir = str(config.logging.log_dir)
    setup_logger(verbose=verbose, run_id=run_id, config=log_config)


def _parse_vars(pairs: tuple[str, ...]) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for pair in pairs:
        name, sep, raw = pair.partition("=")
        if not sep or not name:
            raise click.BadParameter(f"expected NAME=VALUE, got {pair!r}", param_hint="--var")
        try:
            values[name] = yaml.safe_load(raw) if raw else ""
        except yaml.YAMLError:
            values[name] = raw
    return values


def _run(ctx: click.Context, action: Callable[[Engine], Awaitable[T]]) -> T:
    """Run an engine action, mapping errors to exit codes."""
    config: Config = ctx.obj["config"]
    registry: ProviderRegistry = ctx.obj.get("registry") or ProviderRegistry()

    async def runner() -> T:
        async with Engine.from_config(config, registry) as engine:
            loop = asyncio.get_running_loop()
            try:
                loop.add_signal_handler(signal.SIGINT, engine.cancel)
                handler_installed = True
            except (NotImplementedError, RuntimeError, ValueError):
                handler_installed = False
            try:
                return await action(engine)
            finally:
                if handler_installed:
                    loop.remove_signal_handler(signal.SIGINT)

    try:
        return asyncio.run(runner())
    except AlreadyLocked as e:
        ui.error(f"❌ {escape(e.message)}")
        ui.muted(f"Lock expires at {datetime.fromtimestamp(e.expires_at):%Y-%m-%d %H:%M:%S}")
        sys.exit(EXIT_LOCKED)
    except LockLostError as e:
        if isinstance(e.report, ApplyReport):
            ui.report(e.report)
        ui.error(f"❌ {escape(str(e))}")
        sys.exit(EXIT_ERROR)
    except GantryError as e:
        ui.error(f"❌ {escape(str(e))}")
        sys.exit(EXIT_ERROR)


def _approval(auto_approve: bool, verb: str) -> Callable[[Plan], bool]:
    def approve(plan: Plan) -> bool:
        ui.plan(plan)
        if auto_approve:
            return True
        return click.confirm(f"Do you want to {verb} these changes?", default=False)

    return approve


def _finish(report: ApplyReport | None, verb: str) -> None:
    if report is None:
        ui.warning(f"{verb.capitalize()} cancelled, nothing was changed.")
        sys.exit(EXIT_OK)
    if all(r.action == ChangeAction.NOOP and r.outcome == NodeOutcome.NOOP for r in report.results):
        ui.success("No changes, infrastructure is up to date.")
        sys.exit(EXIT_OK)
    ui.report(report)
    sys.exit(EXIT_OK if report.success else EXIT_ERROR)


declarations_argument = click.argument(
    "declarations",
    type=click.Path(dir_okay=False, path_type=Path),
    default=DEFAULT_DECLARATIONS_FILENAME,
)
var_option = click.option(
    "--var", "variables", multiple=True, metavar="NAME=VALUE", help="Set a declared variable"
)
concurrency_option = click.option(
    "--concurrency", "-j", type=click.IntRange(min=1), default=None, help="Parallel provider calls"
)
auto_approve_option = click.option(
    "--auto-approve", "-y", is_flag=True, help="Skip the confirmation prompt"
)


@click.group()
@click.version_option(version=__version__, prog_name="gantry")
@click.option("--config", "-c", "config_path", type=click.Path(dir_okay=False, path_type=Path),
              default=None, help="Configuration file (default: ./gantry.yaml)")
@click.option("--state-key", "-k", default=None, help="State artifact key")
@click.option("--verbose", "-v", is_flag=True, help="Log to stderr at DEBUG")
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, state_key: str | None, verbose: bool) -> None:
    """
    Gantry - declarative infrastructure provisioning.

    Plan and apply resource declarations against a locked, versioned state.
    """
    ctx.ensure_object(dict)
    try:
        config = load_config(config_path)
    except GantryError as e:
        ui.error(f"❌ {escape(str(e))}")
        sys.exit(EXIT_ERROR)

    if state_key:
        config.state.key = state_key
    ctx.obj["config"] = config

    run_id = f"{ctx.invoked_subcommand or 'gantry'}-{datetime.now():%Y%m%d-%H%M%S}-{uuid.uuid4().hex[:6]}"
    _configure_logging(config, verbose, run_id)
    logger.debug(f"gantry {__version__} run {run_id}, state '{config.state.key}'")


@cli.command()
@declarations_argument
@var_option
@click.option("--destroy", "destroy", is_flag=True, help="Plan destruction of every resource")
@click.option("--no-lock", is_flag=True, help="Read state without taking the lock")
@click.pass_context
def plan(ctx: click.Context, declarations: Path, variables: tuple[str, ...], destroy: bool, no_lock: bool) -> None:
    """Show the changes an apply would make."""
    values = _parse_vars(variables)

    async def action(engine: Engine) -> Plan:
        decls = load_declarations(declarations) if not destroy else None
        return await engine.plan(
            decls,
            values,
            destroy=destroy,
            lock=False if no_lock else None,
        )

    result = _run(ctx, action)
    ui.plan(result)
    sys.exit(EXIT_OK)


@cli.command()
@declarations_argument
@var_option
@concurrency_option
@auto_approve_option
@click.pass_context
def apply(
    ctx: click.Context,
    declarations: Path,
    variables: tuple[str, ...],
    concurrency: int | None,
    auto_approve: bool,
) -> None:
    """Apply the declared configuration."""
    values = _parse_vars(variables)

    async def action(engine: Engine) -> ApplyReport | None:
        decls = load_declarations(declarations)
        return await engine.apply(
            decls,
            values,
            approve=_approval(auto_approve, "apply"),
            concurrency=concurrency,
        )

    _finish(_run(ctx, action), "apply")


@cli.command()
@concurrency_option
@auto_approve_option
@click.pass_context
def destroy(ctx: click.Context, concurrency: int | None, auto_approve: bool) -> None:
    """Destroy every resource recorded in state."""

    async def action(engine: Engine) -> ApplyReport | None:
        return await engine.destroy(
            approve=_approval(auto_approve, "destroy"),
            concurrency=concurrency,
        )

    _finish(_run(ctx, action), "destroy")


# =============================================================================
# state
# =============================================================================

@cli.group()
def state() -> None:
    """Inspect stored state."""


@state.command("list")
@click.pass_context
def state_list(ctx: click.Context) -> None:
    """List resources in the current state artifact."""

    async def action(engine: Engine) -> tuple[list[str], Any]:
        return await engine.store.keys(), await engine.store.read(engine.config.state.key)

    keys, document = _run(ctx, action)
    if keys:
        ui.muted(f"State artifacts: {', '.join(keys)}")
    ui.state(document)


@state.command("show")
@click.argument("logical_id")
@click.pass_context
def state_show(ctx: click.Context, logical_id: str) -> None:
    """Show one resource's stored record."""

    async def action(engine: Engine) -> Any:
        return await engine.store.read(engine.config.state.key)

    document = _run(ctx, action)
    record = document.get(logical_id)
    if record is None:
        ui.error(f"❌ '{logical_id}' is not in state '{document.key}'")
        sys.exit(EXIT_ERROR)
    ui.record(record)


# =============================================================================
# lock
# =============================================================================

@cli.group()
def lock() -> None:
    """Inspect or break the state lock."""


@lock.command("show")
@click.pass_context
def lock_show(ctx: click.Context) -> None:
    """Show who holds the state lock."""

    async def action(engine: Engine) -> tuple[str, Any, float]:
        key = engine.config.state.key
        return key, await engine.lock_manager.current(key), engine.lock_manager.clock()

    key, current, now = _run(ctx, action)
    ui.lock(key, current, now)


@lock.command("force-unlock")
@click.option("--yes", "-y", is_flag=True, help="Skip the confirmation prompt")
@click.pass_context
def lock_force_unlock(ctx: click.Context, yes: bool) -> None:
    """Remove the state lock regardless of its holder."""
    key = ctx.obj["config"].state.key
    if not yes and not click.confirm(f"Force-unlock state '{key}'?", default=False):
        ui.warning("Cancelled.")
        sys.exit(EXIT_OK)

    async def action(engine: Engine) -> bool:
        return await engine.lock_manager.force_release(key)

    if _run(ctx, action):
        ui.success(f"✅ Lock on '{key}' removed.")
    else:
        ui.muted(f"State '{key}' was not locked.")


def main() -> None:
    """Entry point for the gantry CLI."""
    cli()


if __name__ == "__main__":
    main()
