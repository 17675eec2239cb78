"""
Gantry UI - Console implementation.

Rich-based console with panels and tables for plans, reports and state.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.theme import Theme

from gantry.core.types import UNKNOWN, ChangeAction, NodeOutcome
from gantry.engine.report import ApplyReport
from gantry.locking.base import Lock
from gantry.planning.models import Plan
from gantry.state.models import StateDocument, StateRecord

GANTRY_THEME = Theme(
    {
        "info": "cyan",
        "warning": "yellow",
        "error": "red bold",
        "success": "green",
        "muted": "dim",
        "highlight": "magenta",
    }
)

ACTION_STYLES = {
    ChangeAction.CREATE: ("+", "green"),
    ChangeAction.UPDATE: ("~", "yellow"),
    ChangeAction.REPLACE: ("-/+", "magenta"),
    ChangeAction.DESTROY: ("-", "red"),
    ChangeAction.NOOP: (" ", "dim"),
}

OUTCOME_STYLES = {
    NodeOutcome.APPLIED: "[green]✅ applied[/green]",
    NodeOutcome.NOOP: "[dim]no-op[/dim]",
    NodeOutcome.SKIPPED: "[yellow]⏭️ skipped[/yellow]",
    NodeOutcome.FAILED: "[red]❌ failed[/red]",
}


def _format_value(value: Any) -> str:
    if value is UNKNOWN:
        return "(known after apply)"
    if isinstance(value, (dict, list)):
        return escape(json.dumps(value, default=str, sort_keys=True))
    return escape(str(value))


class ConsoleUI:
    """
    Console user interface.

    Provides rich formatting for output.
    """

    def __init__(self, theme: Theme | None = None, console: Console | None = None) -> None:
        """Initialize console."""
        self.console = console or Console(theme=theme or GANTRY_THEME)

    def print(self, *args: Any, **kwargs: Any) -> None:
        """Print to console."""
        self.console.print(*args, **kwargs)

    def panel(self, content: str, title: str | None = None, style: str = "info") -> None:
        """Display a panel."""
        self.console.print(Panel(content, title=title, border_style=style))

    def success(self, message: str) -> None:
        """Display success message."""
        self.console.print(f"[success]{message}[/success]")

    def error(self, message: str) -> None:
        """Display error message."""
        self.console.print(f"[error]{message}[/error]")

    def warning(self, message: str) -> None:
        """Display warning message."""
        self.console.print(f"[warning]{message}[/warning]")

    def muted(self, message: str) -> None:
        """Display muted message."""
        self.console.print(f"[muted]{message}[/muted]")

    def table(
        self,
        headers: list[str],
        rows: list[list[str]],
        title: str | None = None,
    ) -> None:
        """Display a table."""
        table = Table(title=title, show_header=True, header_style="bold")

        for header in headers:
            table.add_column(header)

        for row in rows:
            table.add_row(*row)

        self.console.print(table)

    # -------------------------------------------------------------------------
    # Domain rendering
    # -------------------------------------------------------------------------

    def plan(self, plan: Plan, show_noop: bool = False) -> None:
        """Display a plan as a change table with a summary line."""
        title = f"{'Destroy plan' if plan.destroy else 'Plan'} for '{plan.state_key}' (state v{plan.state_version})"
        if not plan.has_changes:
            self.success(f"{title}: no changes, infrastructure is up to date.")
            return

        table = Table(title=title, show_header=True, header_style="bold")
        table.add_column("", no_wrap=True)
        table.add_column("Resource")
        table.add_column("Action")
        table.add_column("Details")

        for entry in plan.entries:
            if not entry.is_change and not show_noop:
                continue
            symbol, style = ACTION_STYLES[entry.action]
            details = self._entry_details(entry)
            if entry.deposed:
                details = "; ".join(filter(None, [details, f"destroy deposed {', '.join(entry.deposed)}"]))
            table.add_row(
                f"[{style}]{symbol}[/{style}]",
                entry.logical_id,
                f"[{style}]{entry.action.value}[/{style}]",
                details,
            )

        self.console.print(table)
        summary = plan.summary()
        self.print(
            f"Plan: [green]{summary['create']} to create[/green], "
            f"[yellow]{summary['update']} to update[/yellow], "
            f"[magenta]{summary['replace']} to replace[/magenta], "
            f"[red]{summary['destroy']} to destroy[/red]."
        )

    @staticmethod
    def _entry_details(entry: Any) -> str:
        if entry.action == ChangeAction.CREATE and entry.after is not None:
            return ", ".join(f"{k}={_format_value(v)}" for k, v in sorted(entry.after.items()))
        if entry.action in (ChangeAction.UPDATE, ChangeAction.REPLACE) and entry.after is not None:
            before = entry.before.attributes if entry.before is not None else {}
            parts = []
            for name in entry.changed:
                if name == "type":
                    parts.append(f"type {entry.before.resource_type} -> {entry.resource_type}")
                    continue
                old = _format_value(before[name]) if name in before else "(unset)"
                new = _format_value(entry.after[name]) if name in entry.after else "(unset)"
                forced = " [magenta](forces replacement)[/magenta]" if name in entry.replace_reasons else ""
                parts.append(f"{name}: {old} -> {new}{forced}")
            return "; ".join(parts)
        if entry.action == ChangeAction.DESTROY and entry.before is not None:
            return entry.before.provider_id
        return ""

    def report(self, report: ApplyReport) -> None:
        """Display an apply report."""
        table = Table(title=f"Apply report for '{report.state_key}'", show_header=True, header_style="bold")
        table.add_column("Resource")
        table.add_column("Action")
        table.add_column("Outcome")
        table.add_column("Details")
        table.add_column("Time", justify="right")

        for result in report.results:
            details = escape(result.error or result.note or result.provider_id or "")
            table.add_row(
                result.logical_id,
                result.action.value,
                OUTCOME_STYLES[result.outcome],
                details,
                f"{result.duration_ms}ms" if result.duration_ms else "",
            )
        self.console.print(table)

        counts = ", ".join(f"{n} {outcome}" for outcome, n in report.counts().items() if n)
        if report.aborted:
            self.error(f"Aborted: {escape(report.aborted)} ({counts})")
        elif report.cancelled:
            self.warning(f"Cancelled: {counts}")
        elif report.success:
            self.success(f"Apply complete in {report.duration_sec:.1f}s: {counts}")
        else:
            self.error(f"Apply finished with failures: {counts}")

    def state(self, document: StateDocument) -> None:
        """Display the records of a state artifact."""
        if not document.records:
            self.muted(f"State '{document.key}' is empty (version {document.version}).")
            return
        rows = [
            [record.logical_id, record.provider_id, _format_time(record.applied_at)]
            for record in document.records.values()
        ]
        self.table(
            ["Resource", "Provider ID", "Applied"],
            rows,
            title=f"State '{document.key}' v{document.version}",
        )

    def record(self, record: StateRecord) -> None:
        """Display one state record."""
        lines = [
            f"[bold]type[/bold]: {record.resource_type}",
            f"[bold]id[/bold]: {record.provider_id}",
            f"[bold]applied[/bold]: {_format_time(record.applied_at)}",
        ]
        if record.dependencies:
            lines.append(f"[bold]depends on[/bold]: {', '.join(record.dependencies)}")
        if record.deposed:
            lines.append(f"[bold]deposed[/bold]: {', '.join(record.deposed)}")
        lines.append("[bold]attributes[/bold]:")
        lines.extend(f"  {k} = {_format_value(v)}" for k, v in sorted(record.attributes.items()))
        computed = {k: v for k, v in record.outputs.items() if k not in record.attributes}
        if computed:
            lines.append("[bold]outputs[/bold]:")
            lines.extend(f"  {k} = {_format_value(v)}" for k, v in sorted(computed.items()))
        self.panel("\n".join(lines), title=record.logical_id)

    def lock(self, key: str, lock: Lock | None, now: float) -> None:
        """Display the lock on a state artifact."""
        if lock is None:
            self.success(f"State '{key}' is not locked.")
            return
        acquired = datetime.fromtimestamp(lock.acquired_at).strftime("%Y-%m-%d %H:%M:%S")
        if lock.expired(now):
            status = f"[warning]stale, expired {now - lock.expires_at:.0f}s ago[/warning]"
        else:
            status = f"[info]held, {lock.remaining(now):.0f}s left[/info]"
        self.panel(
            f"[bold]holder[/bold]: {lock.holder_id}\n"
            f"[bold]acquired[/bold]: {acquired}\n"
            f"[bold]status[/bold]: {status}",
            title=f"Lock on '{key}'",
        )


def _format_time(value: datetime) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S")
