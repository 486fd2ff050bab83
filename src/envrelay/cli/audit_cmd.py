"""Audit command: show the local audit trail."""

from __future__ import annotations

from typing import Optional

import click
from rich.markup import escape
from rich.table import Table

from ._common import console, home_option
from ..audit import (
    ENV_PULL,
    ENV_PUSH,
    ENV_ROLLBACK,
    KEY_RECEIVE,
    KEY_SHARE,
    LOGIN,
    LOGOUT,
    PROJECT_CREATE,
    read_audit_log,
)
from ..config import resolve_home

EVENT_COLORS = {
    PROJECT_CREATE: "green",
    ENV_PUSH: "magenta",
    ENV_PULL: "magenta",
    ENV_ROLLBACK: "yellow",
    KEY_SHARE: "blue",
    KEY_RECEIVE: "blue",
    LOGIN: "cyan",
    LOGOUT: "dim",
}


def register_audit_commands(main: click.Group) -> None:
    """Register the audit command."""

    @main.command("audit")
    @home_option
    @click.option("-n", "--limit", default=50, show_default=True, help="Newest N entries (0 = all).")
    @click.option(
        "--type", "event_type", type=click.Choice(sorted(EVENT_COLORS)), default=None,
        help="Only show one event type.",
    )
    def audit(home, limit: int, event_type: Optional[str]):
        """Show what envrelay did on this machine.

        Entries record project ids, versions and counts, never values
        or keys.
        """
        entries = read_audit_log(resolve_home(home), limit=limit, event_type=event_type)
        if not entries:
            console.print("  [dim]No audit entries found.[/]")
            return

        table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
        table.add_column("Time", style="dim", no_wrap=True)
        table.add_column("Event", style="bold")
        table.add_column("Project", style="cyan")
        table.add_column("Detail")
        for e in entries:
            ts = e.timestamp[:19].replace("T", " ")
            color = EVENT_COLORS.get(e.event_type, "white")
            table.add_row(ts, f"[{color}]{e.event_type}[/]", e.project_id or "—", escape(e.detail))

        console.print()
        console.print(table)
        console.print(f"\n  [dim]{len(entries)} entries[/]\n")
