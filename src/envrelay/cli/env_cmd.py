"""Environment commands: push, pull, diff, log, rollback."""

from __future__ import annotations

from typing import Optional

import click
from rich.markup import escape
from rich.table import Table

from ._common import CommandEnv, console, fail, home_option, info, plural, reporting, success, warn
from ..audit import ENV_PULL, ENV_PUSH, ENV_ROLLBACK, KEY_SHARE
from ..distribution import sync_pending_keys
from ..env_diff import EnvDiff, compute_diff, count_vars, format_text
from ..errors import Conflict, WorkspaceError
from ..versioning import SnapshotService


def _sync_keys(env: CommandEnv, project_id: str, project_key: bytes) -> None:
    """Best-effort pending-key distribution after a push or pull."""
    identity = env.keystore.load_identity()
    if identity is None:
        return
    report = sync_pending_keys(env.relay, project_id, project_key, identity)
    if report.shared:
        env.audit(
            KEY_SHARE, f"Shared key with {plural(len(report.shared), 'member')}",
            project_id=project_id, members=report.shared,
        )
    env.report_distribution(report)


_HEADER_STYLES = (
    ("Diff:", "bold"),
    ("Added on", "bold green"),
    ("Only in local:", "bold red"),
    ("Changed:", "bold yellow"),
)
_ENTRY_STYLES = (
    ("  + ", "green"),
    ("  - ", "red"),
    ("  ~ ", "yellow"),
    ("      local:", "red"),
    ("      remote:", "green"),
)


def _line_style(line: str) -> Optional[str]:
    styles = _ENTRY_STYLES if line.startswith(" ") else _HEADER_STYLES
    return next((style for prefix, style in styles if line.startswith(prefix)), None)


def _print_diff(diff: EnvDiff, remote_label: str) -> None:
    """Render :func:`format_text` output with colour per line kind."""
    console.print()
    for line in format_text(diff, remote_label).splitlines():
        style = _line_style(line)
        text = f"  {escape(line)}"
        console.print(f"[{style}]{text}[/]" if style else text, highlight=False)
    console.print()


def register_env_commands(main: click.Group) -> None:
    """Register push, pull, diff, log and rollback."""

    @main.command("push")
    @home_option
    @click.option("-m", "--message", default=None, help="Message stored with the version.")
    @click.option("-f", "--force", is_flag=True, help="Skip the conflict check.")
    @click.pass_context
    def push(ctx, home, message: Optional[str], force: bool):
        """Encrypt .env.shared and push it as a new version."""
        env = CommandEnv(ctx, home)
        with reporting("Push"):
            record, key = env.require_project()
            plaintext = env.workspace.read_env()
            service = SnapshotService(env.relay, record.project_id, key)

            def confirm(conflict: Conflict) -> bool:
                warn(str(conflict))
                return click.confirm("  Continue?", default=False)

            try:
                version = service.push(
                    plaintext,
                    last_known_version=record.last_pushed_version,
                    force=force,
                    message=message,
                    confirm=confirm,
                )
            except Conflict:
                console.print("  [dim]Push cancelled.[/]")
                return

            env.workspace.record_pushed_version(version)
            env.audit(
                ENV_PUSH, f"Pushed v{version}", project_id=record.project_id,
                version=version, forced=force,
            )
            success(f"Pushed v{version} ({plural(count_vars(plaintext), 'var')})")
            _sync_keys(env, record.project_id, key)

    @main.command("pull")
    @home_option
    @click.option("--token", default=None, help="Auth token for this run (CI/CD).")
    @click.option("--project", "project_slug", default=None, help="Project slug (CI/CD).")
    @click.pass_context
    def pull(ctx, home, token: Optional[str], project_slug: Optional[str]):
        """Pull and decrypt the latest version into .env.shared."""
        env = CommandEnv(ctx, home, token=token)
        with reporting("Pull"):
            if project_slug:
                project = next(
                    (p for p in env.relay.list_projects() if p.slug == project_slug), None,
                )
                if project is None:
                    fail(f'Project "{project_slug}" not found.')
                project_id = project.id
            else:
                record = env.workspace.load()
                if record is None:
                    raise WorkspaceError(
                        "No .envrelay.json found. Run `envrelay new` to create a project, "
                        "or use --project <slug>."
                    )
                project_id = record.project_id

            key = env.require_project_key(project_id)
            pulled = SnapshotService(env.relay, project_id, key).pull()
            env.workspace.write_env(pulled.plaintext)
            env.audit(ENV_PULL, f"Pulled v{pulled.version}", project_id=project_id, version=pulled.version)
            success(f"Pulled v{pulled.version} ({plural(count_vars(pulled.plaintext), 'var')})")
            _sync_keys(env, project_id, key)

    @main.command("diff")
    @home_option
    @click.pass_context
    def diff(ctx, home):
        """Compare .env.shared with the latest version on the relay."""
        env = CommandEnv(ctx, home)
        with reporting("Diff"):
            record, key = env.require_project()
            local = env.workspace.read_env()
            pulled = SnapshotService(env.relay, record.project_id, key).pull()

        result = compute_diff(local, pulled.plaintext)
        if not result.has_changes:
            info("Local and remote are in sync.")
            return
        _print_diff(result, f"server (v{pulled.version})")

    @main.command("log")
    @home_option
    @click.option("-a", "--all", "show_all", is_flag=True, help="Show the full history.")
    @click.pass_context
    def log(ctx, home, show_all: bool):
        """Show the push history of the project."""
        env = CommandEnv(ctx, home)
        with reporting("Log"):
            record = env.workspace.require()
            service = SnapshotService(env.relay, record.project_id)
            if show_all:
                entries = service.history_all()
            else:
                entries = service.history().snapshots

        if not entries:
            console.print("  [dim]No history found. Run `envrelay push` to create the first snapshot.[/]")
            return

        table = Table(
            show_header=True, header_style="bold", box=None, padding=(0, 2),
            title=f"History for {record.project_slug}",
        )
        table.add_column("Version", style="cyan")
        table.add_column("Author")
        table.add_column("Message")
        table.add_column("Date", style="dim")
        for entry in entries:
            table.add_row(
                f"v{entry.version}",
                escape(entry.author_label),
                escape(entry.message) if entry.message else "[dim]no message[/]",
                entry.created_at.strftime("%Y-%m-%d %H:%M") if entry.created_at else "—",
            )
        console.print()
        console.print(table)
        console.print()

    @main.command("rollback")
    @home_option
    @click.argument("version", type=click.IntRange(min=1))
    @click.option("-y", "--yes", is_flag=True, help="Do not ask for confirmation.")
    @click.pass_context
    def rollback(ctx, home, version: int, yes: bool):
        """Restore VERSION by pushing its content as a new version.

        History is never rewritten: the restored content gets a new
        version number.
        """
        env = CommandEnv(ctx, home)
        with reporting("Rollback"):
            record, key = env.require_project()
            service = SnapshotService(env.relay, record.project_id, key)
            target = service.fetch(version)

            if env.workspace.env_path.exists():
                changes = compute_diff(env.workspace.read_env(), target)
                if changes.has_changes:
                    _print_diff(changes, f"v{version}")
                else:
                    console.print("  [dim]No differences detected.[/]")
            else:
                warn("No local .env.shared found. Will create one from the rollback.")

            if not yes and not click.confirm(f"  Rollback to v{version}?", default=False):
                console.print("  [dim]Rollback cancelled.[/]")
                return

            result = service.rollback(version, plaintext=target)
            env.workspace.write_env(result.plaintext)
            env.workspace.record_pushed_version(result.new_version)
            env.audit(
                ENV_ROLLBACK, f"Rolled back to v{version}", project_id=record.project_id,
                target_version=version, new_version=result.new_version,
            )
            success(f"Rolled back to v{version} (pushed as v{result.new_version})")
