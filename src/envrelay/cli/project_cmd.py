"""Project commands: new, list, switch, invite, members."""

from __future__ import annotations

from typing import Optional

import click
from rich.table import Table

from ._common import CommandEnv, NO_KEY_HINT, console, fail, home_option, info, plural, reporting, success, warn
from ..audit import ENV_PULL, KEY_SHARE, PROJECT_CREATE
from ..distribution import create_project, invite_member
from ..env_diff import count_vars
from ..errors import EnvRelayError
from ..models import WorkspaceRecord
from ..versioning import SnapshotService


def _date(value) -> str:
    return value.strftime("%b %d, %Y") if value else "—"


def register_project_commands(main: click.Group) -> None:
    """Register project and membership commands."""

    @main.command("new")
    @home_option
    @click.option("--name", default=None, help="Project name (prompted when omitted).")
    @click.pass_context
    def new(ctx, home, name: Optional[str]):
        """Create a project and link the current directory to it.

        Generates the project key, uploads only its self-wrapped
        envelope, and scaffolds .env.shared and .env.local.
        """
        env = CommandEnv(ctx, home)
        if not name:
            name = click.prompt("Project name", default="", show_default=False).strip()
        if not name:
            fail("Project name is required.")

        with reporting("Creating project"):
            identity = env.require_identity()
            project, _ = create_project(env.relay, env.keystore, identity, name)
            env.workspace.save(
                WorkspaceRecord(project_id=project.id, project_slug=project.slug)
            )
            env.workspace.scaffold()
            env.audit(PROJECT_CREATE, f"Created project {project.slug}", project_id=project.id)
            success(f'Created project "{name}" ({project.slug})')

    @main.command("list")
    @home_option
    @click.pass_context
    def list_projects(ctx, home):
        """List the projects you belong to."""
        env = CommandEnv(ctx, home)
        with reporting("Listing projects"):
            projects = env.relay.list_projects()

        if not projects:
            console.print("  [dim]No projects found. Run `envrelay new` to create one.[/]")
            return

        current = env.workspace.load()
        table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
        table.add_column("Name", style="bold")
        table.add_column("Slug", style="cyan")
        table.add_column("Role")
        table.add_column("Members", justify="right")
        table.add_column("Updated", style="dim")
        for p in projects:
            marker = " *" if current and current.project_id == p.id else ""
            table.add_row(
                p.name + marker,
                p.slug,
                p.role or "owner",
                str(p.member_count) if p.member_count is not None else "—",
                _date(p.updated_at or p.created_at),
            )
        console.print()
        console.print(table)
        console.print()

    @main.command("switch")
    @home_option
    @click.argument("slug")
    @click.pass_context
    def switch(ctx, home, slug):
        """Point the current directory at another project and pull it."""
        env = CommandEnv(ctx, home)
        with reporting("Switch"):
            project = next((p for p in env.relay.list_projects() if p.slug == slug), None)
            if project is None:
                fail(f'Project "{slug}" not found.')
            env.workspace.save(WorkspaceRecord(project_id=project.id, project_slug=project.slug))

            key = env.keystore.load_project_key(project.id)
            if key is None:
                warn(NO_KEY_HINT)
            else:
                try:
                    pulled = SnapshotService(env.relay, project.id, key).pull()
                except EnvRelayError as exc:
                    warn(f"Could not pull latest .env.shared ({exc}). Run `envrelay pull` manually.")
                else:
                    env.workspace.write_env(pulled.plaintext)
                    env.audit(ENV_PULL, f"Pulled v{pulled.version}", project_id=project.id)
                    info(f"Pulled v{pulled.version} ({plural(count_vars(pulled.plaintext), 'var')})")
            success(f"Switched to {project.name or project.slug} ({project.slug})")

    @main.command("invite")
    @home_option
    @click.argument("email")
    @click.option(
        "--role", type=click.Choice(["member", "readonly"]), default="member",
        show_default=True, help="Role to assign.",
    )
    @click.pass_context
    def invite(ctx, home, email, role):
        """Invite a teammate by email.

        If they already have an identity, the project key is wrapped for
        them right away; otherwise they get it on the next push or pull.
        """
        env = CommandEnv(ctx, home)
        with reporting("Invite"):
            record = env.workspace.require()
            invitation, shared = invite_member(
                env.relay,
                record.project_id,
                email,
                role=role,
                project_key=env.keystore.load_project_key(record.project_id),
                identity=env.keystore.load_identity(),
            )
            if shared:
                env.audit(KEY_SHARE, f"Shared key with {email}", project_id=record.project_id)
                info(f"Project key shared with {email}.")
            success(f"Invitation sent to {invitation.email} ({invitation.role})")

    @main.command("members")
    @home_option
    @click.pass_context
    def members(ctx, home):
        """List project members and pending invitations."""
        env = CommandEnv(ctx, home)
        with reporting("Listing members"):
            record = env.workspace.require()
            member_list = env.relay.list_members(record.project_id)
            pending = [i for i in env.relay.list_invitations(record.project_id) if i.is_pending()]

        if not member_list:
            info("No members found.")
        else:
            table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2), title="Members")
            table.add_column("Member", style="cyan")
            table.add_column("Role")
            table.add_column("Joined", style="dim")
            for m in member_list:
                table.add_row(m.email or m.user_id, m.role, _date(m.joined_at))
            console.print()
            console.print(table)

        if pending:
            table = Table(
                show_header=True, header_style="bold", box=None, padding=(0, 2),
                title="Pending Invitations",
            )
            table.add_column("Email", style="cyan")
            table.add_column("Role")
            table.add_column("Expires", style="dim")
            for inv in pending:
                table.add_row(inv.email, inv.role, _date(inv.expires_at))
            console.print()
            console.print(table)
        console.print()
