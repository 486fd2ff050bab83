"""Key commands: keys sync."""

from __future__ import annotations

import click

from ._common import CommandEnv, home_option, info, plural, reporting, success
from ..audit import KEY_RECEIVE, KEY_SHARE
from ..distribution import receive_project_key, sync_pending_keys
from ..errors import WorkspaceError


def register_keys_commands(main: click.Group) -> None:
    """Register the keys command group."""

    @main.group()
    def keys():
        """Project key distribution.

        Keys travel wrapped for each member's identity; the relay only
        ever stores envelopes.
        """

    @keys.command("sync")
    @home_option
    @click.pass_context
    def keys_sync(ctx, home):
        """Fetch our own project key if missing, then share with pending members."""
        env = CommandEnv(ctx, home)
        with reporting("Key sync"):
            record = env.workspace.require()
            identity = env.require_identity()

            project_key = env.keystore.load_project_key(record.project_id)
            if project_key is None:
                user_id = env.config.user_id
                if not user_id:
                    raise WorkspaceError("No user id on record. Run `envrelay login` first.")
                project_key = receive_project_key(
                    env.relay, env.keystore, identity, record.project_id, user_id,
                )
                env.audit(KEY_RECEIVE, "Received project key", project_id=record.project_id)
                info(f"Received project key for {record.project_slug}.")

            report = sync_pending_keys(env.relay, record.project_id, project_key, identity)
            if report.shared:
                env.audit(
                    KEY_SHARE, f"Shared key with {plural(len(report.shared), 'member')}",
                    project_id=record.project_id, members=report.shared,
                )
            env.report_distribution(report)
            success(f"Keys in sync ({plural(report.pending, 'pending member')})")
