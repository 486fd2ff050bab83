"""Watch command: start."""

from __future__ import annotations

import logging
from typing import Optional

import click

from ._common import CommandEnv, console, error, home_option, info, plural, reporting, success, warn
from ..watch import WatchConfig, WatchLoop, WatchSession, attach_log_file


def register_watch_commands(main: click.Group) -> None:
    """Register the start command."""

    @main.command("start")
    @home_option
    @click.option("--poll", type=float, default=None, help="Relay poll interval in seconds.")
    @click.pass_context
    def start(ctx, home, poll: Optional[float]):
        """Watch mode: keep .env.shared and the relay in sync.

        Pulls new versions as they appear and offers to push local
        edits. Ctrl+C stops.
        """
        env = CommandEnv(ctx, home)
        printers = {"success": success, "info": info, "warning": warn, "error": error}

        def notify(level: str, message: str) -> None:
            printers.get(level, info)(message)

        def confirm(session: WatchSession) -> bool:
            return click.confirm("  Local changes detected. Push?", default=False)

        with reporting("Watch"):
            record, key = env.require_project()
            config = WatchConfig(env.home, poll_interval=poll or env.config.poll_interval)
            handler = attach_log_file(config.log_file)
            try:
                loop = WatchLoop(
                    env.relay,
                    WatchSession(
                        project_id=record.project_id,
                        project_key=key,
                        env_path=env.workspace.env_path,
                        local_version=record.last_pushed_version,
                    ),
                    env.workspace,
                    confirm=confirm,
                    config=config,
                    identity=env.keystore.load_identity(),
                    notify=notify,
                )
                loop.install_signal_handlers()
                console.print()
                console.print("  [cyan]Watching for changes... (Ctrl+C to stop)[/]")
                console.print()
                session = loop.run()
            finally:
                logging.getLogger("envrelay").removeHandler(handler)
                handler.close()

            info(
                "Stopping watch mode. "
                f"{plural(session.pulls, 'pull')}, {plural(session.pushes, 'push', 'es')}."
            )
