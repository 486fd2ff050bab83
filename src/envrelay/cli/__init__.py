"""
envrelay CLI — share a team's .env through a relay that only sees ciphertext.

This package organizes the CLI into modular command groups.
Each group lives in its own module; the main Click group is defined
here and all subcommands are registered via register functions.

Entry point: envrelay.cli:main
"""

from __future__ import annotations

import logging

import click

from .. import __version__


@click.group()
@click.version_option(version=__version__, prog_name="envrelay")
@click.option("--verbose", "-v", is_flag=True, help="Log debug detail to stderr.")
@click.pass_context
def main(ctx, verbose):
    """envrelay — zero-knowledge .env sharing.

    Secrets are encrypted on your machine. The relay stores ciphertext.
    """
    ctx.ensure_object(dict)
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(name)s: %(message)s",
    )


# ---------------------------------------------------------------------------
# Register all command groups/commands from modular files
# ---------------------------------------------------------------------------

from .auth_cmd import register_auth_commands
from .project_cmd import register_project_commands
from .env_cmd import register_env_commands
from .keys_cmd import register_keys_commands
from .watch_cmd import register_watch_commands
from .audit_cmd import register_audit_commands

register_auth_commands(main)
register_project_commands(main)
register_env_commands(main)
register_keys_commands(main)
register_watch_commands(main)
register_audit_commands(main)
