"""Shared utilities for all CLI command modules.

Provides the Rich console, the one-line status helpers every command
ends with, and ``CommandEnv``: the home directory, config, key store,
workspace and relay a command works against.
"""

from __future__ import annotations

import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import click
from rich.console import Console

from .. import ENVRELAY_HOME
from ..audit import record
from ..config import ConfigStore, resolve_home
from ..crypto import Identity
from ..distribution import DistributionReport
from ..errors import EnvRelayError, Unauthorized, WorkspaceError
from ..keystore import KeyStore
from ..models import RelayConfig, WorkspaceRecord
from ..relay import HttpRelay, Relay
from ..workspace import Workspace

console = Console()

home_option = click.option(
    "--home", default=ENVRELAY_HOME, type=click.Path(), help="envrelay home directory.",
)

NO_KEY_HINT = "No project key found. You may need to be invited to this project."


def success(message: str) -> None:
    console.print(f"  [bold green]✓[/] {message}")


def info(message: str) -> None:
    console.print(f"  [cyan]ℹ[/] {message}")


def warn(message: str) -> None:
    console.print(f"  [yellow]![/] {message}")


def error(message: str) -> None:
    console.print(f"  [bold red]✗[/] {message}")


def fail(message: str) -> None:
    """Print an error line and exit with status 1."""
    error(message)
    sys.exit(1)


def plural(n: int, word: str, suffix: str = "s") -> str:
    return f"{n} {word}{suffix if n != 1 else ''}"


def default_relay_factory(config: RelayConfig) -> Relay:
    return HttpRelay(config.api_base_url, token=config.auth_token, timeout=config.timeout)


@contextmanager
def reporting(action: str) -> Iterator[None]:
    """Turn envrelay errors into a single failure line and exit code 1."""
    try:
        yield
    except Unauthorized as exc:
        fail(str(exc))
    except EnvRelayError as exc:
        fail(f"{action} failed: {exc}")
    except ValueError as exc:
        fail(f"{action} failed: {exc}")


class CommandEnv:
    """Everything one command invocation needs.

    Args:
        ctx: Click context; ``ctx.obj["relay_factory"]`` builds the relay.
        home: envrelay home directory option.
        workdir: Workspace directory, defaults to the current directory.
        token: Session token for this invocation only (CI use).
    """

    def __init__(
        self,
        ctx: click.Context,
        home: str,
        workdir: Optional[Path] = None,
        token: Optional[str] = None,
    ):
        self.home = resolve_home(home)
        self.config_store = ConfigStore(self.home)
        self.keystore = KeyStore(self.home)
        self.workspace = Workspace(workdir or Path.cwd())
        self._obj = ctx.ensure_object(dict)
        self._token = token
        self._relay: Optional[Relay] = None

    @property
    def config(self) -> RelayConfig:
        config = self.config_store.load()
        if self._token:
            config.auth_token = self._token
        return config

    @property
    def relay(self) -> Relay:
        if self._relay is None:
            factory = self._obj.get("relay_factory", default_relay_factory)
            self._relay = factory(self.config)
        return self._relay

    def require_identity(self) -> Identity:
        identity = self.keystore.load_identity()
        if identity is None:
            raise WorkspaceError("No identity keypair found. Run `envrelay login` first.")
        return identity

    def require_project_key(self, project_id: str) -> bytes:
        key = self.keystore.load_project_key(project_id)
        if key is None:
            raise WorkspaceError(NO_KEY_HINT)
        return key

    def require_project(self) -> tuple[WorkspaceRecord, bytes]:
        record = self.workspace.require()
        return record, self.require_project_key(record.project_id)

    def audit(self, event_type: str, detail: str, project_id: Optional[str] = None, **metadata) -> None:
        record(self.home, event_type, detail, project_id=project_id, metadata=metadata or None)

    def report_distribution(self, report: DistributionReport) -> None:
        if report.shared:
            info(f"Shared project key with {plural(len(report.shared), 'new member')}")
        if report.failure is not None:
            info(f"Note: {report.failure}; they will be retried on the next push or pull.")
