"""
Global client configuration.

Everything envrelay keeps outside a workspace lives under one home
directory (``ENVRELAY_HOME``, default ``~/.envrelay``)::

    ~/.envrelay/
        config.yaml     relay URL, session token, user identity
        keys/           identity.key and <project_id>.key (owner-only)
        logs/           watch.log
        audit.log       JSONL audit trail

Two environment variables override the file without being written back:
``ENVRELAY_TOKEN`` (CI sessions) and ``ENVRELAY_API_URL``.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError

from . import ENVRELAY_HOME
from .models import RelayConfig

logger = logging.getLogger("envrelay.config")

CONFIG_FILE = "config.yaml"
TOKEN_ENV = "ENVRELAY_TOKEN"
API_URL_ENV = "ENVRELAY_API_URL"


def resolve_home(home: Optional[str | Path] = None) -> Path:
    """Expand the home directory, falling back to ``ENVRELAY_HOME``."""
    return Path(home or ENVRELAY_HOME).expanduser()


class ConfigStore:
    """Reads and writes ``<home>/config.yaml``.

    Args:
        home: envrelay home directory.
    """

    def __init__(self, home: Path) -> None:
        self.home = Path(home).expanduser()

    @property
    def path(self) -> Path:
        return self.home / CONFIG_FILE

    @property
    def keys_dir(self) -> Path:
        return self.home / "keys"

    @property
    def logs_dir(self) -> Path:
        return self.home / "logs"

    def ensure_dirs(self) -> None:
        """Create the home layout; ``keys/`` is owner-only."""
        self.home.mkdir(parents=True, exist_ok=True)
        self.keys_dir.mkdir(parents=True, exist_ok=True)
        os.chmod(self.keys_dir, 0o700)
        self.logs_dir.mkdir(parents=True, exist_ok=True)

    def load_persisted(self) -> RelayConfig:
        """Config exactly as stored on disk, defaults when missing or broken."""
        if self.path.exists():
            try:
                data = yaml.safe_load(self.path.read_text(encoding="utf-8")) or {}
                return RelayConfig(**data)
            except (yaml.YAMLError, ValidationError, TypeError) as exc:
                logger.warning("Failed to load config: %s, using defaults", exc)
        return RelayConfig()

    def load(self) -> RelayConfig:
        """Effective config: the stored file plus environment overrides."""
        config = self.load_persisted()
        token = os.environ.get(TOKEN_ENV)
        if token:
            config.auth_token = token
        api_url = os.environ.get(API_URL_ENV)
        if api_url:
            config.api_base_url = api_url
        return config

    def save(self, **changes) -> RelayConfig:
        """Merge ``changes`` into the stored config and write it back.

        Environment overrides are never persisted: the merge starts from
        the on-disk values, not from :meth:`load`.
        """
        config = self.load_persisted().model_copy(update=changes)
        self.home.mkdir(parents=True, exist_ok=True)
        self.path.write_text(
            yaml.dump(config.model_dump(mode="json"), default_flow_style=False),
            encoding="utf-8",
        )
        os.chmod(self.path, 0o600)
        logger.debug("Saved config to %s", self.path)
        return config

    def clear_session(self) -> RelayConfig:
        """Forget token and user, keep the relay URL and tuning."""
        return self.save(auth_token=None, user_id=None, email=None)
