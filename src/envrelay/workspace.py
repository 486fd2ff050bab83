"""
Workspace — a directory linked to one relay project.

A workspace holds two files envrelay manages:

- ``.envrelay.json``: which project this directory tracks and the last
  version pushed from here.
- ``.env.shared``: the local plaintext mirror of the shared environment.

``.env.local`` is scaffolded for machine-specific values that are never
synced.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from .errors import WorkspaceError
from .models import WorkspaceRecord

logger = logging.getLogger("envrelay.workspace")

RECORD_FILE = ".envrelay.json"
MIRROR_FILE = ".env.shared"
LOCAL_FILE = ".env.local"
GITIGNORE_ENTRIES = (LOCAL_FILE, RECORD_FILE)


class Workspace:
    """Files envrelay owns inside one working directory.

    Args:
        root: The workspace directory (usually the current directory).
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    @property
    def record_path(self) -> Path:
        return self.root / RECORD_FILE

    @property
    def env_path(self) -> Path:
        return self.root / MIRROR_FILE

    # -- record -----------------------------------------------------------

    def load(self) -> Optional[WorkspaceRecord]:
        """Return the workspace record, or None when this is no workspace."""
        if not self.record_path.exists():
            return None
        try:
            data = json.loads(self.record_path.read_text(encoding="utf-8"))
            return WorkspaceRecord.model_validate(data)
        except (json.JSONDecodeError, ValidationError) as exc:
            logger.warning("Ignoring unreadable %s: %s", self.record_path, exc)
            return None

    def require(self) -> WorkspaceRecord:
        record = self.load()
        if record is None:
            raise WorkspaceError(
                f"No {RECORD_FILE} found. Run `envrelay new` to create a project."
            )
        return record

    def save(self, record: WorkspaceRecord) -> None:
        self.record_path.write_text(
            json.dumps(record.model_dump(), indent=2) + "\n", encoding="utf-8",
        )

    def record_pushed_version(self, version: int) -> WorkspaceRecord:
        """Remember ``version`` as the last one pushed from here."""
        record = self.require()
        record.last_pushed_version = version
        self.save(record)
        return record

    # -- mirror -----------------------------------------------------------

    def read_env(self) -> str:
        try:
            return self.env_path.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise WorkspaceError(f"No {MIRROR_FILE} file found.") from exc

    def write_env(self, text: str) -> None:
        self.env_path.write_text(text, encoding="utf-8")

    # -- scaffolding ------------------------------------------------------

    def scaffold(self) -> None:
        """Create empty mirror and local files and git-ignore the private ones."""
        for name in (MIRROR_FILE, LOCAL_FILE):
            path = self.root / name
            if not path.exists():
                path.write_text("", encoding="utf-8")
        self.ensure_gitignore_entries(GITIGNORE_ENTRIES)

    def ensure_gitignore_entries(self, entries) -> list[str]:
        """Append missing ``entries`` to ``.gitignore``. Returns what was added."""
        gitignore = self.root / ".gitignore"
        content = gitignore.read_text(encoding="utf-8") if gitignore.exists() else ""
        existing = set(content.splitlines())
        to_add = [e for e in entries if e not in existing]
        if to_add:
            sep = "\n" if content and not content.endswith("\n") else ""
            gitignore.write_text(content + sep + "\n".join(to_add) + "\n", encoding="utf-8")
        return to_add
