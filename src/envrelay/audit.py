"""
Audit trail — what happened to keys and environments on this machine.

Format is JSONL (one JSON object per line) in ``<home>/audit.log``, so the
log stays append-only and machine-parseable. Entries never contain
plaintext values or key material: only project ids, versions and counts.
"""

from __future__ import annotations

import json
import logging
import socket
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger("envrelay.audit")

AUDIT_LOG_NAME = "audit.log"

PROJECT_CREATE = "PROJECT_CREATE"
ENV_PUSH = "ENV_PUSH"
ENV_PULL = "ENV_PULL"
ENV_ROLLBACK = "ENV_ROLLBACK"
KEY_SHARE = "KEY_SHARE"
KEY_RECEIVE = "KEY_RECEIVE"
LOGIN = "LOGIN"
LOGOUT = "LOGOUT"


class AuditEntry(BaseModel):
    """A single structured audit log entry."""

    timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    event_type: str
    detail: str
    host: str = Field(default_factory=socket.gethostname)
    project_id: Optional[str] = None
    metadata: Optional[dict] = None


def audit_event(
    home: Path,
    event_type: str,
    detail: str,
    project_id: Optional[str] = None,
    metadata: Optional[dict] = None,
) -> AuditEntry:
    """Append a structured event to the audit log.

    Args:
        home: envrelay home directory.
        event_type: One of the event constants in this module.
        detail: Human-readable description.
        project_id: Project the event concerns, if any.
        metadata: Optional dict of extra structured data.

    Returns:
        AuditEntry: The entry that was written.
    """
    home.mkdir(parents=True, exist_ok=True)
    entry = AuditEntry(
        event_type=event_type,
        detail=detail,
        project_id=project_id,
        metadata=metadata,
    )
    with (home / AUDIT_LOG_NAME).open("a", encoding="utf-8") as f:
        f.write(entry.model_dump_json() + "\n")
    return entry


def record(
    home: Path,
    event_type: str,
    detail: str,
    project_id: Optional[str] = None,
    metadata: Optional[dict] = None,
) -> None:
    """Like :func:`audit_event`, but never raises."""
    try:
        audit_event(home, event_type, detail, project_id=project_id, metadata=metadata)
    except OSError:
        logger.debug("Audit event skipped: %s", event_type)


def read_audit_log(
    home: Path,
    limit: int = 0,
    event_type: Optional[str] = None,
) -> list[AuditEntry]:
    """Read and parse the audit log.

    Lines that are not valid entries are skipped with a warning.

    Args:
        home: envrelay home directory.
        limit: Maximum entries to return (0 = all), keeping the newest.
        event_type: Only return entries of this type.

    Returns:
        list[AuditEntry]: Parsed entries, oldest first.
    """
    audit_log = home / AUDIT_LOG_NAME
    if not audit_log.exists():
        return []

    entries: list[AuditEntry] = []
    for lineno, line in enumerate(audit_log.read_text(encoding="utf-8").splitlines(), 1):
        line = line.strip()
        if not line:
            continue
        try:
            entry = AuditEntry.model_validate(json.loads(line))
        except (json.JSONDecodeError, ValidationError):
            logger.warning("Skipping malformed audit line %d", lineno)
            continue
        if event_type and entry.event_type != event_type:
            continue
        entries.append(entry)

    if limit > 0:
        entries = entries[-limit:]
    return entries
