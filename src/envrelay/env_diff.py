"""
Env Diff — key/value comparison of two environment documents.

Direction is always local vs remote:

    added    keys only the remote has (someone else added them)
    removed  keys only the local mirror has
    changed  keys on both sides with different values

Values are compared as exact strings after trimming; no quote or
whitespace normalization happens inside a value.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class ChangedVar:
    key: str
    local: str
    remote: str


@dataclass
class EnvDiff:
    """Difference between a local and a remote environment.

    Attributes:
        added: Remote-only entries, key -> remote value.
        removed: Local-only entries, key -> local value.
        changed: Entries present on both sides with unequal values.
    """

    added: dict[str, str] = field(default_factory=dict)
    removed: dict[str, str] = field(default_factory=dict)
    changed: list[ChangedVar] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.removed or self.changed)


def parse_env(text: str) -> dict[str, str]:
    """Parse ``KEY=VALUE`` lines into a dict.

    Blank lines, ``#`` comments and lines without ``=`` are skipped. The
    line is split on the first ``=`` and both halves are trimmed. When a
    key repeats, the last occurrence wins. Keys are case-sensitive.
    """
    result: dict[str, str] = {}
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        key, sep, value = stripped.partition("=")
        if not sep:
            continue
        result[key.strip()] = value.strip()
    return result


def count_vars(text: str) -> int:
    """Number of non-blank, non-comment lines in an env document."""
    return sum(
        1
        for line in text.splitlines()
        if line.strip() and not line.strip().startswith("#")
    )


def diff_env(local: dict[str, str], remote: dict[str, str]) -> EnvDiff:
    """Compare two parsed environments. Order follows the remote, then local."""
    diff = EnvDiff()
    for key, value in remote.items():
        if key not in local:
            diff.added[key] = value
        elif local[key] != value:
            diff.changed.append(ChangedVar(key=key, local=local[key], remote=value))
    for key, value in local.items():
        if key not in remote:
            diff.removed[key] = value
    return diff


def compute_diff(local_text: str, remote_text: str) -> EnvDiff:
    """Parse both documents and diff them."""
    return diff_env(parse_env(local_text), parse_env(remote_text))


def format_text(diff: EnvDiff, remote_label: str = "remote") -> str:
    """Format the diff as plain text.

    Args:
        diff: The computed diff.
        remote_label: How to name the remote side, e.g. ``server (v4)``.

    Returns:
        Human-readable diff text.
    """
    if not diff.has_changes:
        return "Local and remote are in sync."

    lines = [f"Diff: local vs {remote_label}", ""]
    if diff.added:
        lines.append(f"Added on {remote_label}:")
        for key, value in diff.added.items():
            lines.append(f"  + {key}={value}")
    if diff.removed:
        lines.append("Only in local:")
        for key, value in diff.removed.items():
            lines.append(f"  - {key}={value}")
    if diff.changed:
        lines.append("Changed:")
        for change in diff.changed:
            lines.append(f"  ~ {change.key}")
            lines.append(f"      local:  {change.local}")
            lines.append(f"      remote: {change.remote}")
    return "\n".join(lines)
