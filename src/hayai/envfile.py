"""Project connection URIs into a dotenv-style file.

Only line-oriented ``KEY=VALUE`` detection is performed; quoting and
multi-line values are not interpreted. Lines whose key is not managed by
hayai are preserved verbatim and in order.
"""
from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from .errors import PersistenceError, ValidationError
from .models import InstanceRecord
from .state import write_text_atomic

ENV_HEADER = "# Database connections generated by hayai"
ENV_SUFFIX = "_DB_URL"

_KEY_PATTERN = re.compile(r"^\s*(?:export\s+)?([A-Za-z_][A-Za-z0-9_]*)\s*=")
_NON_ALNUM = re.compile(r"[^A-Z0-9]")


@dataclass(slots=True)
class EnvProjection:
    """Keys touched by :func:`project_env_file`."""

    path: Path
    added: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)

    @property
    def changed(self) -> int:
        return len(self.added) + len(self.updated)

    def to_dict(self) -> dict[str, object]:
        return {
            "path": str(self.path),
            "added": list(self.added),
            "updated": list(self.updated),
            "unchanged": list(self.unchanged),
        }


def env_var_name(instance_name: str) -> str:
    """Return the environment variable carrying *instance_name*'s URI."""
    return _NON_ALNUM.sub("_", instance_name.upper()) + ENV_SUFFIX


def render_env_lines(
    existing: Iterable[str],
    instances: Iterable[InstanceRecord],
    *,
    newline: str = "",
) -> tuple[list[str], EnvProjection]:
    """Merge managed keys into *existing* lines without touching unrelated ones.

    *existing* lines may carry their own terminators; a replaced line keeps the
    terminator of the line it replaces and appended lines end with *newline*.
    Two instances mapping to the same variable raise :class:`ValidationError`.
    """
    managed: dict[str, str] = {}
    owners: dict[str, str] = {}
    for record in instances:
        key = env_var_name(record.name)
        if key in owners and owners[key] != record.name:
            raise ValidationError(
                f"Instances '{owners[key]}' and '{record.name}' both map to {key}."
            )
        owners[key] = record.name
        managed[key] = record.connection_uri

    projection = EnvProjection(path=Path())
    seen: set[str] = set()
    output: list[str] = []
    for line in existing:
        match = _KEY_PATTERN.match(line)
        key = match.group(1) if match else None
        if key is None or key not in managed:
            output.append(line)
            continue
        if key in seen:
            # later duplicates of a managed key are dropped
            continue
        seen.add(key)
        body = line.rstrip("\r\n")
        new_line = f"{key}={managed[key]}"
        if body.strip() == new_line:
            projection.unchanged.append(key)
        else:
            projection.updated.append(key)
        output.append(new_line + line[len(body):])

    missing = [key for key in managed if key not in seen]
    if missing:
        if newline and output and not output[-1].endswith(("\n", "\r")):
            output[-1] += newline
        if ENV_HEADER not in (item.strip() for item in output):
            if output and output[-1].strip():
                output.append(newline)
            output.append(ENV_HEADER + newline)
        for key in missing:
            output.append(f"{key}={managed[key]}{newline}")
            projection.added.append(key)
    return output, projection


def project_env_file(path: Path, instances: Iterable[InstanceRecord]) -> EnvProjection:
    """Write one ``{NAME}_DB_URL`` line per instance into *path*.

    Line endings of the existing file are kept; appended lines follow the
    file's first terminator.
    """
    try:
        with path.open("r", encoding="utf-8", newline="") as handle:
            existing = handle.read().splitlines(keepends=True)
    except FileNotFoundError:
        existing = []
    except OSError as exc:
        raise PersistenceError(f"Failed to read env file {path}: {exc}") from exc

    newline = _detect_newline(existing)
    lines, projection = render_env_lines(existing, instances, newline=newline)
    projection.path = path
    if lines != existing:
        write_text_atomic(path, "".join(lines), label="env file")
    return projection


def _detect_newline(lines: Iterable[str]) -> str:
    for line in lines:
        if line.endswith("\r\n"):
            return "\r\n"
        if line.endswith(("\n", "\r")):
            return line[-1]
    return "\n"


__all__ = ["ENV_HEADER", "EnvProjection", "env_var_name", "project_env_file", "render_env_lines"]
