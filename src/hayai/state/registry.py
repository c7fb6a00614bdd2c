"""Helpers for interacting with the hayai state directory.

The data directory (``./data`` by default) stores the JSON documents that are
the system of record: ``instances.json`` (instance name -> record) and
``port-allocations.json`` (stringified port -> owning instance). Both are read
whole at the start of a command and rewritten whole, atomically, after every
mutation. Other tooling may read these files, so their shape is a contract.

Orchestration code depends only on the :class:`StateStore` protocol so the
backing store can be replaced (tests use an in-memory implementation).
"""
from __future__ import annotations

import json
import logging
import os
import tempfile
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from ..errors import PersistenceError

LOGGER = logging.getLogger(__name__)

INSTANCES_FILE = "instances.json"
PORTS_FILE = "port-allocations.json"


class StateStore(Protocol):
    """Narrow repository interface over the persisted documents."""

    def read_instances(self) -> dict[str, dict[str, Any]]:
        """Return the instance registry document."""
        ...

    def write_instances(self, instances: Mapping[str, Mapping[str, Any]]) -> None:
        """Persist the full instance registry document."""
        ...

    def read_ports(self) -> dict[str, str]:
        """Return the port allocation document."""
        ...

    def write_ports(self, ports: Mapping[str, str]) -> None:
        """Persist the full port allocation document."""
        ...


def write_text_atomic(path: Path, text: str, *, label: str = "file") -> None:
    """Replace *path* with *text* via a sibling temporary file.

    Readers see either the previous content or the new content, never a
    partial write. Failures are raised as :class:`PersistenceError` naming
    *label*.
    """
    parent = path.parent
    try:
        parent.mkdir(parents=True, exist_ok=True)
        tmp_fd, tmp_name = tempfile.mkstemp(dir=str(parent), prefix=f".{path.name}.")
    except OSError as exc:
        raise PersistenceError(f"Failed to write {label} {path}: {exc}") from exc
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(tmp_fd, "w", encoding="utf-8", newline="") as handle:
            handle.write(text)
        os.replace(tmp_path, path)
    except OSError as exc:
        raise PersistenceError(f"Failed to write {label} {path}: {exc}") from exc
    finally:
        tmp_path.unlink(missing_ok=True)


@dataclass(frozen=True)
class StateRegistry:
    """JSON-file implementation of :class:`StateStore`."""

    root: Path

    def __post_init__(self) -> None:
        """Normalise the root path after initialisation."""
        object.__setattr__(self, "root", self.root.expanduser())

    def ensure_root(self) -> None:
        """Create the data directory if it does not yet exist."""
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise PersistenceError(f"Failed to create data directory {self.root}: {exc}") from exc

    def path_for(self, name: str) -> Path:
        """Return the filesystem path for a named state file."""
        return self.root / name

    def read(self, name: str) -> dict[str, Any] | None:
        """Read a state document, returning ``None`` when it does not exist."""
        path = self.path_for(name)
        if not path.exists():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError) as exc:
            raise PersistenceError(f"Failed to read state file {path}: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise PersistenceError(f"State file {path} is not valid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise PersistenceError(f"State file {path} must contain a JSON object.")
        return data

    def write(self, name: str, payload: Mapping[str, object]) -> None:
        """Atomically write *payload* to the given state file."""
        self.ensure_root()
        path = self.path_for(name)
        try:
            text = json.dumps(payload, indent=2)
        except (TypeError, ValueError) as exc:
            raise PersistenceError(f"Failed to write state file {path}: {exc}") from exc
        write_text_atomic(path, text, label="state file")

    # Convenience wrappers -------------------------------------------------
    def read_instances(self) -> dict[str, dict[str, Any]]:
        """Return ``instances.json``; unreadable state counts as empty."""
        raw = self._read_or_empty(INSTANCES_FILE)
        instances: dict[str, dict[str, Any]] = {}
        for name, entry in raw.items():
            if isinstance(entry, dict):
                instances[str(name)] = entry
            else:
                LOGGER.warning("Ignoring malformed registry entry for '%s'.", name)
        return instances

    def write_instances(self, instances: Mapping[str, Mapping[str, Any]]) -> None:
        """Persist instance records to ``instances.json``."""
        self.write(INSTANCES_FILE, {name: dict(entry) for name, entry in instances.items()})

    def read_ports(self) -> dict[str, str]:
        """Return ``port-allocations.json``; unreadable state counts as empty."""
        raw = self._read_or_empty(PORTS_FILE)
        return {str(port): str(owner) for port, owner in raw.items()}

    def write_ports(self, ports: Mapping[str, str]) -> None:
        """Persist port allocations to ``port-allocations.json``."""
        self.write(PORTS_FILE, dict(ports))

    def _read_or_empty(self, name: str) -> dict[str, Any]:
        try:
            data = self.read(name)
        except PersistenceError as exc:
            LOGGER.warning("%s; starting from empty state.", exc)
            return {}
        return data if data is not None else {}


__all__ = ["StateRegistry", "StateStore", "INSTANCES_FILE", "PORTS_FILE", "write_text_atomic"]
