"""Declarative project file (``.hayaidb``) export and sync.

A project file describes the databases a repository expects so that a fresh
checkout can recreate them with ``hayai sync``::

    version: "1.0"
    project: my-app
    databases:
      main:
        engine: postgresql
        port: 5432
        environment:
          POSTGRES_DB: app
    profiles:
      dev: [main]
"""
from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml

from .catalog import EngineCatalog
from .errors import HayaiError, NotFoundError, PersistenceError, ValidationError
from .models import validate_instance_name
from .ports import MAX_PORT, MIN_PORT
from .state import write_text_atomic

if TYPE_CHECKING:  # pragma: no cover - import cycle guard for type hints
    from .instances import InstanceRegistry

LOGGER = logging.getLogger(__name__)

PROJECT_FILE_VERSION = "1.0"


@dataclass(frozen=True)
class DatabaseEntry:
    """One declared database."""

    engine: str
    port: int | None = None
    environment: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {"engine": self.engine}
        if self.port:
            payload["port"] = self.port
        if self.environment:
            payload["environment"] = dict(self.environment)
        return payload


@dataclass(frozen=True)
class ProjectFile:
    """Parsed project file."""

    version: str
    databases: dict[str, DatabaseEntry]
    project: str | None = None
    profiles: dict[str, list[str]] = field(default_factory=dict)

    def select(self, profile: str | None = None) -> dict[str, DatabaseEntry]:
        """Return the databases in *profile* (every database when ``None``)."""
        if profile is None:
            return dict(self.databases)
        if profile not in self.profiles:
            raise ValidationError(f"Profile '{profile}' is not defined in the project file.")
        return {name: self.databases[name] for name in self.profiles[profile]}

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {"version": self.version}
        if self.project:
            payload["project"] = self.project
        payload["databases"] = {name: entry.to_dict() for name, entry in self.databases.items()}
        if self.profiles:
            payload["profiles"] = {name: list(members) for name, members in self.profiles.items()}
        return payload


@dataclass(slots=True)
class SyncResult:
    """Outcome of :func:`sync_project`."""

    created: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, object]:
        return {
            "created": list(self.created),
            "skipped": list(self.skipped),
            "errors": dict(self.errors),
        }


def export_project(
    registry: InstanceRegistry,
    path: Path,
    *,
    project: str | None = None,
) -> ProjectFile:
    """Write the registered instances to *path* as a project file."""
    databases = {
        record.name: DatabaseEntry(
            engine=record.engine,
            port=record.port or None,
            environment=dict(record.environment),
        )
        for record in registry.all()
    }
    document = ProjectFile(
        version=PROJECT_FILE_VERSION,
        databases=databases,
        project=project or Path.cwd().name,
    )
    text = yaml.safe_dump(document.to_dict(), sort_keys=False, default_flow_style=False)
    write_text_atomic(path, text, label="project file")
    LOGGER.info("Exported %d database(s) to %s.", len(databases), path)
    return document


def load_project(path: Path, catalog: EngineCatalog) -> ProjectFile:
    """Parse and validate the project file at *path*."""
    if not path.exists():
        raise NotFoundError(f"Project file '{path}' not found.")
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise PersistenceError(f"Failed to read project file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ValidationError(f"Project file {path} is not valid YAML: {exc}") from exc
    return parse_project(raw, catalog, source=path)


def parse_project(raw: Any, catalog: EngineCatalog, *, source: Path | None = None) -> ProjectFile:
    """Validate an already-decoded project document."""
    label = str(source) if source is not None else "project file"
    if not isinstance(raw, Mapping):
        raise ValidationError(f"{label} must contain a mapping at the top level.")

    version = raw.get("version")
    if version in (None, ""):
        raise ValidationError(f"{label}: missing required field 'version'.")

    databases_raw = raw.get("databases")
    if not isinstance(databases_raw, Mapping):
        raise ValidationError(f"{label}: missing or invalid field 'databases'.")

    databases: dict[str, DatabaseEntry] = {}
    for name, spec in databases_raw.items():
        databases[validate_instance_name(str(name))] = _parse_entry(str(name), spec, catalog)

    profiles = _parse_profiles(raw.get("profiles"), databases, label)
    project = raw.get("project")
    return ProjectFile(
        version=str(version),
        databases=databases,
        project=str(project) if project is not None else None,
        profiles=profiles,
    )


def sync_project(
    registry: InstanceRegistry,
    project: ProjectFile,
    *,
    profile: str | None = None,
    dry_run: bool = False,
) -> SyncResult:
    """Create every declared database that is not registered yet."""
    result = SyncResult()
    for name, entry in project.select(profile).items():
        if name in registry:
            result.skipped.append(name)
            continue
        if dry_run:
            result.created.append(name)
            continue
        try:
            registry.create(
                name,
                entry.engine,
                preferred_port=entry.port,
                env_overrides=entry.environment,
            )
        except HayaiError as exc:
            LOGGER.warning("Failed to create '%s' from project file: %s", name, exc)
            result.errors[name] = str(exc)
            continue
        result.created.append(name)
    return result


def _parse_entry(name: str, spec: object, catalog: EngineCatalog) -> DatabaseEntry:
    if not isinstance(spec, Mapping):
        raise ValidationError(f"Database '{name}': entry must be a mapping.")
    engine = spec.get("engine")
    if not engine:
        raise ValidationError(f"Database '{name}': missing required field 'engine'.")
    if not catalog.is_supported(str(engine)):
        raise ValidationError(f"Database '{name}': unsupported engine '{engine}'.")

    port = spec.get("port")
    if port is not None:
        if isinstance(port, bool) or not isinstance(port, int) or not MIN_PORT <= port <= MAX_PORT:
            raise ValidationError(f"Database '{name}': invalid port {port!r}.")

    environment = spec.get("environment") or {}
    if not isinstance(environment, Mapping):
        raise ValidationError(f"Database '{name}': environment must be a mapping.")
    return DatabaseEntry(
        engine=str(engine),
        port=port,
        environment={str(key): str(value) for key, value in environment.items()},
    )


def _parse_profiles(
    raw: object, databases: Mapping[str, DatabaseEntry], label: str
) -> dict[str, list[str]]:
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise ValidationError(f"{label}: 'profiles' must be a mapping.")
    profiles: dict[str, list[str]] = {}
    for profile, members in raw.items():
        if not isinstance(members, list):
            raise ValidationError(f"{label}: profile '{profile}' must be a list of names.")
        unknown = [str(item) for item in members if str(item) not in databases]
        if unknown:
            raise ValidationError(
                f"{label}: profile '{profile}' references undeclared databases: "
                f"{', '.join(unknown)}."
            )
        profiles[str(profile)] = [str(item) for item in members]
    return profiles


__all__ = [
    "DatabaseEntry",
    "ProjectFile",
    "SyncResult",
    "export_project",
    "load_project",
    "parse_project",
    "sync_project",
]
