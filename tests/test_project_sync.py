"""Project file export, validation and sync tests."""
from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest
import yaml
from conftest import ProbeRecorder

from hayai.catalog import EngineCatalog
from hayai.errors import NotFoundError, ValidationError
from hayai.instances import InstanceRegistry
from hayai.project import export_project, load_project, parse_project, sync_project

RegistryFactory = Callable[..., InstanceRegistry]


def _write(path: Path, document: object) -> Path:
    path.write_text(yaml.safe_dump(document), encoding="utf-8")
    return path


def test_export_writes_declared_databases(make_registry: RegistryFactory, tmp_path: Path) -> None:
    """Export records engine, environment and only nonzero ports."""
    registry = make_registry()
    registry.create("cache", "redis", env_overrides={"REDIS_PASSWORD": "pw"})
    registry.create("files", "sqlite")
    path = tmp_path / ".hayaidb"

    export_project(registry, path, project="demo")

    doc = yaml.safe_load(path.read_text(encoding="utf-8"))
    assert doc["version"] == "1.0"
    assert doc["project"] == "demo"
    assert doc["databases"]["cache"] == {
        "engine": "redis",
        "port": 5000,
        "environment": {"REDIS_PASSWORD": "pw"},
    }
    assert doc["databases"]["files"] == {"engine": "sqlite"}


def test_load_missing_file(tmp_path: Path) -> None:
    """A missing project file is a not-found error."""
    with pytest.raises(NotFoundError):
        load_project(tmp_path / ".hayaidb", EngineCatalog())


@pytest.mark.parametrize(
    ("document", "message"),
    [
        ({"databases": {}}, "version"),
        ({"version": "1.0"}, "databases"),
        ({"version": "1.0", "databases": {"a": {}}}, "engine"),
        ({"version": "1.0", "databases": {"a": {"engine": "oracle"}}}, "unsupported"),
        ({"version": "1.0", "databases": {"a": {"engine": "redis", "port": 70000}}}, "port"),
        (
            {"version": "1.0", "databases": {"a": {"engine": "redis"}}, "profiles": {"dev": ["b"]}},
            "undeclared",
        ),
    ],
)
def test_invalid_documents_rejected(document: object, message: str) -> None:
    """Validation names the offending field."""
    with pytest.raises(ValidationError, match=message):
        parse_project(document, EngineCatalog())


def test_sync_creates_missing_and_skips_existing(
    make_registry: RegistryFactory, tmp_path: Path
) -> None:
    """Existing names are skipped; the rest are created."""
    registry = make_registry()
    registry.create("cache", "redis")
    path = _write(
        tmp_path / ".hayaidb",
        {
            "version": "1.0",
            "databases": {
                "cache": {"engine": "redis"},
                "main": {"engine": "postgresql", "port": 5005},
            },
        },
    )

    result = sync_project(registry, load_project(path, EngineCatalog()))

    assert result.created == ["main"]
    assert result.skipped == ["cache"]
    assert result.ok
    assert registry.require("main").port == 5005


def test_sync_collects_per_database_errors(
    make_registry: RegistryFactory, tmp_path: Path
) -> None:
    """One failing database does not abort the others."""
    registry = make_registry(start=5000, end=5000)
    project = parse_project(
        {
            "version": "1.0",
            "databases": {
                "one": {"engine": "redis"},
                "two": {"engine": "redis"},
                "three": {"engine": "sqlite"},
            },
        },
        EngineCatalog(),
    )

    result = sync_project(registry, project)

    assert result.created == ["one", "three"]
    assert list(result.errors) == ["two"]
    assert not result.ok


def test_sync_profile_and_dry_run(make_registry: RegistryFactory, probe: ProbeRecorder) -> None:
    """Profiles restrict the set; dry runs create nothing."""
    registry = make_registry()
    project = parse_project(
        {
            "version": "1.0",
            "databases": {"a": {"engine": "redis"}, "b": {"engine": "sqlite"}},
            "profiles": {"dev": ["b"]},
        },
        EngineCatalog(),
    )

    planned = sync_project(registry, project, profile="dev", dry_run=True)

    assert planned.created == ["b"]
    assert len(registry) == 0
    assert probe.checked == []
    with pytest.raises(ValidationError):
        sync_project(registry, project, profile="prod")
