"""State registry persistence tests."""
from __future__ import annotations

import json
from pathlib import Path

import pytest

from hayai.errors import PersistenceError
from hayai.envfile import project_env_file
from hayai.models import InstanceRecord
from hayai.state import INSTANCES_FILE, PORTS_FILE, StateRegistry, write_text_atomic


def test_read_missing_file_returns_none(tmp_path: Path) -> None:
    """Missing documents read as ``None``; helpers treat them as empty."""
    registry = StateRegistry(tmp_path)

    assert registry.read(INSTANCES_FILE) is None
    assert registry.read_instances() == {}
    assert registry.read_ports() == {}


def test_write_uses_two_space_indent(tmp_path: Path) -> None:
    """Documents are written as 2-space indented JSON objects."""
    registry = StateRegistry(tmp_path / "data")
    registry.write_ports({"5000": "main", "5001": "cache"})

    text = (tmp_path / "data" / PORTS_FILE).read_text(encoding="utf-8")
    assert text == json.dumps({"5000": "main", "5001": "cache"}, indent=2)
    assert registry.read_ports() == {"5000": "main", "5001": "cache"}


def test_write_instances_preserves_key_order(tmp_path: Path) -> None:
    """Record key order survives a write."""
    registry = StateRegistry(tmp_path)
    entry = {
        "name": "main",
        "engine": "postgresql",
        "port": 5000,
        "volume": "/tmp/main",
        "environment": {},
        "status": "stopped",
        "created_at": "2024-01-01T00:00:00+00:00",
        "connection_uri": "postgresql://u:p@localhost:5000/db",
    }
    registry.write_instances({"main": entry})

    loaded = json.loads((tmp_path / INSTANCES_FILE).read_text(encoding="utf-8"))
    assert list(loaded["main"].keys()) == list(entry.keys())


def test_write_leaves_no_temp_files(tmp_path: Path) -> None:
    """Atomic writes clean up their temporary file."""
    registry = StateRegistry(tmp_path)
    registry.write_instances({})

    assert sorted(p.name for p in tmp_path.iterdir()) == [INSTANCES_FILE]


def test_corrupt_document_raises_on_read(tmp_path: Path) -> None:
    """Raw reads surface corrupt JSON as a persistence error."""
    (tmp_path / INSTANCES_FILE).write_text("{not json", encoding="utf-8")
    registry = StateRegistry(tmp_path)

    with pytest.raises(PersistenceError):
        registry.read(INSTANCES_FILE)


def test_corrupt_document_treated_as_empty(
    tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    """Convenience readers log and fall back to empty state."""
    (tmp_path / PORTS_FILE).write_text("[1, 2, 3]", encoding="utf-8")
    registry = StateRegistry(tmp_path)

    with caplog.at_level("WARNING"):
        assert registry.read_ports() == {}
    assert "starting from empty state" in caplog.text


def test_malformed_instance_entries_are_skipped(tmp_path: Path) -> None:
    """Non-mapping registry entries are dropped."""
    (tmp_path / INSTANCES_FILE).write_text(
        json.dumps({"good": {"name": "good"}, "bad": "oops"}), encoding="utf-8"
    )
    registry = StateRegistry(tmp_path)

    assert list(registry.read_instances()) == ["good"]


def test_write_failure_raises(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Write failures propagate as persistence errors."""
    registry = StateRegistry(tmp_path)

    def fail_replace(src: object, dst: object) -> None:  # noqa: ARG001 - signature matches
        raise OSError("disk full")

    monkeypatch.setattr("hayai.state.registry.os.replace", fail_replace)

    with pytest.raises(PersistenceError):
        registry.write_ports({"5000": "main"})
    assert not (tmp_path / PORTS_FILE).exists()


def test_write_text_atomic_creates_parents(tmp_path: Path) -> None:
    """The shared writer creates missing directories and leaves no temp files."""
    target = tmp_path / "nested" / "docker-compose.yml"

    write_text_atomic(target, "services: {}\n", label="descriptor")

    assert target.read_text(encoding="utf-8") == "services: {}\n"
    assert [p.name for p in target.parent.iterdir()] == ["docker-compose.yml"]


def test_env_file_writes_share_atomic_writer(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Env projection goes through the same writer and keeps the old file on failure."""
    path = tmp_path / ".env"
    path.write_text("DEBUG=1\n", encoding="utf-8")
    record = InstanceRecord(
        name="main", engine="redis", port=5000, volume="/v", connection_uri="redis://a"
    )

    def fail_replace(src: object, dst: object) -> None:  # noqa: ARG001 - signature matches
        raise OSError("disk full")

    monkeypatch.setattr("hayai.state.registry.os.replace", fail_replace)

    with pytest.raises(PersistenceError, match="env file"):
        project_env_file(path, [record])
    assert path.read_text(encoding="utf-8") == "DEBUG=1\n"
    assert [p.name for p in tmp_path.iterdir()] == [".env"]
