"""Pytest configuration helpers and shared fakes for the test suite."""

from __future__ import annotations

import subprocess
from collections.abc import Callable, Mapping, Sequence
from pathlib import Path
from typing import Any

import pytest

from hayai.catalog import EngineCatalog
from hayai.descriptor import DescriptorSettings
from hayai.errors import EngineInvocationError
from hayai.instances import InstanceRegistry
from hayai.ports import PortAllocator
from hayai.reconciler import Reconciler


class MemoryStateStore:
    """In-memory stand-in for :class:`hayai.state.StateRegistry`."""

    def __init__(
        self,
        instances: Mapping[str, Mapping[str, Any]] | None = None,
        ports: Mapping[str, str] | None = None,
    ) -> None:
        """Seed the store with optional initial documents."""
        self.instances: dict[str, dict[str, Any]] = {
            name: dict(entry) for name, entry in (instances or {}).items()
        }
        self.ports: dict[str, str] = dict(ports or {})
        self.instance_writes = 0
        self.port_writes = 0

    def read_instances(self) -> dict[str, dict[str, Any]]:
        return {name: dict(entry) for name, entry in self.instances.items()}

    def write_instances(self, instances: Mapping[str, Mapping[str, Any]]) -> None:
        self.instances = {name: dict(entry) for name, entry in instances.items()}
        self.instance_writes += 1

    def read_ports(self) -> dict[str, str]:
        return dict(self.ports)

    def write_ports(self, ports: Mapping[str, str]) -> None:
        self.ports = dict(ports)
        self.port_writes += 1


class RecordingProvider:
    """Compose provider double that records verbs instead of running them."""

    def __init__(self, fail: Sequence[str] = ()) -> None:
        """Fail every verb listed in *fail* with an engine error."""
        self.fail = set(fail)
        self.calls: list[tuple[str, list[str]]] = []

    def _record(self, verb: str, services: Sequence[str]) -> subprocess.CompletedProcess[str]:
        self.calls.append((verb, list(services)))
        if verb in self.fail:
            raise EngineInvocationError(
                f"docker compose {verb} failed (exit 1): daemon not running",
                returncode=1,
                diagnostic="daemon not running",
            )
        return subprocess.CompletedProcess(args=[verb], returncode=0, stdout="", stderr="")

    def up(
        self, descriptor: Path, services: Sequence[str] = ()
    ) -> subprocess.CompletedProcess[str]:
        return self._record("up", services)

    def stop(
        self, descriptor: Path, services: Sequence[str] = ()
    ) -> subprocess.CompletedProcess[str]:
        return self._record("stop", services)

    def rm(
        self, descriptor: Path, services: Sequence[str] = ()
    ) -> subprocess.CompletedProcess[str]:
        return self._record("rm", services)

    def logs(
        self, descriptor: Path, service: str, *, tail: int | None = None
    ) -> subprocess.CompletedProcess[str]:
        result = self._record("logs", [service])
        result.stdout = f"log line for {service}\n"
        return result


class ProbeRecorder:
    """Port probe double; ports listed in *busy* refuse to bind."""

    def __init__(self, busy: Sequence[int] = ()) -> None:
        """Record the ports considered held by other processes."""
        self.busy = set(busy)
        self.checked: list[int] = []

    def __call__(self, port: int) -> bool:
        self.checked.append(port)
        return port not in self.busy


@pytest.fixture
def store() -> MemoryStateStore:
    """Return an empty in-memory state store."""
    return MemoryStateStore()


@pytest.fixture
def probe() -> ProbeRecorder:
    """Return a probe that reports every port as free."""
    return ProbeRecorder()


@pytest.fixture
def provider() -> RecordingProvider:
    """Return a provider double that always succeeds."""
    return RecordingProvider()


@pytest.fixture
def make_registry(
    tmp_path: Path,
    store: MemoryStateStore,
    probe: ProbeRecorder,
    provider: RecordingProvider,
) -> Callable[..., InstanceRegistry]:
    """Return a factory wiring an :class:`InstanceRegistry` over the fakes."""

    def factory(
        *,
        state: MemoryStateStore | None = None,
        engine: RecordingProvider | None = None,
        start: int = 5000,
        end: int = 5010,
        descriptor: Path | None = None,
    ) -> InstanceRegistry:
        backing = state or store
        catalog = EngineCatalog()
        ports = PortAllocator(store=backing, start=start, end=end, probe=probe)
        reconciler = Reconciler(
            provider=engine or provider,  # type: ignore[arg-type]
            catalog=catalog,
            settings=DescriptorSettings(),
            descriptor_path=descriptor or tmp_path / "docker-compose.yml",
        )
        return InstanceRegistry(
            store=backing,
            ports=ports,
            catalog=catalog,
            reconciler=reconciler,
            data_dir=tmp_path / "data",
        )

    return factory
