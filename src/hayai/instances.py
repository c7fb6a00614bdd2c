"""Instance registry: the persisted name -> instance map and its lifecycle.

State is loaded once when the registry is constructed, mutated in memory and
written back whole after every mutation. Lifecycle operations go through the
:class:`~hayai.reconciler.Reconciler`; the registry only records outcomes.
"""
from __future__ import annotations

import logging
import shutil
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from .catalog import EngineCatalog, render_connection_uri
from .descriptor import service_name
from .envfile import env_var_name
from .errors import (
    DuplicateNameError,
    EngineInvocationError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from .models import InstanceRecord, InstanceStatus, validate_instance_name
from .ports import PortAllocator
from .reconciler import Reconciler
from .state import StateStore

LOGGER = logging.getLogger(__name__)

VOLUMES_DIR = "volumes"


@dataclass(slots=True)
class InstanceRegistry:
    """Own instance records, their ports and their volume directories."""

    store: StateStore
    ports: PortAllocator
    catalog: EngineCatalog
    reconciler: Reconciler
    data_dir: Path
    _instances: dict[str, InstanceRecord] = field(init=False, default_factory=dict)

    def __post_init__(self) -> None:
        """Load the registry and repair port-map drift from earlier crashes."""
        for key, entry in self.store.read_instances().items():
            try:
                record = InstanceRecord.from_dict({"name": key, **entry})
            except ValidationError as exc:
                LOGGER.warning("Skipping unreadable registry entry '%s': %s", key, exc)
                continue
            self._instances[record.name] = record
        self.ports.reconcile(self._expected_ports())

    # Reads -------------------------------------------------------------
    def get(self, name: str) -> InstanceRecord | None:
        """Return a copy of the record for *name*, if registered."""
        record = self._instances.get(name)
        return record.copy() if record is not None else None

    def require(self, name: str) -> InstanceRecord:
        """Return the record for *name* or raise :class:`NotFoundError`."""
        record = self.get(name)
        if record is None:
            raise NotFoundError(f"Database instance '{name}' not found.")
        return record

    def all(self) -> list[InstanceRecord]:
        """Return every record in registration order."""
        return [record.copy() for record in self._instances.values()]

    def filter(self, status: InstanceStatus | str) -> list[InstanceRecord]:
        """Return records whose status equals *status*."""
        wanted = InstanceStatus(status)
        return [record.copy() for record in self._instances.values() if record.status is wanted]

    def names(self) -> list[str]:
        """Return registered instance names."""
        return list(self._instances)

    def volume_path(self, name: str) -> Path:
        """Return the directory owned by instance *name*."""
        return self.data_dir / VOLUMES_DIR / name

    def __contains__(self, name: object) -> bool:
        return name in self._instances

    def __len__(self) -> int:
        return len(self._instances)

    # Mutations ---------------------------------------------------------
    def create(
        self,
        name: str,
        engine: str,
        *,
        preferred_port: int | None = None,
        env_overrides: Mapping[str, str] | None = None,
    ) -> InstanceRecord:
        """Register a new instance and provision its port and volume."""
        name = validate_instance_name(name)
        if name in self._instances:
            raise DuplicateNameError(f"Database instance '{name}' already exists.")
        variable = env_var_name(name)
        for other in self._instances:
            if env_var_name(other) == variable:
                raise DuplicateNameError(
                    f"Database instance '{other}' already uses {variable}; "
                    f"choose a name other than '{name}'."
                )
        spec = self.catalog.lookup(engine)
        environment = {**spec.environment, **_normalize_env(env_overrides)}

        volume = self.volume_path(name)
        if volume.is_dir() and any(volume.iterdir()):
            raise PersistenceError(
                f"Volume directory {volume} already exists and is not empty."
            )

        port = 0
        if spec.default_port:
            port = self.ports.allocate(name, preferred_port)
        elif preferred_port is not None:
            LOGGER.warning(
                "Engine '%s' is embedded and exposes no port; ignoring port %s.",
                spec.id,
                preferred_port,
            )

        try:
            volume.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            if port:
                self.ports.deallocate(port)
            raise PersistenceError(f"Failed to create volume directory {volume}: {exc}") from exc

        try:
            uri = render_connection_uri(spec, environment, port=port, name=name)
        except ValidationError:
            if port:
                self.ports.deallocate(port)
            raise

        record = InstanceRecord(
            name=name,
            engine=spec.id,
            port=port,
            volume=str(volume.resolve()),
            environment=environment,
            status=InstanceStatus.STOPPED,
            created_at=_now_iso(),
            connection_uri=uri,
        )
        self._instances[name] = record
        self._persist()
        self.reconciler.write_descriptor(self._records())
        LOGGER.info("Created instance '%s' (%s) on port %s.", name, spec.id, port)
        return record.copy()

    def remove(self, name: str) -> InstanceRecord:
        """Remove *name*, tolerating an unreachable container engine."""
        record = self._require_record(name)
        try:
            self.reconciler.remove(self._records(), [service_name(name)])
        except (EngineInvocationError, PersistenceError) as exc:
            LOGGER.warning("Failed to stop/remove container for '%s': %s", name, exc)

        del self._instances[name]
        self._persist()
        if record.port:
            self.ports.deallocate(record.port)
        try:
            self.reconciler.write_descriptor(self._records())
        except PersistenceError as exc:
            # rewritten before the next engine call
            LOGGER.warning("Descriptor not updated after removing '%s': %s", name, exc)

        volume = Path(record.volume)
        if volume.exists():
            try:
                shutil.rmtree(volume)
            except OSError as exc:
                raise PersistenceError(
                    f"Instance '{name}' was removed but its volume {volume} "
                    f"could not be deleted: {exc}"
                ) from exc
        LOGGER.info("Removed instance '%s'.", name)
        return record.copy()

    def start(self, name: str) -> InstanceRecord:
        """Start the container for *name*."""
        return self._transition(
            name,
            self.reconciler.up,
            InstanceStatus.RUNNING,
            "start",
        )

    def stop(self, name: str) -> InstanceRecord:
        """Stop the container for *name*."""
        return self._transition(
            name,
            self.reconciler.stop,
            InstanceStatus.STOPPED,
            "stop",
        )

    def start_all(self) -> list[InstanceRecord]:
        """Start every instance with a single engine invocation."""
        return self._transition_all(self.reconciler.up, InstanceStatus.RUNNING, "start")

    def stop_all(self) -> list[InstanceRecord]:
        """Stop every instance with a single engine invocation."""
        return self._transition_all(self.reconciler.stop, InstanceStatus.STOPPED, "stop")

    # Internal helpers -------------------------------------------------
    def _transition(
        self,
        name: str,
        action: Callable[..., object],
        target: InstanceStatus,
        verb: str,
    ) -> InstanceRecord:
        record = self._require_record(name)
        try:
            action(self._records(), [service_name(name)])
        except EngineInvocationError as exc:
            record.status = InstanceStatus.ERROR
            self._persist()
            raise EngineInvocationError(
                f"Failed to {verb} database '{name}': {exc}",
                returncode=exc.returncode,
                diagnostic=exc.diagnostic,
            ) from exc
        record.status = target
        self._persist()
        return record.copy()

    def _transition_all(
        self,
        action: Callable[..., object],
        target: InstanceStatus,
        verb: str,
    ) -> list[InstanceRecord]:
        try:
            action(self._records(), None)
        except EngineInvocationError as exc:
            for record in self._instances.values():
                record.status = InstanceStatus.ERROR
            self._persist()
            raise EngineInvocationError(
                f"Failed to {verb} databases: {exc}",
                returncode=exc.returncode,
                diagnostic=exc.diagnostic,
            ) from exc
        for record in self._instances.values():
            record.status = target
        self._persist()
        return self.all()

    def _require_record(self, name: str) -> InstanceRecord:
        record = self._instances.get(name)
        if record is None:
            raise NotFoundError(f"Database instance '{name}' not found.")
        return record

    def _records(self) -> list[InstanceRecord]:
        return list(self._instances.values())

    def _expected_ports(self) -> dict[int, str]:
        expected: dict[int, str] = {}
        for record in self._instances.values():
            if not record.port:
                continue
            owner = expected.setdefault(record.port, record.name)
            if owner != record.name:
                LOGGER.warning(
                    "Instances '%s' and '%s' both claim port %s.",
                    owner,
                    record.name,
                    record.port,
                )
        return expected

    def _persist(self) -> None:
        self.store.write_instances(
            {name: record.to_dict() for name, record in self._instances.items()}
        )


def _normalize_env(overrides: Mapping[str, str] | None) -> dict[str, str]:
    if not overrides:
        return {}
    normalized: dict[str, str] = {}
    for key, value in overrides.items():
        key_text = str(key).strip()
        if not key_text or "=" in key_text:
            raise ValidationError(f"Invalid environment variable name {key!r}.")
        normalized[key_text] = str(value)
    return normalized


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


__all__ = ["VOLUMES_DIR", "InstanceRegistry"]
