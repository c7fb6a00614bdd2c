"""Instance record types shared by the registry, synthesizer and CLI."""
from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from .errors import ValidationError

NAME_PATTERN = re.compile(r"[A-Za-z0-9_-]+")


class InstanceStatus(str, Enum):
    """Last known lifecycle state of an instance."""

    STOPPED = "stopped"
    RUNNING = "running"
    ERROR = "error"


@dataclass(slots=True)
class InstanceRecord:
    """One registered database instance."""

    name: str
    engine: str
    port: int
    volume: str
    environment: dict[str, str] = field(default_factory=dict)
    status: InstanceStatus = InstanceStatus.STOPPED
    created_at: str = ""
    connection_uri: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Return the on-disk representation (key order is part of the format)."""
        return {
            "name": self.name,
            "engine": self.engine,
            "port": self.port,
            "volume": self.volume,
            "environment": dict(self.environment),
            "status": self.status.value,
            "created_at": self.created_at,
            "connection_uri": self.connection_uri,
        }

    def copy(self) -> InstanceRecord:
        """Return a detached copy so callers cannot mutate registry state."""
        return replace(self, environment=dict(self.environment))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> InstanceRecord:
        """Build a record from its persisted form."""
        name = validate_instance_name(str(data.get("name", "")))
        engine = str(data.get("engine", "")).strip()
        if not engine:
            raise ValidationError(f"Instance '{name}' is missing an engine.")

        port_value = data.get("port", 0)
        if isinstance(port_value, bool) or not isinstance(port_value, int):
            raise ValidationError(f"Instance '{name}' has a non-integer port {port_value!r}.")

        environment = data.get("environment") or {}
        if not isinstance(environment, Mapping):
            raise ValidationError(f"Instance '{name}' environment must be a mapping.")

        status_value = str(data.get("status", InstanceStatus.STOPPED.value))
        try:
            status = InstanceStatus(status_value)
        except ValueError as exc:
            raise ValidationError(
                f"Instance '{name}' has unknown status '{status_value}'."
            ) from exc

        return cls(
            name=name,
            engine=engine,
            port=port_value,
            volume=str(data.get("volume", "")),
            environment={str(key): str(value) for key, value in environment.items()},
            status=status,
            created_at=str(data.get("created_at", "")),
            connection_uri=str(data.get("connection_uri", "")),
        )


def validate_instance_name(name: str) -> str:
    """Validate and normalise an instance name."""
    normalised = name.strip()
    if not normalised:
        raise ValidationError("Instance name must be a non-empty string.")
    if not NAME_PATTERN.fullmatch(normalised):
        raise ValidationError(
            f"Instance name '{normalised}' must only contain letters, digits, '-' or '_'."
        )
    return normalised


__all__ = ["InstanceRecord", "InstanceStatus", "NAME_PATTERN", "validate_instance_name"]
