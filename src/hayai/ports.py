"""Port allocation helpers for hayai.

The persisted map (``port-allocations.json``) records which instance owns
which host port. It can drift from reality (a crash before a port was released,
an unrelated process holding a port), so every candidate is also probed with a
live bind-then-release before it is handed out. The probe is what guarantees a
usable port; the map is the ownership record.
"""
from __future__ import annotations

import logging
import socket
import sys
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from .errors import PortExhaustionError, ValidationError
from .state import StateStore

LOGGER = logging.getLogger(__name__)

PROBE_HOST = "0.0.0.0"  # noqa: S104 - published container ports bind every interface
MIN_PORT = 1
MAX_PORT = 65535


def probe_port(port: int, host: str = PROBE_HOST) -> bool:
    """Return ``True`` when *port* can be bound on *host* right now."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        if sys.platform != "win32":
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((host, port))
        except OSError:
            return False
    return True


@dataclass(slots=True)
class PortAllocator:
    """Hand out unique, currently bindable ports from ``[start, end]``."""

    store: StateStore
    start: int
    end: int
    probe: Callable[[int], bool] | None = None
    _allocations: dict[int, str] = field(init=False, default_factory=dict)

    def __post_init__(self) -> None:
        """Validate the range and load the persisted map."""
        if not MIN_PORT <= self.start <= self.end <= MAX_PORT:
            raise ValidationError(
                f"Invalid port range {self.start}-{self.end}; expected "
                f"{MIN_PORT} <= start <= end <= {MAX_PORT}."
            )
        self._allocations = _parse_allocations(self.store.read_ports())

    # ------------------------------------------------------------------
    def allocate(self, owner: str, preferred_port: int | None = None) -> int:
        """Assign a port to *owner*, honouring *preferred_port* when usable."""
        owner = _normalize_owner(owner)
        if preferred_port is not None:
            _validate_port(preferred_port)
            if preferred_port not in self._allocations and self._is_bindable(preferred_port):
                return self._assign(preferred_port, owner)
            LOGGER.info(
                "Preferred port %s for '%s' is unavailable; scanning %s-%s.",
                preferred_port,
                owner,
                self.start,
                self.end,
            )

        for candidate in range(self.start, self.end + 1):
            if candidate in self._allocations:
                continue
            if self._is_bindable(candidate):
                return self._assign(candidate, owner)
            LOGGER.debug("Port %s is held by another process; skipping.", candidate)

        raise PortExhaustionError(
            f"No available ports in range {self.start}-{self.end} for '{owner}'."
        )

    def deallocate(self, port: int) -> None:
        """Release *port*; releasing an unallocated port is a no-op."""
        if self._allocations.pop(port, None) is None:
            return
        self._persist()

    def reconcile(self, expected: Mapping[int, str]) -> bool:
        """Make the map match *expected* (port -> owner) and report changes.

        Repairs the drift left when a previous invocation died between writing
        the port map and the instance registry.
        """
        current = dict(self._allocations)
        target = {int(port): owner for port, owner in expected.items() if port}
        if current == target:
            return False
        for port in sorted(set(current) - set(target)):
            LOGGER.warning("Releasing orphaned port %s (owner '%s').", port, current[port])
        for port in sorted(set(target) - set(current)):
            LOGGER.warning("Re-adopting port %s for instance '%s'.", port, target[port])
        self._allocations = target
        self._persist()
        return True

    # Read helpers ----------------------------------------------------
    def list_entries(self) -> list[dict[str, Any]]:
        """Return the current allocations sorted by port."""
        return [
            {"port": port, "name": owner}
            for port, owner in sorted(self._allocations.items())
        ]

    def owner_of(self, port: int) -> str | None:
        """Return the instance that owns *port*, if any."""
        return self._allocations.get(port)

    def port_for(self, owner: str) -> int | None:
        """Return the port owned by *owner*, if any."""
        for port, name in self._allocations.items():
            if name == owner:
                return port
        return None

    def is_allocated(self, port: int) -> bool:
        """Return ``True`` when *port* is recorded in the map."""
        return port in self._allocations

    def range_info(self) -> dict[str, int]:
        """Summarise range capacity versus current allocations."""
        total = self.end - self.start + 1
        in_range = sum(1 for port in self._allocations if self.start <= port <= self.end)
        return {
            "start": self.start,
            "end": self.end,
            "total": total,
            "allocated": in_range,
            "available": total - in_range,
        }

    # Internal helpers -------------------------------------------------
    def _is_bindable(self, port: int) -> bool:
        check = self.probe or probe_port
        return check(port)

    def _assign(self, port: int, owner: str) -> int:
        self._allocations[port] = owner
        self._persist()
        LOGGER.debug("Allocated port %s to '%s'.", port, owner)
        return port

    def _persist(self) -> None:
        payload = {str(port): owner for port, owner in sorted(self._allocations.items())}
        self.store.write_ports(payload)


def _parse_allocations(raw: Mapping[str, str]) -> dict[int, str]:
    allocations: dict[int, str] = {}
    for key, owner in raw.items():
        try:
            port = int(key)
        except (TypeError, ValueError):
            LOGGER.warning("Ignoring malformed port allocation key %r.", key)
            continue
        if not MIN_PORT <= port <= MAX_PORT or not str(owner).strip():
            LOGGER.warning("Ignoring invalid port allocation %r -> %r.", key, owner)
            continue
        allocations[port] = str(owner)
    return allocations


def _validate_port(port: int) -> None:
    if isinstance(port, bool) or not isinstance(port, int):
        raise ValidationError(f"Port must be an integer, got {port!r}.")
    if not MIN_PORT <= port <= MAX_PORT:
        raise ValidationError(f"Port {port} is outside {MIN_PORT}-{MAX_PORT}.")


def _normalize_owner(owner: str) -> str:
    normalized = owner.strip()
    if not normalized:
        raise ValidationError("Port owner must be a non-empty instance name.")
    return normalized


__all__ = ["PortAllocator", "probe_port"]
