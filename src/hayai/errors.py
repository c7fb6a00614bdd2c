"""Error taxonomy shared by the orchestrator and the CLI.

Each error carries the :class:`~hayai.exit_codes.ExitCode` the CLI should
terminate with so commands can map failures without inspecting messages.
"""
from __future__ import annotations

from .exit_codes import ExitCode


class HayaiError(RuntimeError):
    """Base class for orchestrator failures."""

    exit_code: ExitCode = ExitCode.VALIDATION


class ValidationError(HayaiError):
    """Raised for malformed names, ports, engines or project files."""


class DuplicateNameError(HayaiError):
    """Raised when an instance name is already registered."""


class NotFoundError(HayaiError):
    """Raised when an instance (or input file) does not exist."""


class PortExhaustionError(HayaiError):
    """Raised when no port in the configured range can be bound."""

    exit_code = ExitCode.ENVIRONMENT


class PersistenceError(HayaiError):
    """Raised when reading or writing persisted state fails."""

    exit_code = ExitCode.ENVIRONMENT


class EngineInvocationError(HayaiError):
    """Raised when the container engine exits nonzero or cannot be executed."""

    exit_code = ExitCode.PROVIDER

    def __init__(
        self,
        message: str,
        *,
        returncode: int | None = None,
        diagnostic: str = "",
    ) -> None:
        """Record the failing exit status and captured output."""
        super().__init__(message)
        self.returncode = returncode
        self.diagnostic = diagnostic


__all__ = [
    "DuplicateNameError",
    "EngineInvocationError",
    "HayaiError",
    "NotFoundError",
    "PersistenceError",
    "PortExhaustionError",
    "ValidationError",
]
