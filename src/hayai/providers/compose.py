"""Container engine provider driving ``docker compose``."""
from __future__ import annotations

import logging
import shlex
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from ..errors import EngineInvocationError

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ComposeProvider:
    """Run compose verbs against a descriptor file.

    Commands are awaited to completion without a timeout: a hung engine
    process hangs the invoking command.
    """

    compose_bin: str = "docker compose"

    def command_prefix(self, descriptor: Path) -> list[str]:
        """Return the argv prefix addressing *descriptor*."""
        return [*shlex.split(self.compose_bin), "-f", str(descriptor)]

    def up(
        self, descriptor: Path, services: Sequence[str] = ()
    ) -> subprocess.CompletedProcess[str]:
        """Create and start *services* (all services when empty) detached."""
        return self._compose(descriptor, "up", "-d", *services)

    def stop(
        self, descriptor: Path, services: Sequence[str] = ()
    ) -> subprocess.CompletedProcess[str]:
        """Stop *services* (all services when empty)."""
        return self._compose(descriptor, "stop", *services)

    def rm(
        self, descriptor: Path, services: Sequence[str] = ()
    ) -> subprocess.CompletedProcess[str]:
        """Remove stopped containers for *services*."""
        return self._compose(descriptor, "rm", "-f", *services)

    def logs(
        self,
        descriptor: Path,
        service: str,
        *,
        tail: int | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Return a snapshot of the service's container logs."""
        args: list[str] = ["logs", "--no-color"]
        if tail is not None:
            args.extend(["--tail", str(tail)])
        args.append(service)
        return self._compose(descriptor, *args)

    def version(self) -> subprocess.CompletedProcess[str]:
        """Return the compose version output."""
        return self._run_command(
            [*shlex.split(self.compose_bin), "version"],
            error_prefix=f"{self.compose_bin} version",
        )

    # ------------------------------------------------------------------
    def _compose(self, descriptor: Path, verb: str, *args: str) -> subprocess.CompletedProcess[str]:
        return self._run_command(
            [*self.command_prefix(descriptor), verb, *args],
            error_prefix=f"{self.compose_bin} {verb}",
        )

    def _run_command(
        self,
        args: Sequence[str],
        *,
        error_prefix: str,
    ) -> subprocess.CompletedProcess[str]:
        LOGGER.debug("Running %s", shlex.join(args))
        try:
            result = subprocess.run(  # noqa: S603
                list(args),
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError as exc:
            raise EngineInvocationError(
                f"{args[0]} not found: {exc}",
                diagnostic=str(exc),
            ) from exc
        except OSError as exc:
            raise EngineInvocationError(
                f"{error_prefix} could not be executed: {exc}",
                diagnostic=str(exc),
            ) from exc
        if result.returncode != 0:
            stdout = getattr(result, "stdout", "") or ""
            stderr = getattr(result, "stderr", "") or ""
            message = stderr.strip() or stdout.strip() or "no output"
            raise EngineInvocationError(
                f"{error_prefix} failed (exit {result.returncode}): {message}",
                returncode=result.returncode,
                diagnostic=message,
            )
        return result


__all__ = ["ComposeProvider"]
