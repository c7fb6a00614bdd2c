"""Bring running containers in line with the registry through the engine."""
from __future__ import annotations

import logging
import subprocess
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path

from .catalog import EngineCatalog
from .descriptor import DescriptorSettings, render, synthesize
from .errors import PersistenceError
from .models import InstanceRecord
from .providers.compose import ComposeProvider
from .state import write_text_atomic

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class Reconciler:
    """Regenerate the descriptor, then invoke the container engine.

    Every engine call is preceded by a fresh synthesis because the registry
    may have changed since the descriptor file was last written. Failures are
    raised as :class:`~hayai.errors.EngineInvocationError`; nothing is retried.
    """

    provider: ComposeProvider
    catalog: EngineCatalog
    settings: DescriptorSettings
    descriptor_path: Path

    def render_descriptor(self, instances: Iterable[InstanceRecord]) -> str:
        """Return the descriptor text for *instances* without writing it."""
        return render(synthesize(instances, self.catalog, self.settings))

    def write_descriptor(self, instances: Iterable[InstanceRecord]) -> bool:
        """Write the descriptor file; return ``True`` when its bytes changed."""
        text = self.render_descriptor(instances)
        path = self.descriptor_path
        try:
            if path.exists() and path.read_text(encoding="utf-8") == text:
                return False
        except OSError as exc:
            raise PersistenceError(f"Failed to read descriptor {path}: {exc}") from exc

        write_text_atomic(path, text, label="descriptor")
        LOGGER.debug("Descriptor written to %s.", path)
        return True

    def up(
        self,
        instances: Iterable[InstanceRecord],
        services: Sequence[str] | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Start *services* (every service when ``None``)."""
        self.write_descriptor(instances)
        return self.provider.up(self.descriptor_path, list(services or ()))

    def stop(
        self,
        instances: Iterable[InstanceRecord],
        services: Sequence[str] | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Stop *services* (every service when ``None``)."""
        self.write_descriptor(instances)
        return self.provider.stop(self.descriptor_path, list(services or ()))

    def remove(
        self,
        instances: Iterable[InstanceRecord],
        services: Sequence[str],
    ) -> None:
        """Stop and delete the containers backing *services*."""
        self.write_descriptor(instances)
        self.provider.stop(self.descriptor_path, list(services))
        self.provider.rm(self.descriptor_path, list(services))

    def logs(
        self,
        instances: Iterable[InstanceRecord],
        service: str,
        *,
        tail: int | None = None,
    ) -> str:
        """Return a log snapshot for *service*."""
        self.write_descriptor(instances)
        result = self.provider.logs(self.descriptor_path, service, tail=tail)
        return result.stdout or ""


__all__ = ["Reconciler"]
