"""Per-command runtime wiring."""
from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from .catalog import EngineCatalog
from .config import AppConfig
from .descriptor import DescriptorSettings
from .instances import InstanceRegistry
from .logging import StructuredLogger
from .ports import PortAllocator
from .providers import ComposeProvider
from .reconciler import Reconciler
from .state import StateRegistry, StateStore


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    store: StateStore
    catalog: EngineCatalog
    ports: PortAllocator
    provider: ComposeProvider
    reconciler: Reconciler
    instances: InstanceRegistry
    logger: StructuredLogger


def build_runtime(
    config: AppConfig,
    *,
    store: StateStore | None = None,
    provider: ComposeProvider | None = None,
    probe: Callable[[int], bool] | None = None,
) -> RuntimeContext:
    """Load persisted state and assemble the collaborators for one command."""
    if store is None:
        store = StateRegistry(config.data_dir)
    catalog = EngineCatalog()
    ports = PortAllocator(
        store=store,
        start=config.ports.start,
        end=config.ports.end,
        probe=probe,
    )
    if provider is None:
        provider = ComposeProvider(compose_bin=config.docker.compose_bin)
    reconciler = Reconciler(
        provider=provider,
        catalog=catalog,
        settings=DescriptorSettings(
            network_name=config.docker.network_name,
            restart_policy=config.defaults.restart_policy,
            volume_driver=config.defaults.volume_driver,
        ),
        descriptor_path=config.docker.compose_file,
    )
    instances = InstanceRegistry(
        store=store,
        ports=ports,
        catalog=catalog,
        reconciler=reconciler,
        data_dir=config.data_dir,
    )
    return RuntimeContext(
        config=config,
        store=store,
        catalog=catalog,
        ports=ports,
        provider=provider,
        reconciler=reconciler,
        instances=instances,
        logger=StructuredLogger(config.logs_dir),
    )


__all__ = ["RuntimeContext", "build_runtime"]
