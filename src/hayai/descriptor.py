"""Synthesize the container-orchestration descriptor from registry state.

The descriptor (a compose file) is a pure projection of the registered
instances plus the engine catalog and global defaults. It is regenerated
before every reconciliation and never edited by hand; ``instances.json``
stays authoritative. Output is deterministic so an unchanged registry renders
to identical bytes and the container engine sees a no-op.
"""
from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass

import yaml

from .catalog import EngineCatalog, render_healthcheck_test
from .models import InstanceRecord

HEADER = "# Generated by hayai from instances.json. Do not edit by hand.\n"


@dataclass(frozen=True)
class DescriptorSettings:
    """Global values applied to every service."""

    network_name: str = "hayai-network"
    restart_policy: str = "unless-stopped"
    volume_driver: str = "local"


def service_name(instance_name: str) -> str:
    """Return the compose service name for an instance."""
    return f"{instance_name}-db"


def synthesize(
    instances: Iterable[InstanceRecord],
    catalog: EngineCatalog,
    settings: DescriptorSettings,
) -> dict[str, object]:
    """Build the descriptor mapping for *instances*."""
    services: dict[str, object] = {}
    volumes: dict[str, object] = {}
    for record in sorted(instances, key=lambda item: item.name):
        spec = catalog.lookup(record.engine)
        service: dict[str, object] = {"image": spec.image}
        if record.port:
            service["ports"] = [f"{record.port}:{spec.default_port}"]
        service["volumes"] = [f"{record.volume}:{spec.volume_path}"]
        if record.environment:
            service["environment"] = {
                key: _escape_interpolation(value)
                for key, value in sorted(record.environment.items())
            }
        service["restart"] = settings.restart_policy
        if spec.healthcheck is not None:
            check = spec.healthcheck
            service["healthcheck"] = {
                "test": [
                    "CMD-SHELL",
                    _escape_interpolation(render_healthcheck_test(check, record.environment)),
                ],
                "interval": check.interval,
                "timeout": check.timeout,
                "retries": check.retries,
            }
        service["networks"] = [settings.network_name]
        services[service_name(record.name)] = service
        volumes[f"{record.name}-data"] = {"driver": settings.volume_driver}

    return {
        "services": services,
        "volumes": volumes,
        "networks": {settings.network_name: {"driver": "bridge"}},
    }


def render(descriptor: Mapping[str, object]) -> str:
    """Serialise *descriptor* to YAML text."""
    body = yaml.safe_dump(
        dict(descriptor),
        sort_keys=False,
        default_flow_style=False,
        width=120,
    )
    return HEADER + body


def _escape_interpolation(value: str) -> str:
    # compose expands ``$VAR``; ``$$`` is a literal dollar sign
    return value.replace("$", "$$")


__all__ = ["DescriptorSettings", "HEADER", "render", "service_name", "synthesize"]
