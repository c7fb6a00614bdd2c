"""Configuration loader for hayai.

Configuration values are merged from several sources, later sources winning:

1. Built-in defaults.
2. ``hayai.config.yaml`` in the working directory (or an override path).
3. Environment variables prefixed with ``HAYAI_``.
4. Explicit overrides supplied programmatically (reserved for CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export HAYAI_PORTS__START=7000
    export HAYAI_DOCKER__COMPOSE_BIN="podman compose"

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The resulting configuration is exposed as immutable
``dataclasses``.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass
from pathlib import Path
from typing import cast

import yaml

from .errors import HayaiError

ENV_PREFIX = "HAYAI_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}


class ConfigError(HayaiError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class PortsConfig:
    """Inclusive port range handed out by the allocator."""

    start: int = 5000
    end: int = 6000

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"start": self.start, "end": self.end}


@dataclass(frozen=True)
class DockerConfig:
    """Container engine integration settings."""

    compose_file: Path = Path("docker-compose.yml")
    network_name: str = "hayai-network"
    compose_bin: str = "docker compose"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "compose_file": str(self.compose_file),
            "network_name": self.network_name,
            "compose_bin": self.compose_bin,
        }


@dataclass(frozen=True)
class DefaultsConfig:
    """Global defaults applied to every generated service."""

    restart_policy: str = "unless-stopped"
    volume_driver: str = "local"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "restart_policy": self.restart_policy,
            "volume_driver": self.volume_driver,
        }


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for hayai."""

    config_file: Path
    data_dir: Path
    logs_dir: Path
    log_level: str
    env_file: Path
    project_file: Path
    docker: DockerConfig
    ports: PortsConfig
    defaults: DefaultsConfig

    @property
    def instances_file(self) -> Path:
        """Return the path of the instance registry document."""
        return self.data_dir / "instances.json"

    @property
    def ports_file(self) -> Path:
        """Return the path of the port allocation document."""
        return self.data_dir / "port-allocations.json"

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "data_dir": str(self.data_dir),
            "logs_dir": str(self.logs_dir),
            "log_level": self.log_level,
            "env_file": str(self.env_file),
            "project_file": str(self.project_file),
            "docker": self.docker.to_dict(),
            "ports": self.ports.to_dict(),
            "defaults": self.defaults.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "hayai.config.yaml",
    "data_dir": "./data",
    "logs_dir": None,  # derived from data_dir when absent
    "log_level": "info",
    "env_file": ".env",
    "project_file": ".hayaidb",
    "docker": {
        "compose_file": "docker-compose.yml",
        "network_name": "hayai-network",
        "compose_bin": "docker compose",
    },
    "ports": {
        "start": 5000,
        "end": 6000,
    },
    "defaults": {
        "restart_policy": "unless-stopped",
        "volume_driver": "local",
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
ALLOWED_LOG_LEVELS = {"debug", "info", "warning", "error"}
ALLOWED_RESTART_POLICIES = {"no", "always", "on-failure", "unless-stopped"}
_SECTION_KEYS: dict[str, set[str]] = {
    "docker": {"compose_file", "network_name", "compose_bin"},
    "ports": {"start", "end"},
    "defaults": {"restart_policy", "volume_driver"},
}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override)
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR])
    return Path(default_path)


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    for section, allowed in _SECTION_KEYS.items():
        mapping = _as_dict(raw.get(section), section)
        unknown = set(mapping.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")

    level = raw.get("log_level")
    if level is not None and str(level).lower() not in ALLOWED_LOG_LEVELS:
        allowed_levels = ", ".join(sorted(ALLOWED_LOG_LEVELS))
        raise ConfigError(f"Unsupported log level '{level}'. Allowed: {allowed_levels}.")

    defaults_map = _as_dict(raw.get("defaults"), "defaults")
    policy = defaults_map.get("restart_policy")
    if policy is not None and str(policy) not in ALLOWED_RESTART_POLICIES:
        allowed_policies = ", ".join(sorted(ALLOWED_RESTART_POLICIES))
        raise ConfigError(
            f"Unsupported restart policy '{policy}'. Allowed: {allowed_policies}."
        )


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    config_file = _to_path(raw.get("config_file"))
    data_dir = _to_path(raw.get("data_dir"))
    logs_dir_value = raw.get("logs_dir")
    logs_dir = _to_path(logs_dir_value) if logs_dir_value else data_dir / "logs"

    ports_mapping = _as_dict(raw.get("ports"), "ports")
    start = _expect_int(ports_mapping.get("start"), "ports.start", default=5000)
    end = _expect_int(ports_mapping.get("end"), "ports.end", default=6000)
    if not 1 <= start <= 65535 or not 1 <= end <= 65535:
        raise ConfigError("ports.start and ports.end must be between 1 and 65535.")
    if start > end:
        raise ConfigError(f"ports.start ({start}) must not exceed ports.end ({end}).")

    docker_mapping = _as_dict(raw.get("docker"), "docker")
    compose_bin = str(docker_mapping.get("compose_bin", "docker compose")).strip()
    if not compose_bin:
        raise ConfigError("docker.compose_bin must be a non-empty command.")
    network_name = str(docker_mapping.get("network_name", "hayai-network")).strip()
    if not network_name:
        raise ConfigError("docker.network_name must be a non-empty string.")
    docker = DockerConfig(
        compose_file=_to_path(docker_mapping.get("compose_file", "docker-compose.yml")),
        network_name=network_name,
        compose_bin=compose_bin,
    )

    defaults_mapping = _as_dict(raw.get("defaults"), "defaults")
    defaults = DefaultsConfig(
        restart_policy=str(defaults_mapping.get("restart_policy", "unless-stopped")),
        volume_driver=str(defaults_mapping.get("volume_driver", "local")),
    )

    return AppConfig(
        config_file=config_file,
        data_dir=data_dir,
        logs_dir=logs_dir,
        log_level=str(raw.get("log_level", "info")).lower(),
        env_file=_to_path(raw.get("env_file", ".env")),
        project_file=_to_path(raw.get("project_file", ".hayaidb")),
        docker=docker,
        ports=PortsConfig(start=start, end=end),
        defaults=defaults,
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            child: MutableMapping[str, object] = {}
            current[segment] = child
            current = child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        else:
            result[key] = value
    return result


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_int(value: object | None, label: str, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AppConfig",
    "ConfigError",
    "DefaultsConfig",
    "DockerConfig",
    "PortsConfig",
    "load_config",
]
