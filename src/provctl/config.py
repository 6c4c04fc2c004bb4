"""Configuration loader for provctl.

Configuration values are read from multiple sources, later ones winning:

1. Built-in defaults.
2. ``/etc/provctl/config.yml`` (or an override path).
3. Environment variables prefixed with ``PROVCTL_``.
4. Explicit overrides supplied programmatically (used for CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export PROVCTL_NETWORK__TIMEOUT=10
    export PROVCTL_ANCHOR_COMPONENT=org.wildfly.core:wildfly-cli

Values are coerced via PyYAML's ``safe_load`` so that booleans, numbers and
even lists (``PROVCTL_FALLBACK_REPOSITORIES``) are parsed naturally. The
resulting configuration is exposed as immutable ``dataclasses``.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import cast

import yaml

from .channels import ChannelError, Repository
from .errors import ProvctlError
from .model import Identity

ENV_PREFIX = "PROVCTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}


class ConfigError(ProvctlError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class NetworkConfig:
    """Remote repository access settings."""

    timeout: float = 30.0

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"timeout": self.timeout}


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for provctl."""

    config_file: Path
    logs_dir: Path
    cache_dir: Path
    lock_timeout: float
    anchor_component: Identity | None
    network: NetworkConfig
    fallback_repositories: tuple[Repository, ...]

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "logs_dir": str(self.logs_dir),
            "cache_dir": str(self.cache_dir),
            "lock_timeout": self.lock_timeout,
            "anchor_component": str(self.anchor_component) if self.anchor_component else None,
            "network": self.network.to_dict(),
            "fallback_repositories": [repo.to_dict() for repo in self.fallback_repositories],
        }


DEFAULTS: dict[str, object] = {
    "config_file": "/etc/provctl/config.yml",
    "logs_dir": "/var/log/provctl",
    "cache_dir": "~/.cache/provctl/repository",
    "lock_timeout": 30.0,
    "anchor_component": None,
    "network": {
        "timeout": 30.0,
    },
    "fallback_repositories": [
        {"id": "maven-central", "url": "https://repo1.maven.org/maven2/"},
    ],
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
ALLOWED_NETWORK_KEYS = {"timeout"}


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

    lock_timeout = raw.get("lock_timeout")
    if lock_timeout is not None:
        _expect_positive_float(lock_timeout, "lock_timeout", default=30.0)

    network = _as_dict(raw.get("network"), "network")
    unknown_network = set(network.keys()) - ALLOWED_NETWORK_KEYS
    if unknown_network:
        joined = ", ".join(sorted(unknown_network))
        raise ConfigError(f"Unknown keys for network: {joined}.")

    anchor = raw.get("anchor_component")
    if anchor is not None and not isinstance(anchor, str):
        raise ConfigError("anchor_component must be a 'group:artifact' string or null.")

    repositories = raw.get("fallback_repositories")
    if repositories is not None:
        _as_sequence(repositories, "fallback_repositories")


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    network_raw = _as_dict(raw.get("network"), "network")
    network = NetworkConfig(
        timeout=_expect_positive_float(network_raw.get("timeout"), "network.timeout", default=30.0)
    )

    anchor_raw = raw.get("anchor_component")
    anchor: Identity | None = None
    if isinstance(anchor_raw, str) and anchor_raw.strip():
        try:
            anchor = Identity.parse(anchor_raw)
        except ValueError as exc:
            raise ConfigError(f"Invalid anchor_component: {exc}") from exc

    repositories: list[Repository] = []
    raw_repositories = raw.get("fallback_repositories")
    if raw_repositories is not None:
        for index, entry in enumerate(_as_sequence(raw_repositories, "fallback_repositories")):
            try:
                repositories.append(
                    Repository.from_dict(entry, context=f"fallback_repositories[{index}]")
                )
            except ChannelError as exc:
                raise ConfigError(str(exc)) from exc

    return AppConfig(
        config_file=_to_path(raw.get("config_file")),
        logs_dir=_to_path(raw.get("logs_dir")),
        cache_dir=_to_path(raw.get("cache_dir")),
        lock_timeout=_expect_positive_float(raw.get("lock_timeout"), "lock_timeout", default=30.0),
        anchor_component=anchor,
        network=network,
        fallback_repositories=tuple(repositories),
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
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
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
        elif isinstance(value, list):
            result[key] = [dict(item) if isinstance(item, Mapping) else item for item in value]
        else:
            result[key] = value
    return result


def _as_sequence(value: object, label: str) -> Sequence[object]:
    if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    return value


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


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _expect_positive_float(
    value: object | None,
    label: str,
    *,
    default: float,
) -> float:
    if value is None:
        return float(default)
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a number. Got boolean {value!r}.")
    if isinstance(value, (int, float)):
        numeric = float(value)
    elif isinstance(value, str):
        try:
            numeric = float(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    else:
        raise ConfigError(
            f"Expected {label} to be numeric. Got {type(value).__name__}."
        )
    if numeric <= 0:
        raise ConfigError(f"{label} must be greater than zero. Got {numeric}.")
    return numeric


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
    "NetworkConfig",
    "load_config",
]
