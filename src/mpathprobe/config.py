"""Configuration loader for mpathprobe.

Configuration values are merged from these sources, later ones winning:

1. Built-in defaults.
2. ``/etc/mpathprobe/config.yml`` (or an override path).
3. Environment variables prefixed with ``MPATHPROBE_``.
4. Explicit overrides supplied programmatically.

Environment keys use double underscores to express nesting, e.g.::

    export MPATHPROBE_CACHE__STALE_AFTER=300
    export MPATHPROBE_MULTIPATHD__BIN=/usr/sbin/multipathd

Values are coerced via PyYAML's ``safe_load`` so that numbers and nulls are
parsed naturally. The cache location is deliberately absent from the command
line: producer and consumer must agree on it, so it lives in shared
configuration only.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass
from pathlib import Path
from typing import cast

import yaml

from .cache import (
    DEFAULT_ABSENT_AFTER,
    DEFAULT_CACHE_MODE,
    DEFAULT_CACHE_PATH,
    DEFAULT_STALE_AFTER,
)
from .models import DEFAULT_PROBE_NAME
from .providers.multipathd import DEFAULT_MULTIPATHD_BIN

ENV_PREFIX = "MPATHPROBE_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class CacheConfig:
    """Location, permissions and age thresholds of the shared cache file."""

    path: Path = DEFAULT_CACHE_PATH
    stale_after: float = DEFAULT_STALE_AFTER
    absent_after: float = DEFAULT_ABSENT_AFTER
    mode: int = DEFAULT_CACHE_MODE


@dataclass(frozen=True)
class MultipathdConfig:
    """How to reach the multipathd helper."""

    bin: str = DEFAULT_MULTIPATHD_BIN
    timeout: float | None = None


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for mpathprobe."""

    config_file: Path
    probe_name: str
    logs_dir: Path
    cache: CacheConfig
    multipathd: MultipathdConfig


DEFAULTS: dict[str, object] = {
    "config_file": "/etc/mpathprobe/config.yml",
    "probe_name": DEFAULT_PROBE_NAME,
    "logs_dir": "/var/log/mpathprobe",
    "cache": {
        "path": str(DEFAULT_CACHE_PATH),
        "stale_after": DEFAULT_STALE_AFTER,
        "absent_after": DEFAULT_ABSENT_AFTER,
        "mode": f"{DEFAULT_CACHE_MODE:04o}",
    },
    "multipathd": {
        "bin": DEFAULT_MULTIPATHD_BIN,
        "timeout": None,
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
ALLOWED_CACHE_KEYS = {"path", "stale_after", "absent_after", "mode"}
ALLOWED_MULTIPATHD_KEYS = {"bin", "timeout"}


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
    except OSError as exc:
        raise ConfigError(f"Cannot read config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    cache_map = _as_dict(raw.get("cache"), "cache")
    unknown = set(cache_map.keys()) - ALLOWED_CACHE_KEYS
    if unknown:
        joined = ", ".join(sorted(unknown))
        raise ConfigError(f"Unknown cache configuration keys: {joined}.")

    multipathd_map = _as_dict(raw.get("multipathd"), "multipathd")
    unknown = set(multipathd_map.keys()) - ALLOWED_MULTIPATHD_KEYS
    if unknown:
        joined = ", ".join(sorted(unknown))
        raise ConfigError(f"Unknown multipathd configuration keys: {joined}.")

    probe_name = raw.get("probe_name")
    if not isinstance(probe_name, str) or not probe_name.strip():
        raise ConfigError("probe_name must be a non-empty string.")
    if any(char.isspace() for char in probe_name.strip()):
        raise ConfigError("probe_name must not contain whitespace.")


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    config_file = _to_path(raw.get("config_file"))
    logs_dir = _to_path(raw.get("logs_dir"))
    probe_name = _expect_str(raw.get("probe_name"), "probe_name").strip()

    cache_mapping = _as_dict(raw.get("cache"), "cache")
    stale_after = _expect_positive_float(
        cache_mapping.get("stale_after"), "cache.stale_after", default=DEFAULT_STALE_AFTER
    )
    absent_after = _expect_positive_float(
        cache_mapping.get("absent_after"), "cache.absent_after", default=DEFAULT_ABSENT_AFTER
    )
    if stale_after > absent_after:
        raise ConfigError(
            "cache.stale_after must not exceed cache.absent_after "
            f"({stale_after:g} > {absent_after:g})."
        )
    cache = CacheConfig(
        path=_to_path(cache_mapping.get("path", str(DEFAULT_CACHE_PATH))),
        stale_after=stale_after,
        absent_after=absent_after,
        mode=_parse_permission_mode(
            cache_mapping.get("mode", f"{DEFAULT_CACHE_MODE:04o}"), "cache.mode"
        ),
    )

    multipathd_mapping = _as_dict(raw.get("multipathd"), "multipathd")
    bin_value = multipathd_mapping.get("bin", DEFAULT_MULTIPATHD_BIN)
    if bin_value is None or not str(bin_value).strip():
        raise ConfigError("multipathd.bin must be a non-empty string.")
    timeout_value = multipathd_mapping.get("timeout")
    multipathd = MultipathdConfig(
        bin=str(bin_value).strip(),
        timeout=(
            None
            if timeout_value in (None, "")
            else _expect_positive_float(timeout_value, "multipathd.timeout", default=1.0)
        ),
    )

    return AppConfig(
        config_file=config_file,
        probe_name=probe_name,
        logs_dir=logs_dir,
        cache=cache,
        multipathd=multipathd,
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
        else:
            result[key] = value
    return result


def _parse_permission_mode(value: object, label: str) -> int:
    if value is None:
        raise ConfigError(f"{label} must be specified.")
    if isinstance(value, bool):
        raise ConfigError(f"{label} must be an octal integer string. Got boolean {value!r}.")
    if isinstance(value, int):
        mode = value
    elif isinstance(value, str):
        text = value.strip().lower()
        if not text:
            raise ConfigError(f"{label} must be an octal integer string.")
        try:
            mode = int(text, 8)
        except ValueError as exc:
            raise ConfigError(f"{label} must be an octal integer string.") from exc
    else:
        raise ConfigError(f"{label} must be an octal integer or string.")
    if mode < 0 or mode > 0o777:
        raise ConfigError(f"{label} must be between 0000 and 0777 inclusive.")
    return mode


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
    "CacheConfig",
    "ConfigError",
    "MultipathdConfig",
    "load_config",
]
