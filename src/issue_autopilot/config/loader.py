"""
issue-autopilot runtime config loader.

Effective config is assembled with deterministic precedence:
CLI overrides > ``AUTOPILOT_`` environment variables > TOML file > defaults.
Relative paths are normalized against the config file location.
"""

from __future__ import annotations

import json
import os
import shlex
import tomllib
from collections.abc import Iterator, Mapping
from pathlib import Path
from typing import Any, Final

from issue_autopilot.config.schema import (
    PATH_FIELDS,
    apply_profile_overlay,
    assert_valid_config,
    default_config,
    merge_config,
    redact_config,
)

DEFAULT_CONFIG_FILE: Final[str] = "autopilot.toml"
ENV_PREFIX: Final[str] = "AUTOPILOT_"


_TRUTHY: Final[frozenset[str]] = frozenset({"1", "true", "yes", "on"})
_FALSY: Final[frozenset[str]] = frozenset({"0", "false", "no", "off"})

# Leaves that cannot be set from a single environment variable.
_ENV_EXCLUDED: Final[tuple[tuple[str, ...], ...]] = (("review", "custom_rules"),)

ConfigPath = tuple[str, ...]


class ConfigLoadError(ValueError):
    """Raised when config cannot be loaded or overrides cannot be coerced."""


def load_config(
    config_path: str | Path | None = None,
    *,
    profile: str | None = None,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Load effective config with deterministic precedence: CLI > env > file > defaults.

    ``config_path`` defaults to ``./autopilot.toml``; a missing default file is
    not an error, a missing explicit one is. ``cli_overrides`` keys are dotted
    config paths such as ``"resolution.max_iterations"``.
    """

    source = (
        Path.cwd() / DEFAULT_CONFIG_FILE if config_path is None else Path(config_path).expanduser()
    ).resolve()
    env = os.environ if environ is None else environ
    overrides = dict(cli_overrides or {})

    effective = assert_valid_config(
        merge_config(default_config(), _read_toml(source, required=config_path is not None))
    )
    chosen = _pick_profile(profile, overrides, env)
    if chosen is not None:
        effective = apply_profile_overlay(effective, chosen)

    for layer in (_env_layer(effective, env), _cli_layer(overrides)):
        effective = merge_config(effective, layer)
    return normalize_paths(assert_valid_config(effective), base_dir=source.parent)


def normalize_paths(config: Mapping[str, object], *, base_dir: Path) -> dict[str, Any]:
    """Make every configured path absolute, anchored at ``base_dir``."""

    normalized = merge_config({}, config)
    for dotted in PATH_FIELDS:
        section = normalized.get(dotted[0])
        raw = section.get(dotted[1]) if isinstance(section, dict) else None
        if isinstance(raw, str) and raw:
            section[dotted[1]] = _absolute(raw, base_dir)
    return normalized


def dump_effective_config(config: Mapping[str, object]) -> str:
    """Return a deterministic JSON dump of the redacted effective config."""

    return json.dumps(redact_config(config), sort_keys=True, indent=2, ensure_ascii=False)


def env_var_for(path: ConfigPath) -> str:
    """``("resolution", "max_iterations")`` -> ``AUTOPILOT_RESOLUTION_MAX_ITERATIONS``."""

    return ENV_PREFIX + "_".join(path).upper()


def _read_toml(path: Path, *, required: bool) -> dict[str, Any]:
    try:
        raw = path.read_bytes()
    except FileNotFoundError:
        if required:
            raise ConfigLoadError(f"config file not found: {path}") from None
        return {}
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc
    try:
        return tomllib.loads(raw.decode("utf-8"))
    except (tomllib.TOMLDecodeError, UnicodeDecodeError) as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc


def _pick_profile(
    explicit: str | None, overrides: Mapping[str, object], env: Mapping[str, str]
) -> str | None:
    candidate: object = explicit
    if candidate is None:
        candidate = overrides.get("profile", env.get(f"{ENV_PREFIX}PROFILE"))
    if candidate is None:
        return None
    if not isinstance(candidate, str):
        raise ConfigLoadError("cli override 'profile' must be a string")
    return candidate.strip() or None


def _env_layer(config: Mapping[str, object], env: Mapping[str, str]) -> dict[str, Any]:
    """Overrides for every scalar (or word-list) leaf that has an env variable set."""

    layer: dict[str, Any] = {}
    for path, current in _leaves(config):
        if path[0] == "profiles" or path in _ENV_EXCLUDED:
            continue
        name = env_var_for(path)
        if name in env:
            _assign(layer, path, _coerce_like(current, env[name], name, path))
    return layer


def _cli_layer(overrides: Mapping[str, object]) -> dict[str, Any]:
    layer: dict[str, Any] = {}
    for key in sorted(overrides):
        if key == "profile":
            continue
        path = tuple(part for part in key.split(".") if part)
        if not path:
            raise ConfigLoadError(f"invalid CLI override key {key!r}")
        value = overrides[key]
        _assign(layer, path, merge_config({}, value) if isinstance(value, Mapping) else value)
    return layer


def _leaves(
    payload: Mapping[str, object], prefix: ConfigPath = ()
) -> Iterator[tuple[ConfigPath, object]]:
    for key in sorted(payload):
        value = payload[key]
        if isinstance(value, Mapping):
            yield from _leaves(value, (*prefix, key))
        else:
            yield (*prefix, key), value


def _coerce_like(current: object, raw: str, name: str, path: ConfigPath) -> object:
    """Parse ``raw`` as the same type as the leaf's current value."""

    text = raw.strip()
    where = f"{name} -> {'.'.join(path)}"
    if isinstance(current, bool):
        if text.lower() in _TRUTHY:
            return True
        if text.lower() in _FALSY:
            return False
        raise ConfigLoadError(f"{where} must be a boolean (true/false/1/0/yes/no/on/off)")
    if isinstance(current, int):
        try:
            return int(text)
        except ValueError as exc:
            raise ConfigLoadError(f"{where} must be an integer") from exc
    if isinstance(current, float):
        try:
            return float(text)
        except ValueError as exc:
            raise ConfigLoadError(f"{where} must be a number") from exc
    if isinstance(current, list):
        # Argument vectors such as resolution.test_command use shell quoting.
        try:
            return shlex.split(text)
        except ValueError as exc:
            raise ConfigLoadError(f"{where} is not a valid word list: {exc}") from exc
    return text


def _assign(target: dict[str, Any], path: ConfigPath, value: object) -> None:
    node = target
    for part in path[:-1]:
        child = node.get(part)
        if not isinstance(child, dict):
            child = node[part] = {}
        node = child
    node[path[-1]] = value


def _absolute(raw: str, base_dir: Path) -> str:
    candidate = Path(os.path.expandvars(raw)).expanduser()
    return Path(os.path.normpath(base_dir / candidate)).as_posix()


__all__ = [
    "ConfigLoadError",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "dump_effective_config",
    "env_var_for",
    "load_config",
    "normalize_paths",
]
