"""YAML configuration template and loader."""

from __future__ import annotations

import copy
import logging
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

LOGGER = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "config.yaml"

DEFAULT_CONFIG_TEMPLATE: Dict[str, Any] = {
    "project": {
        "name": "",
        "description": "",
    },
    "paths": {
        "app_dir": ".",
        "out_dir": "out",
        "logs": ".",
    },
    "models": {
        "default": "gpt-5-mini",
        "timeout": 120,
        "max_attempts": 2,
        "retry_delay": 0.5,
    },
    "budgets": {
        "max_turns": 16,
        "max_tool_calls_per_turn": 4,
        "max_patches": 8,
    },
    "policy": {
        "path": "",
    },
    "review": {
        "auto_approve": False,
    },
    "logging": {
        "level": "WARNING",
    },
}


class ConfigError(ValueError):
    """Raised when the configuration file cannot be read or has the wrong shape."""


def copy_config_template() -> Dict[str, Any]:
    """Return a deep copy of the default configuration template."""
    return copy.deepcopy(DEFAULT_CONFIG_TEMPLATE)


def _merge(base: Dict[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = value
    return base


def load_config(config_path: Path) -> Dict[str, Any]:
    """Load ``config_path`` and merge it over :data:`DEFAULT_CONFIG_TEMPLATE`.

    A missing file yields the template unchanged.
    """
    config = copy_config_template()
    if not config_path.exists():
        LOGGER.debug("Config %s not found; using defaults", config_path)
        return config

    try:
        with config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as error:
        raise ConfigError(f"Failed to parse config {config_path}: {error}") from error
    except OSError as error:
        raise ConfigError(f"Unable to read config {config_path}: {error}") from error

    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a mapping at the top level.")
    for section in ("paths", "models", "budgets", "policy", "review", "logging"):
        value = data.get(section)
        if value is not None and not isinstance(value, dict):
            raise ConfigError(f"Config section '{section}' must be a mapping.")
    return _merge(config, data)


def write_config(config_path: Path, config_data: Dict[str, Any]) -> None:
    """Persist configuration data to disk with stable formatting."""
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(config_data, handle, sort_keys=False)


def resolve_path(config: Dict[str, Any], key: str, config_path: Path) -> Optional[Path]:
    """Resolve ``paths.<key>`` relative to the directory holding the config file."""
    value = (config.get("paths") or {}).get(key)
    if not isinstance(value, str) or not value.strip():
        return None
    candidate = Path(value.strip())
    if not candidate.is_absolute():
        candidate = (config_path.parent / candidate).resolve()
    return candidate


def config_int(config: Dict[str, Any], section: str, key: str) -> int:
    """Read a positive integer setting, falling back to the template default."""
    default = DEFAULT_CONFIG_TEMPLATE[section][key]
    value = (config.get(section) or {}).get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigError(f"{section}.{key} must be a positive integer, got {value!r}")
    return value


__all__ = [
    "ConfigError",
    "DEFAULT_CONFIG_NAME",
    "DEFAULT_CONFIG_TEMPLATE",
    "config_int",
    "copy_config_template",
    "load_config",
    "resolve_path",
    "write_config",
]
