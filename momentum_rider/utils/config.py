"""Configuration management for Momentum Rider.

This module provides YAML configuration loading, dot-notation access and
environment variable overrides for the optimizer settings.
"""

import copy
import os
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from momentum_rider.utils.exceptions import ConfigurationError

ENV_PREFIX = "MOMENTUM_RIDER_"

# Mirrors config/default.yaml so the library works when installed without it
DEFAULT_SETTINGS: dict[str, Any] = {
    "logging": {"level": "INFO"},
    "optimizer": {
        "default_strategy": "multi-share",
        "fallback_strategy": "price-efficient",
        "enable_fallback": True,
        "percentage_epsilon": 0.01,
    },
    "solver": {
        "enabled": True,
        "time_limit": 0.5,
        "budget_weight": 1.0,
        "fairness_weight": 0.0,
    },
    "tolerance": {
        "band": 5.0,
        "leftover_threshold": 2.0,
        "max_iterations": 10,
        "convergence_epsilon": 0.01,
        "max_relaxation": 3.0,
    },
    "momentum": {
        "horizons": [3, 6, 9, 12],
        "cache_ttl": 3600,
        "inter_call_delay": 0.2,
        "history_years": 2,
    },
}


class Config:
    """Simple configuration loader and accessor.

    Loads YAML configuration files and provides dict-like access to settings.

    Example:
        >>> config = Config.from_file("config/default.yaml")
        >>> time_limit = config.get("solver.time_limit", 0.5)
    """

    def __init__(self, config_dict: dict[str, Any]) -> None:
        """Initialize with configuration dictionary.

        Args:
            config_dict: Configuration data as nested dictionary
        """
        self._config = config_dict

    @classmethod
    def from_file(cls, filepath: str | Path) -> "Config":
        """Load configuration from YAML file.

        Args:
            filepath: Path to YAML configuration file

        Returns:
            Config instance with loaded configuration

        Raises:
            FileNotFoundError: If config file doesn't exist
            yaml.YAMLError: If YAML parsing fails
        """
        path = Path(filepath)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {filepath}")

        with open(path, "r", encoding="utf-8") as f:
            config_dict = yaml.safe_load(f)

        if config_dict is None:
            config_dict = {}

        return cls(config_dict)

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value using dot notation.

        Args:
            key: Configuration key (supports dot notation for nested keys)
            default: Default value if key not found

        Returns:
            Configuration value or default

        Example:
            >>> config.get("tolerance.band")
            5.0
            >>> config.get("missing.key", "fallback")
            'fallback'
        """
        keys = key.split(".")
        value = self._config

        for k in keys:
            if isinstance(value, dict):
                value = value.get(k)
                if value is None:
                    return default
            else:
                return default

        return value

    def section(self, key: str) -> dict[str, Any]:
        """Get a nested section as a plain dict (empty if missing)."""
        value = self.get(key, {})
        if not isinstance(value, dict):
            raise ConfigurationError(f"Configuration section '{key}' is not a mapping")
        return dict(value)

    def __getitem__(self, key: str) -> Any:
        """Get configuration value using bracket notation.

        Raises:
            KeyError: If key not found
        """
        value = self.get(key)
        if value is None:
            raise KeyError(f"Configuration key not found: {key}")
        return value

    def to_dict(self) -> dict[str, Any]:
        """Get the full configuration as dictionary."""
        return self._config.copy()


def _merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _coerce(raw: str) -> Any:
    """Parse an environment string into bool/int/float when it looks like one."""
    lowered = raw.strip().lower()
    if lowered in ("true", "yes", "on"):
        return True
    if lowered in ("false", "no", "off"):
        return False
    try:
        return int(raw)
    except ValueError:
        pass
    try:
        return float(raw)
    except ValueError:
        return raw


def apply_env_overrides(
    config_dict: dict[str, Any],
    environ: dict[str, str] | None = None,
) -> dict[str, Any]:
    """Overlay ``MOMENTUM_RIDER_<SECTION>__<KEY>`` variables onto a config dict.

    Example:
        MOMENTUM_RIDER_SOLVER__TIME_LIMIT=0.25 sets ``solver.time_limit``.
    """
    environ = os.environ if environ is None else environ
    result = copy.deepcopy(config_dict)

    for name, raw in environ.items():
        if not name.startswith(ENV_PREFIX):
            continue
        path = name[len(ENV_PREFIX):].lower().split("__")
        if not all(path):
            raise ConfigurationError(f"Malformed configuration variable: {name}")

        node = result
        for part in path[:-1]:
            child = node.setdefault(part, {})
            if not isinstance(child, dict):
                raise ConfigurationError(
                    f"{name} overrides a non-mapping key '{part}'"
                )
            node = child
        node[path[-1]] = _coerce(raw)

    return result


def load_config(filepath: str | Path = None) -> Config:
    """Helper function to load configuration.

    Args:
        filepath: Path to YAML configuration file. If None, uses default path.

    Returns:
        Config instance
    """
    if filepath is None:
        root_dir = Path(__file__).parent.parent.parent
        filepath = root_dir / "config" / "default.yaml"
    return Config.from_file(filepath)


def load_settings(filepath: str | Path = None, env_file: str | Path = None) -> Config:
    """Load optimizer settings: built-in defaults, YAML file, then environment.

    Missing YAML files are tolerated (defaults apply); a ``.env`` file is read
    when present so local overrides don't need exporting.

    Args:
        filepath: YAML configuration file (defaults to config/default.yaml)
        env_file: Path to a .env file (defaults to project root .env)

    Returns:
        Config instance with merged settings
    """
    root_dir = Path(__file__).parent.parent.parent
    env_path = Path(env_file) if env_file else root_dir / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    settings = DEFAULT_SETTINGS
    try:
        settings = _merge(settings, load_config(filepath).to_dict())
    except FileNotFoundError:
        if filepath is not None:
            raise

    return Config(apply_env_overrides(settings))
