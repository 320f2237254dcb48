"""Centralized configuration loader for YAML-based configuration.

This module provides functions to load configuration from YAML files with:
- Environment variable overrides (env var → YAML → defaults)
- Type coercion (string to float, bool, int)
- Schema validation using dataclasses
- Graceful degradation (missing files use defaults)
"""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml  # type: ignore

logger = logging.getLogger(__name__)

VALID_DEFAULT_JOINS = ("left", "inner", "full")


def get_project_root() -> Path:
    """
    Get project root directory.

    Uses pattern: config_loader.py → core/ → relational_dm/ → src/ → project_root

    Returns:
        Path to project root directory

    Raises:
        ValueError: If config/ directory is not found at the detected project root
    """
    current_file = Path(__file__)
    project_root = current_file.parent.parent.parent.parent

    config_dir = project_root / "config"
    if not config_dir.is_dir():
        raise ValueError(
            f"Project root detection failed: config/ directory not found at {config_dir}. "
            f"Detected project root: {project_root}."
        )

    return project_root


def _default_config_path(filename: str) -> Path | None:
    """
    Locate a config file: DM_CONFIG_DIR env var first, then <project_root>/config.

    Returns None when neither exists (e.g. installed as a wheel), so callers fall back to defaults.
    """
    config_dir = os.getenv("DM_CONFIG_DIR")
    if config_dir:
        return Path(config_dir) / filename

    try:
        return get_project_root() / "config" / filename
    except ValueError:
        return None


def _coerce_type(value: Any, target_type: type) -> Any:
    """
    Coerce value to target type.

    Handles:
    - String "5" → int 5
    - String "true"/"false" → bool True/False (case-insensitive)
    - String "30.0" → float 30.0

    Raises:
        ValueError: If coercion fails
    """
    if value is None:
        return None

    if isinstance(value, target_type):
        return value

    if target_type is bool:
        if isinstance(value, str):
            return value.lower() in ("true", "1", "yes", "on")
        return bool(value)

    if target_type is float:
        return float(value)

    if target_type is int:
        if isinstance(value, str):
            return int(float(value))
        return int(value)

    if target_type is str:
        return str(value)

    return value


def _apply_env_overrides(config: dict[str, Any], env_mapping: dict[str, str]) -> dict[str, Any]:
    """
    Apply environment variable overrides to config.

    Args:
        config: Configuration dictionary
        env_mapping: Env var name → config key

    Returns:
        Config with env var overrides applied
    """
    result = config.copy()

    for env_key, config_key in env_mapping.items():
        env_value = os.getenv(env_key)
        if env_value is None:
            continue

        target_type = type(result[config_key])
        try:
            result[config_key] = _coerce_type(env_value, target_type)
        except (ValueError, TypeError) as e:
            logger.warning(f"Failed to coerce env var {env_key}={env_value} to {target_type.__name__}: {e}")

    return result


def _read_yaml(config_path: Path) -> dict[str, Any]:
    """
    Read a YAML mapping; missing file → {}.

    Raises:
        ValueError: If YAML is invalid or not a mapping
    """
    if not config_path.exists():
        logger.debug(f"Config file not found at {config_path}, using defaults")
        return {}

    try:
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ValueError(f"Invalid config in {config_path}: expected a mapping, got {type(data).__name__}")

    return data


@dataclass
class DmConfigDefaults:
    """Default values for relational model configuration."""

    duplicate_sample_size: int = 5  # Max duplicate values reported by key checks
    missing_sample_size: int = 5  # Max missing values reported by subset checks
    default_join: str = "left"  # Join used by flatten/squash when none is given

    def to_dict(self) -> dict[str, Any]:
        """Convert dataclass to dictionary."""
        return {
            "duplicate_sample_size": self.duplicate_sample_size,
            "missing_sample_size": self.missing_sample_size,
            "default_join": self.default_join,
        }


@dataclass(frozen=True)
class DmSettings:
    """Validated relational model settings."""

    duplicate_sample_size: int
    missing_sample_size: int
    default_join: str


def load_dm_config(config_path: Path | None = None) -> dict[str, Any]:
    """
    Load relational model config from YAML with env var overrides.

    Precedence: Environment variable → YAML value → Default value

    Args:
        config_path: Optional path to config file. If None, uses default location.

    Returns:
        dict with keys duplicate_sample_size, missing_sample_size, default_join

    Raises:
        ValueError: If YAML is invalid or a value fails validation
    """
    defaults = DmConfigDefaults().to_dict()

    if config_path is None:
        config_path = _default_config_path("dm.yaml")

    config = defaults.copy()
    yaml_data = _read_yaml(config_path) if config_path is not None else {}
    for key, value in yaml_data.items():
        if key not in defaults:
            logger.warning(f"Ignoring unknown config key '{key}' in {config_path}")
            continue
        target_type = type(defaults[key])
        try:
            config[key] = _coerce_type(value, target_type)
        except (ValueError, TypeError) as e:
            raise ValueError(
                f"Type coercion failed for config {key}={value}: expected {target_type.__name__}. Error: {e}"
            ) from e

    env_mapping = {
        "DM_DUPLICATE_SAMPLE_SIZE": "duplicate_sample_size",
        "DM_MISSING_SAMPLE_SIZE": "missing_sample_size",
        "DM_DEFAULT_JOIN": "default_join",
    }
    config = _apply_env_overrides(config, env_mapping)

    if config["duplicate_sample_size"] < 1 or config["missing_sample_size"] < 1:
        raise ValueError("Sample sizes must be at least 1")
    if config["default_join"] not in VALID_DEFAULT_JOINS:
        raise ValueError(f"default_join must be one of {VALID_DEFAULT_JOINS}, got '{config['default_join']}'")

    return config


@lru_cache(maxsize=1)
def get_dm_settings() -> DmSettings:
    """Load settings once per process. Call ``get_dm_settings.cache_clear()`` to reload."""
    return DmSettings(**load_dm_config())


@dataclass
class LoggingConfigDefaults:
    """Default values for logging configuration."""

    root_level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    module_levels: dict[str, str] | None = None
    reduce_noise: dict[str, str] | None = None

    def __post_init__(self) -> None:
        """Initialize default dict values."""
        if self.module_levels is None:
            self.module_levels = {
                "relational_dm.core": "INFO",
                "relational_dm.storage": "INFO",
            }
        if self.reduce_noise is None:
            self.reduce_noise = {
                "duckdb": "WARNING",
            }

    def to_dict(self) -> dict[str, Any]:
        """Convert dataclass to dictionary."""
        return {
            "root_level": self.root_level,
            "format": self.format,
            "module_levels": self.module_levels.copy() if self.module_levels else {},
            "reduce_noise": self.reduce_noise.copy() if self.reduce_noise else {},
        }


def load_logging_config(config_path: Path | None = None) -> dict[str, Any]:
    """
    Load logging config from YAML.

    Args:
        config_path: Optional path to config file. If None, uses default location.

    Returns:
        dict with keys:
        - root_level: str
        - format: str
        - module_levels: dict[str, str]
        - reduce_noise: dict[str, str]

    Raises:
        ValueError: If YAML is invalid
    """
    defaults = LoggingConfigDefaults().to_dict()

    if config_path is None:
        config_path = _default_config_path("logging.yaml")

    config = defaults.copy()
    yaml_data = _read_yaml(config_path) if config_path is not None else {}
    for key, value in yaml_data.items():
        if key not in defaults:
            continue
        if key in ("module_levels", "reduce_noise"):
            # Merge dicts
            if isinstance(value, dict):
                config[key].update(value)
        else:
            config[key] = value

    env_level = os.getenv("DM_LOG_LEVEL")
    if env_level:
        config["root_level"] = env_level.upper()

    return config
