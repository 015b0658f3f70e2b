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
from pathlib import Path
from typing import Any

import yaml  # type: ignore

logger = logging.getLogger(__name__)


def get_project_root() -> Path:
    """
    Get project root directory.

    Uses pattern: config_loader.py → core/ → hcp_analytics/ → src/ → project_root

    Validates that the config/ directory exists to ensure correct project root detection.

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
            f"Detected project root: {project_root}. "
            f"If project structure has changed, update get_project_root() in config_loader.py"
        )

    return project_root


def _default_config_path(filename: str) -> Path | None:
    """Resolve config/<filename> under the project root, None when running from an installed wheel."""
    try:
        return get_project_root() / "config" / filename
    except ValueError as e:
        logger.debug(f"No project config directory ({e}), using defaults")
        return None


def _coerce_type(value: Any, target_type: type) -> Any:
    """
    Coerce value to target type.

    Handles:
    - String "30.0" → float 30.0
    - String "true"/"false" → bool True/False (case-insensitive)
    - String "123" → int 123

    Raises:
        ValueError: If coercion fails
    """
    if value is None:
        return None

    if isinstance(value, target_type) and not (target_type is int and isinstance(value, bool)):
        return value

    if target_type is bool:
        if isinstance(value, str):
            return value.lower() in ("true", "1", "yes", "on")
        return bool(value)

    if target_type is float:
        return float(value)

    if target_type is int:
        if isinstance(value, str):
            return int(float(value))  # Handle "30.0" → 30
        return int(value)

    if target_type is str:
        return str(value)

    return value


def _get_env_var(key: str, default: Any = None) -> str | None:
    """Get environment variable value."""
    return os.getenv(key, default)


def _apply_env_overrides(config: dict[str, Any], env_mapping: dict[str, str] | None = None) -> dict[str, Any]:
    """
    Apply environment variable overrides to config.

    Supports two modes:
    1. Explicit mapping: env_mapping provides env var name → config key mapping
    2. Automatic mapping: Any env var matching config key (uppercase with underscores) overrides

    Args:
        config: Configuration dictionary
        env_mapping: Optional mapping of env var names to config keys

    Returns:
        Config with env var overrides applied
    """
    result = config.copy()

    if env_mapping:
        for env_key, config_key in env_mapping.items():
            env_value = _get_env_var(env_key)
            if env_value is None or config_key not in result:
                continue
            target_type = type(result[config_key])
            try:
                result[config_key] = _coerce_type(env_value, target_type)
            except (ValueError, TypeError) as e:
                logger.warning(f"Failed to coerce env var {env_key}={env_value} to {target_type.__name__}: {e}")

    for config_key in result.keys():
        env_key = config_key.upper()
        env_value = _get_env_var(env_key)
        if env_value is None:
            continue
        if env_mapping and env_key in env_mapping:
            continue
        target_type = type(result[config_key])
        try:
            result[config_key] = _coerce_type(env_value, target_type)
        except (ValueError, TypeError) as e:
            logger.warning(f"Failed to coerce env var {env_key}={env_value} to {target_type.__name__}: {e}")

    return result


@dataclass
class QueryEngineConfigDefaults:
    """Default values for query engine configuration."""

    never_contacted_sentinel_days: int = 999
    risk_high_days: int = 60
    risk_high_loyalty: float = 5.0
    risk_medium_days: int = 30
    risk_medium_loyalty: float = 7.0
    insight_ratio_min: int = 1
    insight_ratio_max: int = 100
    chart_history_size: int = 5
    default_result_limit: int = 0  # 0 = no implicit limit
    default_chart_type: str = "bar"
    default_aggregation: str = "count"
    max_keywords: int = 10

    def to_dict(self) -> dict[str, Any]:
        """Convert dataclass to dictionary."""
        return {
            "never_contacted_sentinel_days": self.never_contacted_sentinel_days,
            "risk_high_days": self.risk_high_days,
            "risk_high_loyalty": self.risk_high_loyalty,
            "risk_medium_days": self.risk_medium_days,
            "risk_medium_loyalty": self.risk_medium_loyalty,
            "insight_ratio_min": self.insight_ratio_min,
            "insight_ratio_max": self.insight_ratio_max,
            "chart_history_size": self.chart_history_size,
            "default_result_limit": self.default_result_limit,
            "default_chart_type": self.default_chart_type,
            "default_aggregation": self.default_aggregation,
            "max_keywords": self.max_keywords,
        }


def _is_critical_config(key: str) -> bool:
    """
    Check if a config key is critical (should raise ValueError on type coercion failure).

    Critical configs are the ones the enrichment and insight rules depend on:
    risk thresholds, the never-contacted sentinel and the insight ratio bounds.
    """
    critical_patterns = [
        "risk_",
        "sentinel",
        "ratio",
    ]
    return any(pattern in key.lower() for pattern in critical_patterns)


def load_query_engine_config(config_path: Path | None = None) -> dict[str, Any]:
    """
    Load query engine config from YAML with env var overrides.

    Precedence: Environment variable → YAML value → Default value

    Args:
        config_path: Optional path to config file. If None, uses default location.

    Returns:
        dict with keys matching QueryEngineConfigDefaults fields

    Raises:
        ValueError: If YAML is invalid or a critical value cannot be coerced
    """
    defaults = QueryEngineConfigDefaults().to_dict()

    if config_path is None:
        config_path = _default_config_path("query_engine.yaml")

    config = defaults.copy()
    if config_path is not None and config_path.exists():
        try:
            with open(config_path) as f:
                yaml_data = yaml.safe_load(f) or {}
                for key, value in yaml_data.items():
                    if key not in defaults:
                        logger.debug(f"Ignoring unknown query engine config key {key}")
                        continue
                    target_type = type(defaults[key])
                    try:
                        config[key] = _coerce_type(value, target_type)
                    except (ValueError, TypeError) as e:
                        if _is_critical_config(key):
                            raise ValueError(
                                f"Type coercion failed for critical config {key}={value}: "
                                f"expected {target_type.__name__}, got {type(value).__name__}. "
                                f"Error: {e}"
                            ) from e
                        logger.warning(
                            f"Failed to coerce YAML value {key}={value} to {target_type.__name__}: {e}, using default"
                        )
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in {config_path}: {e}") from e
    else:
        logger.debug(f"Config file not found at {config_path}, using defaults")

    env_mapping = {
        "HCP_NEVER_CONTACTED_DAYS": "never_contacted_sentinel_days",
        "HCP_DEFAULT_RESULT_LIMIT": "default_result_limit",
        "HCP_CHART_HISTORY_SIZE": "chart_history_size",
    }

    return _apply_env_overrides(config, env_mapping)


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
                "hcp_analytics.core": "INFO",
                "hcp_analytics.datasets": "INFO",
            }
        if self.reduce_noise is None:
            self.reduce_noise = {
                "urllib3": "WARNING",
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
    if config_path is not None and config_path.exists():
        try:
            with open(config_path) as f:
                yaml_data = yaml.safe_load(f) or {}
                for key, value in yaml_data.items():
                    if key not in defaults:
                        continue
                    if key in ("module_levels", "reduce_noise"):
                        if isinstance(value, dict):
                            config[key].update(value)
                    else:
                        config[key] = value
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in {config_path}: {e}") from e
    else:
        logger.debug(f"Config file not found at {config_path}, using defaults")

    return config
