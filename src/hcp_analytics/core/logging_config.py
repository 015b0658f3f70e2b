"""
Centralized logging configuration.

Configure once at the application entry point, not per module.
"""

import logging
import sys
from pathlib import Path

from hcp_analytics.core.config_loader import load_logging_config


def configure_logging(level: int | None = None, config_path: Path | None = None) -> None:
    """
    Configure Python logging for the entire application.

    Truly idempotent: safe to call multiple times without side effects.
    Checks if root logger already has handlers before configuring.

    Args:
        level: Optional root level override (takes precedence over config/logging.yaml)
        config_path: Optional path to a logging YAML file
    """
    root_logger = logging.getLogger()

    # Only configure if no handlers exist (truly idempotent)
    if root_logger.handlers:
        return

    config = load_logging_config(config_path)
    root_level = level if level is not None else logging.getLevelName(str(config["root_level"]).upper())
    if not isinstance(root_level, int):
        root_level = logging.INFO

    logging.basicConfig(
        level=root_level,
        format=config["format"],
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    for name, module_level in config["module_levels"].items():
        logging.getLogger(name).setLevel(str(module_level).upper())

    # Reduce noise
    for name, noisy_level in config["reduce_noise"].items():
        logging.getLogger(name).setLevel(str(noisy_level).upper())
