"""
Centralized logging configuration.

Configure once at the application entry point, not per module. Core modules emit
structlog events; storage providers use the standard library logger. Both end up
on the handlers configured here.
"""

import logging
import sys
from pathlib import Path

from relational_dm.core.config_loader import load_logging_config


def configure_logging(level: int | str | None = None, config_path: Path | None = None) -> None:
    """
    Configure Python logging for the library.

    Truly idempotent: safe to call multiple times without side effects.
    Checks if root logger already has handlers before configuring.

    Args:
        level: Root level override (default: ``root_level`` from logging.yaml)
        config_path: Optional logging.yaml location
    """
    root_logger = logging.getLogger()

    # Only configure if no handlers exist (truly idempotent)
    if root_logger.handlers:
        return

    config = load_logging_config(config_path)

    logging.basicConfig(
        level=level if level is not None else config["root_level"],
        format=config["format"],
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    for name, module_level in config["module_levels"].items():
        logging.getLogger(name).setLevel(module_level)

    # Reduce noise
    for name, noisy_level in config["reduce_noise"].items():
        logging.getLogger(name).setLevel(noisy_level)
