"""
Configuration loading and logging setup.

Layout:
    ~/.gpgindicator/
    ├── config/config.yaml    # IndicatorConfig fields
    ├── logs/gpgindicator.log
    └── cache/                # see gpgindicator.cache
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError

from . import INDICATOR_HOME
from .models import IndicatorConfig

logger = logging.getLogger("gpgindicator.config")

CONFIG_FILE = Path("config") / "config.yaml"
LOG_FILE = Path("logs") / "gpgindicator.log"
LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"


def resolve_home(home: Optional[Path] = None) -> Path:
    """The indicator home directory, with ``~`` expanded."""
    return Path(home or INDICATOR_HOME).expanduser()


def load_config(home: Optional[Path] = None) -> IndicatorConfig:
    """Load configuration from disk.

    Returns:
        IndicatorConfig from config.yaml, or defaults when the file is
        missing or invalid.
    """
    config_file = resolve_home(home) / CONFIG_FILE
    if config_file.exists():
        try:
            data = yaml.safe_load(config_file.read_text(encoding="utf-8")) or {}
            return IndicatorConfig(**data)
        except (yaml.YAMLError, ValidationError, TypeError) as exc:
            logger.warning("Failed to load config: %s, using defaults", exc)
    return IndicatorConfig()


def save_config(config: IndicatorConfig, home: Optional[Path] = None) -> Path:
    """Write ``config`` to config.yaml and return its path."""
    config_file = resolve_home(home) / CONFIG_FILE
    config_file.parent.mkdir(parents=True, exist_ok=True)
    data = config.model_dump(mode="json", exclude_none=True)
    config_file.write_text(yaml.safe_dump(data, default_flow_style=False), encoding="utf-8")
    return config_file


def setup_logging(home: Optional[Path] = None, level: str = "INFO") -> Path:
    """Send package logs to the indicator log file.

    Returns:
        Path of the log file.
    """
    log_file = resolve_home(home) / LOG_FILE
    log_file.parent.mkdir(parents=True, exist_ok=True)

    package_logger = logging.getLogger("gpgindicator")
    package_logger.setLevel(level.upper())
    for existing in package_logger.handlers:
        if isinstance(existing, logging.FileHandler) and Path(existing.baseFilename) == log_file.absolute():
            return log_file

    handler = logging.FileHandler(log_file)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    package_logger.addHandler(handler)
    return log_file
