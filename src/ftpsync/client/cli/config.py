"""Configuration utilities for the ftpsync CLI.

This module provides shared configuration functions used across CLI commands.
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Any

from ftpsync.core.config import AccountConfig


class NotConfiguredError(Exception):
    """No account has been set up yet."""


def get_config_dir() -> Path:
    """Get the configuration directory for ftpsync.

    Returns:
        Path to ~/.ftpsync or equivalent.
    """
    return Path.home() / ".ftpsync"


def get_config_file() -> Path:
    """Get the path to the config file."""
    return get_config_dir() / "config.json"


def get_file_log_path() -> Path:
    """Get the path to the baseline database."""
    return get_config_dir() / "filelog.db"


def get_log_path() -> Path:
    """Get the path to the log file."""
    return get_config_dir() / "ftpsync.log"


def load_config() -> dict[str, Any]:
    """Load configuration from config file."""
    config_file = get_config_file()
    if config_file.exists():
        return dict(json.loads(config_file.read_text()))
    return {}


def save_config(config: dict[str, Any]) -> None:
    """Save configuration to config file."""
    config_file = get_config_file()
    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(json.dumps(config, indent=2))


def load_account() -> AccountConfig:
    """Load the configured account.

    Raises:
        NotConfiguredError: If 'ftpsync init' has not been run.
    """
    config = load_config()
    if "account" not in config:
        raise NotConfiguredError("ftpsync not initialized. Run 'ftpsync init' first.")
    return AccountConfig.from_dict(config["account"])


def setup_logging(verbose: bool = False, log_path: Path | None = None) -> None:
    """Configure logging to output to stderr and optionally a file.

    Args:
        verbose: Log at DEBUG level instead of INFO.
        log_path: Path to the log file.
    """
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    formatter = logging.Formatter(log_format)

    root_logger = logging.getLogger("ftpsync")
    root_logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    if not verbose:
        # Only warnings on the console, the cycle summary goes through click
        stream_handler.setLevel(logging.WARNING)
    root_logger.addHandler(stream_handler)

    if log_path is not None:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    root_logger.propagate = False
