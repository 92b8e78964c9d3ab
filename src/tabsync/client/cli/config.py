"""Configuration utilities for tabsync CLI.

This module provides shared configuration functions used across CLI commands.
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Any

from tabsync.core.config import SyncConfig


def get_config_dir() -> Path:
    """Get the configuration directory for tabsync.

    Returns:
        Path to ~/.tabsync or equivalent.
    """
    return Path.home() / ".tabsync"


def get_config_file() -> Path:
    """Get the path to the config file."""
    return get_config_dir() / "config.json"


def get_state_db() -> Path:
    """Get the path to the local state database."""
    return get_config_dir() / "state.db"


def get_default_tabs_file() -> Path:
    """Default JSON file shared with the browser extension."""
    return get_config_dir() / "tabs.json"


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


def load_sync_config() -> SyncConfig | None:
    """Load the sync configuration.

    Returns:
        SyncConfig, or None if tabsync is not initialized.
    """
    data = load_config()
    if not data.get("store_url"):
        return None
    return SyncConfig.from_dict(data)


def setup_logging(verbose: bool = False) -> None:
    """Configure the tabsync logger for CLI output.

    Args:
        verbose: Log DEBUG and up (default: WARNING and up).
    """
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    formatter = logging.Formatter(log_format)

    root_logger = logging.getLogger("tabsync")
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(formatter)
    root_logger.addHandler(stderr_handler)
    root_logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    root_logger.propagate = False
