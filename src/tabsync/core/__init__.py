"""Core shared modules for tabsync."""

from tabsync.core.config import (
    DEFAULT_HISTORY_LIMIT,
    DEFAULT_PRESENTER_TIMEOUT,
    DEFAULT_SNAPSHOT_NAME,
    SyncConfig,
)

__all__ = [
    "DEFAULT_HISTORY_LIMIT",
    "DEFAULT_PRESENTER_TIMEOUT",
    "DEFAULT_SNAPSHOT_NAME",
    "SyncConfig",
]
