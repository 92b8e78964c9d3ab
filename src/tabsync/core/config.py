"""Shared configuration classes for tabsync.

This module defines the configuration used by the sync coordinator, the
remote stores and the CLI.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from typing import Any

DEFAULT_SNAPSHOT_NAME = "tab-sync-data.json"
DEFAULT_PRESENTER_TIMEOUT = 10.0  # seconds
DEFAULT_HISTORY_LIMIT = 50


@dataclass
class SyncConfig:
    """Configuration for syncing with a remote store.

    Attributes:
        store_url: Base URL of an HTTP store, or a local directory path.
        token: Authentication token (HTTP stores only).
        timeout: Request timeout in seconds.
        verify_ssl: Whether to verify SSL certificates (default True).
        snapshot_name: Name of the snapshot in the store.
        presenter_timeout: Seconds to wait for conflict choices.
        history_limit: Number of sync records kept locally.
        tabs_file: JSON file the tab source reads and writes.
        device_name: Human-readable name of this device.
    """

    store_url: str
    token: str = ""
    timeout: float = 30.0
    verify_ssl: bool = True
    snapshot_name: str = DEFAULT_SNAPSHOT_NAME
    presenter_timeout: float = DEFAULT_PRESENTER_TIMEOUT
    history_limit: int = DEFAULT_HISTORY_LIMIT
    tabs_file: str | None = None
    device_name: str | None = None

    def __post_init__(self) -> None:
        """Normalize store URL."""
        if self.is_http:
            self.store_url = self.store_url.rstrip("/")

    @property
    def is_http(self) -> bool:
        """Check if the store is reached over HTTP(S).

        Returns:
            True for http:// and https:// URLs.
        """
        return self.store_url.startswith(("http://", "https://"))

    @property
    def is_secure(self) -> bool:
        return self.store_url.startswith("https://")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncConfig:
        """Create from a config file dictionary, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
