"""Shared types and dataclasses for sync operations.

This module provides:
- SyncError and subclasses: Exception taxonomy for a sync pass
- StoreError and subclasses: Remote store failures
- Tab, DeviceMetadata, SyncSnapshot: The synchronized data model
- SyncDirection, OperationStatus: Sync pass enums
- SyncOptions, SyncOperationRecord: Per-pass options and the history record
- ApplyResult, RetrieveResult, StoreResult: Collaborator results
- Clock: Type alias for injectable millisecond clocks
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

# Type alias for an injectable clock returning epoch milliseconds
Clock = Callable[[], int]


def now_ms() -> int:
    """Current time in epoch milliseconds."""
    return int(time.time() * 1000)


# =============================================================================
# Errors
# =============================================================================


class SyncError(Exception):
    """Base exception for sync errors."""


class ValidationError(SyncError):
    """Remote snapshot failed structural validation.

    Attributes:
        errors: Individual validation problems
    """

    def __init__(self, message: str, errors: Sequence[str] = ()) -> None:
        super().__init__(message)
        self.errors = list(errors)


class ExternalIOError(SyncError):
    """Tab source or remote store failure.

    Attributes:
        source: Which collaborator failed ("tab_source" or "remote_store")
    """

    def __init__(self, message: str, source: str) -> None:
        super().__init__(message)
        self.source = source


class ConcurrentSyncError(SyncError):
    """A sync pass is already running for this device."""

    def __init__(self, device_id: str) -> None:
        super().__init__(f"Sync already in progress for device {device_id}")
        self.device_id = device_id


class DeviceIdentityCollision(SyncError):
    """Remote snapshot was written under this device's own id."""


class SyncCancelledError(SyncError):
    """Cancellation was requested between two phases."""


class StoreError(Exception):
    """Base exception for remote store errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(StoreError):
    """Authentication failed."""


class NotFoundError(StoreError):
    """Snapshot not found."""


# =============================================================================
# Data model
# =============================================================================


@dataclass(frozen=True)
class Tab:
    """One browser tab's synchronizable state.

    Attributes:
        id: Tab identifier assigned by the tab source
        url: Tab URL (merge identity)
        title: Tab title
        window_id: Browser window id
        index: Position within the window
        timestamp: Last modification time (epoch ms)
        device_id: Device that produced this tab state
        favicon: Favicon URL, if known
        pinned: Whether the tab is pinned
        active: Whether the tab is the active one in its window
        external_handle: Opaque handle owned by the tab source
    """

    id: str
    url: str
    title: str
    window_id: int
    index: int
    timestamp: int
    device_id: str
    favicon: str | None = None
    pinned: bool = False
    active: bool = False
    external_handle: Any = field(default=None, compare=False)


@dataclass(frozen=True)
class DeviceMetadata:
    """Describes the device that produced a snapshot."""

    device_id: str
    device_name: str
    browser_name: str
    browser_version: str
    platform: str
    last_seen: int


@dataclass(frozen=True)
class SyncSnapshot:
    """A serialized tab set plus device/timestamp metadata."""

    device_id: str
    timestamp: int
    tabs: tuple[Tab, ...]
    metadata: DeviceMetadata | None = None
    version: str = "1.0.0"
    checksum: str | None = None


# =============================================================================
# Sync pass types
# =============================================================================


class SyncDirection(str, Enum):
    """Direction of a sync pass."""

    UPLOAD = "upload"
    DOWNLOAD = "download"
    BIDIRECTIONAL = "bidirectional"


class OperationStatus(str, Enum):
    """Terminal status of a sync pass."""

    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class SyncOptions:
    """Options for one sync pass.

    Attributes:
        force_overwrite: On download, replace local tabs instead of adding
        dry_run: Detect and plan, but apply and store nothing
        cancel_event: Set to request cooperative cancellation
    """

    force_overwrite: bool = False
    dry_run: bool = False
    cancel_event: threading.Event | None = None

    @property
    def cancel_requested(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()


@dataclass
class SyncOperationRecord:
    """Summary of one sync pass, consumed by the history sink."""

    sync_id: str
    device_id: str
    start_time: int
    direction: SyncDirection
    end_time: int | None = None
    status: OperationStatus | None = None
    dry_run: bool = False
    operations: list[dict[str, Any]] = field(default_factory=list)
    conflicts: list[Any] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)

    @property
    def duration(self) -> int | None:
        if self.end_time is None:
            return None
        return self.end_time - self.start_time

    @property
    def error_message(self) -> str | None:
        """The user-visible failure message (first error)."""
        return self.errors[0]["message"] if self.errors else None

    def add_operation(self, op_type: str, action: str, timestamp: int, **fields: Any) -> None:
        self.operations.append(
            {"type": op_type, "action": action, "timestamp": timestamp, **fields}
        )

    def add_error(self, error_type: str, message: str, timestamp: int) -> None:
        self.errors.append(
            {"type": error_type, "message": message, "timestamp": timestamp}
        )

    def to_dict(self) -> dict[str, Any]:
        """JSON-compatible form of the record."""
        return {
            "syncId": self.sync_id,
            "deviceId": self.device_id,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "duration": self.duration,
            "direction": self.direction.value,
            "status": self.status.value if self.status else None,
            "dryRun": self.dry_run,
            "operations": list(self.operations),
            "conflicts": [
                c.to_dict() if hasattr(c, "to_dict") else c for c in self.conflicts
            ],
            "errors": list(self.errors),
        }


# =============================================================================
# Collaborator results
# =============================================================================


@dataclass
class ApplyResult:
    """Result of applying a tab set to the browser."""

    created: list[Tab] = field(default_factory=list)
    closed: list[Tab] = field(default_factory=list)
    updated: list[Tab] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


@dataclass
class RetrieveResult:
    """Snapshot data retrieved from the remote store."""

    data: dict[str, Any]
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class StoreResult:
    """Result of storing a snapshot remotely."""

    checksum: str
    size: int
    timestamp: int
