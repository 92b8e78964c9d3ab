"""Tab sync: conflict detection, resolution and merge.

Architecture:
    TabSource + RemoteStore → SyncCoordinator → domain (detect, resolve, merge)

Components:
- **SyncCoordinator**: Runs one sync pass through the session state machine
- **domain/**: Pure conflict detection, prioritization, resolution and merge
- **snapshot**: Snapshot wire format and validation (pydantic)
- **SingleFlightGuard**: At most one pass per device
- **retry**: Exponential backoff for remote store network calls

All public symbols are re-exported here.
"""

from tabsync.client.sync.coordinator import (
    ConflictPresenter,
    DeviceIdentity,
    LastSyncStore,
    RemoteStore,
    SyncCoordinator,
    SyncHistory,
    TabSource,
)
from tabsync.client.sync.domain import (
    Conflict,
    ConflictCategory,
    ConflictDetector,
    ConflictKind,
    MergeEngine,
    MergeOperation,
    MergeResult,
    Resolution,
    ResolutionStrategy,
    ResolutionStrategyResolver,
    Severity,
    SyncPhase,
    apply_layout,
    detect_conflicts,
    prioritize,
    resolve_and_merge,
)
from tabsync.client.sync.guard import SingleFlightGuard
from tabsync.client.sync.retry import (
    DEFAULT_BACKOFF_MULTIPLIER,
    DEFAULT_INITIAL_BACKOFF,
    DEFAULT_MAX_BACKOFF,
    DEFAULT_MAX_RETRIES,
    NETWORK_EXCEPTIONS,
    retry_with_backoff,
)
from tabsync.client.sync.snapshot import (
    SNAPSHOT_VERSION,
    create_snapshot,
    parse_snapshot,
    snapshot_to_dict,
)
from tabsync.client.sync.types import (
    ApplyResult,
    AuthenticationError,
    ConcurrentSyncError,
    DeviceIdentityCollision,
    DeviceMetadata,
    ExternalIOError,
    NotFoundError,
    OperationStatus,
    RetrieveResult,
    StoreError,
    StoreResult,
    SyncCancelledError,
    SyncDirection,
    SyncError,
    SyncOperationRecord,
    SyncOptions,
    SyncSnapshot,
    Tab,
    ValidationError,
)

__all__ = [
    # Retry functions and constants
    "DEFAULT_BACKOFF_MULTIPLIER",
    "DEFAULT_INITIAL_BACKOFF",
    "DEFAULT_MAX_BACKOFF",
    "DEFAULT_MAX_RETRIES",
    "NETWORK_EXCEPTIONS",
    "retry_with_backoff",
    # Types and dataclasses
    "ApplyResult",
    "DeviceMetadata",
    "OperationStatus",
    "RetrieveResult",
    "StoreResult",
    "SyncDirection",
    "SyncOperationRecord",
    "SyncOptions",
    "SyncSnapshot",
    "Tab",
    # Errors
    "AuthenticationError",
    "ConcurrentSyncError",
    "DeviceIdentityCollision",
    "ExternalIOError",
    "NotFoundError",
    "StoreError",
    "SyncCancelledError",
    "SyncError",
    "ValidationError",
    # Snapshot
    "SNAPSHOT_VERSION",
    "create_snapshot",
    "parse_snapshot",
    "snapshot_to_dict",
    # Domain
    "Conflict",
    "ConflictCategory",
    "ConflictDetector",
    "ConflictKind",
    "MergeEngine",
    "MergeOperation",
    "MergeResult",
    "Resolution",
    "ResolutionStrategy",
    "ResolutionStrategyResolver",
    "Severity",
    "SyncPhase",
    "apply_layout",
    "detect_conflicts",
    "prioritize",
    "resolve_and_merge",
    # Coordinator
    "SyncCoordinator",
    "SingleFlightGuard",
    "ConflictPresenter",
    "DeviceIdentity",
    "LastSyncStore",
    "RemoteStore",
    "SyncHistory",
    "TabSource",
]
