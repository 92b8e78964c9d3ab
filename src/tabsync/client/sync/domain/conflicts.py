"""Conflict types.

A conflict is a detected disagreement between the local tab set and the
remote snapshot. Each kind belongs to one category and carries its own
details payload:

| Category     | Kind                    | Details                        |
|--------------|-------------------------|--------------------------------|
| timestamp    | concurrent_modification | ConcurrentModificationDetails  |
| timestamp    | stale_local             | StaleDataDetails               |
| timestamp    | stale_remote            | StaleDataDetails               |
| tab_metadata | modified                | ModifiedTabDetails             |
| tab_metadata | duplicate               | DuplicateTabDetails            |
| structural   | window_count            | WindowCountDetails             |
| structural   | tab_order               | TabOrderDetails                |
| structural   | pinned_status           | PinnedStatusDetails            |
| structural   | window_organization     | WindowOrganizationDetails      |
| device       | same_device_id          | SameDeviceIdDetails            |
| device       | platform_difference     | PlatformDifferenceDetails      |
"""

from __future__ import annotations

import hashlib
from dataclasses import asdict, dataclass, is_dataclass
from enum import Enum, IntEnum
from typing import Any, Union

from tabsync.client.sync.types import DeviceMetadata, Tab


class ConflictCategory(str, Enum):
    """Top-level conflict type. Values sort in prioritization order."""

    TIMESTAMP = "timestamp"
    TAB_METADATA = "tab_metadata"
    STRUCTURAL = "structural"
    DEVICE = "device"


class ConflictKind(str, Enum):
    """Conflict subtype."""

    CONCURRENT_MODIFICATION = "concurrent_modification"
    STALE_LOCAL = "stale_local"
    STALE_REMOTE = "stale_remote"
    MODIFIED = "modified"
    DUPLICATE = "duplicate"
    WINDOW_COUNT = "window_count"
    TAB_ORDER = "tab_order"
    PINNED_STATUS = "pinned_status"
    WINDOW_ORGANIZATION = "window_organization"
    SAME_DEVICE_ID = "same_device_id"
    PLATFORM_DIFFERENCE = "platform_difference"

    @property
    def category(self) -> ConflictCategory:
        return KIND_CATEGORIES[self]


KIND_CATEGORIES: dict[ConflictKind, ConflictCategory] = {
    ConflictKind.CONCURRENT_MODIFICATION: ConflictCategory.TIMESTAMP,
    ConflictKind.STALE_LOCAL: ConflictCategory.TIMESTAMP,
    ConflictKind.STALE_REMOTE: ConflictCategory.TIMESTAMP,
    ConflictKind.MODIFIED: ConflictCategory.TAB_METADATA,
    ConflictKind.DUPLICATE: ConflictCategory.TAB_METADATA,
    ConflictKind.WINDOW_COUNT: ConflictCategory.STRUCTURAL,
    ConflictKind.TAB_ORDER: ConflictCategory.STRUCTURAL,
    ConflictKind.PINNED_STATUS: ConflictCategory.STRUCTURAL,
    ConflictKind.WINDOW_ORGANIZATION: ConflictCategory.STRUCTURAL,
    ConflictKind.SAME_DEVICE_ID: ConflictCategory.DEVICE,
    ConflictKind.PLATFORM_DIFFERENCE: ConflictCategory.DEVICE,
}


class Severity(IntEnum):
    """Conflict severity (higher = more urgent)."""

    LOW = 1
    MEDIUM = 2
    HIGH = 3


class ResolutionStrategy(str, Enum):
    """How a conflict gets resolved."""

    # Timestamp
    LOCAL_WINS = "local_wins"
    REMOTE_WINS = "remote_wins"
    MERGE = "merge"
    # Tab metadata
    MERGE_METADATA = "merge_metadata"
    KEEP_LOCAL = "keep_local"
    KEEP_REMOTE = "keep_remote"
    KEEP_NEWEST = "keep_newest"
    KEEP_ALL = "keep_all"
    # Structural
    MERGE_WINDOWS = "merge_windows"
    LOCAL_STRUCTURE = "local_structure"
    REMOTE_STRUCTURE = "remote_structure"
    LOCAL_ORDER = "local_order"
    REMOTE_ORDER = "remote_order"
    MERGE_ORDER = "merge_order"
    KEEP_PINNED = "keep_pinned"
    REMOVE_PIN = "remove_pin"
    LOCAL_ORGANIZATION = "local_organization"
    REMOTE_ORGANIZATION = "remote_organization"
    MERGE_SMART = "merge_smart"
    # Device
    REGENERATE_DEVICE_ID = "regenerate_device_id"
    USE_NEWEST = "use_newest"
    PLATFORM_AWARE_MERGE = "platform_aware_merge"
    IGNORE_PLATFORM = "ignore_platform"
    # Left to a human
    MANUAL = "manual"


_S = ResolutionStrategy

# Strategies each kind may be resolved with, in presentation order
CANDIDATE_STRATEGIES: dict[ConflictKind, tuple[ResolutionStrategy, ...]] = {
    ConflictKind.CONCURRENT_MODIFICATION: (_S.LOCAL_WINS, _S.REMOTE_WINS, _S.MERGE, _S.MANUAL),
    ConflictKind.STALE_LOCAL: (_S.REMOTE_WINS, _S.MANUAL),
    ConflictKind.STALE_REMOTE: (_S.LOCAL_WINS, _S.MANUAL),
    ConflictKind.MODIFIED: (_S.LOCAL_WINS, _S.REMOTE_WINS, _S.MERGE_METADATA, _S.MANUAL),
    ConflictKind.DUPLICATE: (
        _S.KEEP_LOCAL,
        _S.KEEP_REMOTE,
        _S.KEEP_NEWEST,
        _S.KEEP_ALL,
        _S.MANUAL,
    ),
    ConflictKind.WINDOW_COUNT: (
        _S.MERGE_WINDOWS,
        _S.LOCAL_STRUCTURE,
        _S.REMOTE_STRUCTURE,
        _S.MANUAL,
    ),
    ConflictKind.TAB_ORDER: (_S.LOCAL_ORDER, _S.REMOTE_ORDER, _S.MERGE_ORDER, _S.MANUAL),
    ConflictKind.PINNED_STATUS: (_S.KEEP_PINNED, _S.REMOVE_PIN, _S.MANUAL),
    ConflictKind.WINDOW_ORGANIZATION: (
        _S.LOCAL_ORGANIZATION,
        _S.REMOTE_ORGANIZATION,
        _S.MERGE_SMART,
        _S.MANUAL,
    ),
    ConflictKind.SAME_DEVICE_ID: (_S.REGENERATE_DEVICE_ID, _S.USE_NEWEST, _S.MANUAL),
    ConflictKind.PLATFORM_DIFFERENCE: (
        _S.PLATFORM_AWARE_MERGE,
        _S.IGNORE_PLATFORM,
        _S.MANUAL,
    ),
}


# =============================================================================
# Details payloads
# =============================================================================


@dataclass(frozen=True)
class ConcurrentModificationDetails:
    local_timestamp: int
    remote_timestamp: int
    last_sync_time: int
    time_difference: int
    local_changes: int
    remote_changes: int


@dataclass(frozen=True)
class StaleDataDetails:
    """Age of the stale side against the other side's timestamp."""

    age: int
    other_timestamp: int
    threshold: int


@dataclass(frozen=True)
class FieldDifference:
    field: str
    local_value: Any
    remote_value: Any
    weight: int


@dataclass(frozen=True)
class ModifiedTabDetails:
    local_tab: Tab
    remote_tab: Tab
    differences: tuple[FieldDifference, ...]

    @property
    def conflict_fields(self) -> tuple[str, ...]:
        return tuple(d.field for d in self.differences)


@dataclass(frozen=True)
class DuplicateTabDetails:
    local_tabs: tuple[Tab, ...]
    remote_tabs: tuple[Tab, ...]
    devices: tuple[str, ...]

    @property
    def tabs(self) -> tuple[Tab, ...]:
        return self.local_tabs + self.remote_tabs


@dataclass(frozen=True)
class WindowCountDetails:
    local_window_count: int
    remote_window_count: int
    local_windows: tuple[int, ...]
    remote_windows: tuple[int, ...]


@dataclass(frozen=True)
class TabOrderDetails:
    window_id: int
    local_order: tuple[str, ...]
    remote_order: tuple[str, ...]
    common_urls: tuple[str, ...]
    local_only_urls: tuple[str, ...]
    remote_only_urls: tuple[str, ...]


@dataclass(frozen=True)
class PinnedStatusDetails:
    local_pinned: bool
    remote_pinned: bool
    local_tab: Tab
    remote_tab: Tab


@dataclass(frozen=True)
class MovedTab:
    url: str
    local_window_id: int
    remote_window_id: int
    title: str


@dataclass(frozen=True)
class WindowOrganizationDetails:
    moved_tabs: tuple[MovedTab, ...]
    affected_windows: tuple[int, ...]


@dataclass(frozen=True)
class SameDeviceIdDetails:
    device_id: str
    local_timestamp: int
    remote_timestamp: int


@dataclass(frozen=True)
class PlatformDifferenceDetails:
    local_platform: str
    remote_platform: str
    local_metadata: DeviceMetadata
    remote_metadata: DeviceMetadata


ConflictDetails = Union[
    ConcurrentModificationDetails,
    StaleDataDetails,
    ModifiedTabDetails,
    DuplicateTabDetails,
    WindowCountDetails,
    TabOrderDetails,
    PinnedStatusDetails,
    WindowOrganizationDetails,
    SameDeviceIdDetails,
    PlatformDifferenceDetails,
]

DETAILS_TYPES: dict[ConflictKind, type] = {
    ConflictKind.CONCURRENT_MODIFICATION: ConcurrentModificationDetails,
    ConflictKind.STALE_LOCAL: StaleDataDetails,
    ConflictKind.STALE_REMOTE: StaleDataDetails,
    ConflictKind.MODIFIED: ModifiedTabDetails,
    ConflictKind.DUPLICATE: DuplicateTabDetails,
    ConflictKind.WINDOW_COUNT: WindowCountDetails,
    ConflictKind.TAB_ORDER: TabOrderDetails,
    ConflictKind.PINNED_STATUS: PinnedStatusDetails,
    ConflictKind.WINDOW_ORGANIZATION: WindowOrganizationDetails,
    ConflictKind.SAME_DEVICE_ID: SameDeviceIdDetails,
    ConflictKind.PLATFORM_DIFFERENCE: PlatformDifferenceDetails,
}


@dataclass(frozen=True)
class Conflict:
    """A typed, severity-ranked disagreement between local and remote.

    Attributes:
        id: Deterministic identifier, unique within one detection pass
        kind: Conflict subtype (its category is kind.category)
        severity: 1 (advisory) to 3 (urgent)
        description: Human-readable summary
        details: Kind-specific payload
        url: Tab URL for per-tab conflicts
    """

    id: str
    kind: ConflictKind
    severity: Severity
    description: str
    details: ConflictDetails
    url: str | None = None

    def __post_init__(self) -> None:
        # Validates and normalizes plain ints; raises ValueError otherwise
        object.__setattr__(self, "severity", Severity(self.severity))
        expected = DETAILS_TYPES[self.kind]
        if not isinstance(self.details, expected):
            raise TypeError(
                f"{self.kind.value} conflict requires {expected.__name__}, "
                f"got {type(self.details).__name__}"
            )

    @property
    def category(self) -> ConflictCategory:
        return self.kind.category

    @property
    def type(self) -> str:
        return self.kind.category.value

    @property
    def subtype(self) -> str:
        return self.kind.value

    @property
    def candidate_strategies(self) -> tuple[ResolutionStrategy, ...]:
        return CANDIDATE_STRATEGIES[self.kind]

    def to_dict(self) -> dict[str, Any]:
        """JSON-compatible form (for history records and presenters)."""
        details = asdict(self.details) if is_dataclass(self.details) else {}
        return {
            "id": self.id,
            "type": self.type,
            "subtype": self.subtype,
            "severity": int(self.severity),
            "description": self.description,
            "url": self.url,
            "details": _jsonable(details),
            "resolutionStrategies": [s.value for s in self.candidate_strategies],
        }


def _jsonable(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items() if k != "external_handle"}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def hash_url(url: str) -> str:
    """Short stable hash of a URL, used in conflict ids."""
    return hashlib.sha256(url.encode("utf-8")).hexdigest()[:12]
