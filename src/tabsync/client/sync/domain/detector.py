"""Conflict detection between a local tab set and a remote snapshot.

Five independent passes, run in this order:
1. Timestamp: concurrent modification and stale data
2. Tab metadata: same URL with different metadata, duplicates across devices
3. Structural: window count, tab order, pinned status
4. Device: identity collision and platform family difference
5. Window organization: tabs that moved between windows

Detection never mutates its input. Conflict ids are derived from the input
only, so detecting twice over the same input yields equal results.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Sequence
from typing import TYPE_CHECKING

from tabsync.client.sync.domain.conflicts import (
    ConcurrentModificationDetails,
    Conflict,
    ConflictKind,
    DuplicateTabDetails,
    FieldDifference,
    ModifiedTabDetails,
    MovedTab,
    PinnedStatusDetails,
    PlatformDifferenceDetails,
    SameDeviceIdDetails,
    Severity,
    StaleDataDetails,
    TabOrderDetails,
    WindowCountDetails,
    WindowOrganizationDetails,
    hash_url,
)
from tabsync.client.sync.domain.priorities import (
    group_by_severity,
    group_by_type,
    prioritize,
)
from tabsync.client.sync.types import now_ms

if TYPE_CHECKING:
    from tabsync.client.sync.types import Clock, DeviceMetadata, SyncSnapshot, Tab

logger = logging.getLogger(__name__)

# Both sides changed within this window -> high severity
CONCURRENT_WINDOW_MS = 5 * 60 * 1000

# A side older than this is considered stale
STALE_THRESHOLD_MS = 7 * 24 * 60 * 60 * 1000

# Compared tab fields and how much a difference in each matters
FIELD_WEIGHTS: dict[str, int] = {
    "title": 2,  # affects recognition
    "pinned": 2,  # affects workflow
    "index": 1,  # order only
    "window_id": 3,  # organization
}


def normalize_platform(platform: str | None) -> str:
    """Map a platform string to a family: mac, windows, linux, mobile or unknown."""
    p = (platform or "").lower()
    if "mac" in p or "darwin" in p:
        return "mac"
    if "win" in p:
        return "windows"
    if "linux" in p:
        return "linux"
    if "android" in p or "iphone" in p or "ipad" in p or "ios" in p:
        return "mobile"
    return "unknown"


def group_tabs_by_window(tabs: Sequence[Tab]) -> dict[int, list[Tab]]:
    """Group tabs by window id, preserving input order within each window."""
    windows: dict[int, list[Tab]] = defaultdict(list)
    for tab in tabs:
        windows[tab.window_id].append(tab)
    return dict(windows)


def compare_tab_metadata(local_tab: Tab, remote_tab: Tab) -> list[FieldDifference]:
    """List the weighted fields that differ between two tabs."""
    differences = []
    for name, weight in FIELD_WEIGHTS.items():
        local_value = getattr(local_tab, name)
        remote_value = getattr(remote_tab, name)
        if local_value != remote_value:
            differences.append(FieldDifference(name, local_value, remote_value, weight))
    return differences


def tab_conflict_severity(differences: Sequence[FieldDifference]) -> Severity:
    """Severity of a modified-tab conflict from its field differences."""
    if not differences:
        return Severity.LOW
    critical = sum(1 for d in differences if d.weight >= 2)
    if critical > 1:
        return Severity.HIGH
    return Severity(min(max(d.weight for d in differences), Severity.HIGH))


class ConflictDetector:
    """Detects conflicts for one device.

    Usage:
        detector = ConflictDetector(device_id, device_metadata=metadata)
        conflicts = detector.detect(local_tabs, remote_snapshot, last_sync)
    """

    def __init__(
        self,
        device_id: str,
        device_metadata: DeviceMetadata | None = None,
        clock: Clock | None = None,
    ) -> None:
        """Initialize the detector.

        Args:
            device_id: Id of the local device
            device_metadata: Local device metadata (enables platform checks)
            clock: Millisecond clock used for staleness (default: wall clock)
        """
        self._device_id = device_id
        self._device_metadata = device_metadata
        self._clock = clock or now_ms

    def detect(
        self,
        local_tabs: Sequence[Tab],
        remote: SyncSnapshot,
        last_sync: int = 0,
    ) -> list[Conflict]:
        """Run all detection passes, in pass order."""
        remote_tabs = list(remote.tabs)
        conflicts: list[Conflict] = []
        conflicts += self.detect_timestamp_conflicts(local_tabs, remote, last_sync)
        conflicts += self.detect_tab_metadata_conflicts(local_tabs, remote_tabs)
        conflicts += self.detect_structural_conflicts(local_tabs, remote_tabs)
        conflicts += self.detect_device_conflicts(local_tabs, remote)
        conflicts += self.detect_window_organization_conflicts(local_tabs, remote_tabs)

        seen: set[str] = set()
        unique = []
        for conflict in conflicts:
            if conflict.id in seen:
                logger.debug("Dropping repeated conflict id %s", conflict.id)
                continue
            seen.add(conflict.id)
            unique.append(conflict)
        return unique

    # === Pass 1: timestamps ===

    def detect_timestamp_conflicts(
        self,
        local_tabs: Sequence[Tab],
        remote: SyncSnapshot,
        last_sync: int,
    ) -> list[Conflict]:
        conflicts = []
        local_max = max((tab.timestamp for tab in local_tabs), default=0)
        remote_ts = remote.timestamp
        now = self._clock()

        if local_max > last_sync and remote_ts > last_sync:
            diff = abs(local_max - remote_ts)
            conflicts.append(
                Conflict(
                    id="timestamp_concurrent_modification",
                    kind=ConflictKind.CONCURRENT_MODIFICATION,
                    severity=Severity.HIGH if diff < CONCURRENT_WINDOW_MS else Severity.MEDIUM,
                    description="Both local and remote data have changes since last sync",
                    details=ConcurrentModificationDetails(
                        local_timestamp=local_max,
                        remote_timestamp=remote_ts,
                        last_sync_time=last_sync,
                        time_difference=diff,
                        local_changes=sum(1 for t in local_tabs if t.timestamp > last_sync),
                        remote_changes=sum(1 for t in remote.tabs if t.timestamp > last_sync),
                    ),
                )
            )

        if now - local_max > STALE_THRESHOLD_MS and remote_ts > last_sync:
            conflicts.append(
                Conflict(
                    id="timestamp_stale_local",
                    kind=ConflictKind.STALE_LOCAL,
                    severity=Severity.MEDIUM,
                    description="Local data appears stale compared to remote",
                    details=StaleDataDetails(
                        age=now - local_max,
                        other_timestamp=remote_ts,
                        threshold=STALE_THRESHOLD_MS,
                    ),
                )
            )

        if now - remote_ts > STALE_THRESHOLD_MS and local_max > last_sync:
            conflicts.append(
                Conflict(
                    id="timestamp_stale_remote",
                    kind=ConflictKind.STALE_REMOTE,
                    severity=Severity.MEDIUM,
                    description="Remote data appears stale compared to local",
                    details=StaleDataDetails(
                        age=now - remote_ts,
                        other_timestamp=local_max,
                        threshold=STALE_THRESHOLD_MS,
                    ),
                )
            )

        return conflicts

    # === Pass 2: tab metadata ===

    def detect_tab_metadata_conflicts(
        self,
        local_tabs: Sequence[Tab],
        remote_tabs: Sequence[Tab],
    ) -> list[Conflict]:
        conflicts = []
        local_by_url = {tab.url: tab for tab in local_tabs}
        remote_by_url = {tab.url: tab for tab in remote_tabs}

        for url, local_tab in local_by_url.items():
            remote_tab = remote_by_url.get(url)
            if remote_tab is None or remote_tab.device_id == local_tab.device_id:
                continue
            differences = compare_tab_metadata(local_tab, remote_tab)
            if not differences:
                continue
            conflicts.append(
                Conflict(
                    id=f"tab_modified_{hash_url(url)}",
                    kind=ConflictKind.MODIFIED,
                    severity=tab_conflict_severity(differences),
                    description=f'Tab "{local_tab.title}" has different metadata',
                    url=url,
                    details=ModifiedTabDetails(
                        local_tab=local_tab,
                        remote_tab=remote_tab,
                        differences=tuple(differences),
                    ),
                )
            )

        # Same URL contributed by more than one device
        local_groups: dict[str, list[Tab]] = defaultdict(list)
        remote_groups: dict[str, list[Tab]] = defaultdict(list)
        for tab in local_tabs:
            local_groups[tab.url].append(tab)
        for tab in remote_tabs:
            remote_groups[tab.url].append(tab)

        for url in _ordered_urls(local_tabs, remote_tabs):
            local_copies = local_groups.get(url, [])
            remote_copies = remote_groups.get(url, [])
            devices = {tab.device_id for tab in local_copies + remote_copies}
            if len(devices) < 2:
                continue
            title = (local_copies or remote_copies)[0].title
            conflicts.append(
                Conflict(
                    id=f"tab_duplicate_{hash_url(url)}",
                    kind=ConflictKind.DUPLICATE,
                    severity=Severity.LOW,
                    description=f'Duplicate tab found: "{title}"',
                    url=url,
                    details=DuplicateTabDetails(
                        local_tabs=tuple(local_copies),
                        remote_tabs=tuple(remote_copies),
                        devices=tuple(sorted(devices)),
                    ),
                )
            )

        return conflicts

    # === Pass 3: structure ===

    def detect_structural_conflicts(
        self,
        local_tabs: Sequence[Tab],
        remote_tabs: Sequence[Tab],
    ) -> list[Conflict]:
        conflicts = []
        local_windows = group_tabs_by_window(local_tabs)
        remote_windows = group_tabs_by_window(remote_tabs)

        if len(local_windows) != len(remote_windows):
            conflicts.append(
                Conflict(
                    id="structural_window_count",
                    kind=ConflictKind.WINDOW_COUNT,
                    severity=Severity.MEDIUM,
                    description="Different number of windows between local and remote",
                    details=WindowCountDetails(
                        local_window_count=len(local_windows),
                        remote_window_count=len(remote_windows),
                        local_windows=tuple(sorted(local_windows)),
                        remote_windows=tuple(sorted(remote_windows)),
                    ),
                )
            )

        for window_id in sorted(local_windows):
            if window_id not in remote_windows:
                continue
            local_order = [t.url for t in sorted(local_windows[window_id], key=lambda t: t.index)]
            remote_order = [t.url for t in sorted(remote_windows[window_id], key=lambda t: t.index)]
            if local_order == remote_order:
                continue
            remote_set = set(remote_order)
            local_set = set(local_order)
            conflicts.append(
                Conflict(
                    id=f"structural_order_{window_id}",
                    kind=ConflictKind.TAB_ORDER,
                    severity=Severity.LOW,
                    description=f"Tab order differs in window {window_id}",
                    details=TabOrderDetails(
                        window_id=window_id,
                        local_order=tuple(local_order),
                        remote_order=tuple(remote_order),
                        common_urls=tuple(u for u in local_order if u in remote_set),
                        local_only_urls=tuple(u for u in local_order if u not in remote_set),
                        remote_only_urls=tuple(u for u in remote_order if u not in local_set),
                    ),
                )
            )

        conflicts += self.detect_pinned_conflicts(local_tabs, remote_tabs)
        return conflicts

    def detect_pinned_conflicts(
        self,
        local_tabs: Sequence[Tab],
        remote_tabs: Sequence[Tab],
    ) -> list[Conflict]:
        conflicts = []
        remote_by_url = {tab.url: tab for tab in remote_tabs}
        for url, local_tab in {tab.url: tab for tab in local_tabs}.items():
            remote_tab = remote_by_url.get(url)
            if remote_tab is None or remote_tab.pinned == local_tab.pinned:
                continue
            pinned_tab = local_tab if local_tab.pinned else remote_tab
            where = "locally but not remotely" if local_tab.pinned else "remotely but not locally"
            conflicts.append(
                Conflict(
                    id=f"pinned_conflict_{hash_url(url)}",
                    kind=ConflictKind.PINNED_STATUS,
                    severity=Severity.MEDIUM,
                    description=f'Tab pinned {where}: "{pinned_tab.title}"',
                    url=url,
                    details=PinnedStatusDetails(
                        local_pinned=local_tab.pinned,
                        remote_pinned=remote_tab.pinned,
                        local_tab=local_tab,
                        remote_tab=remote_tab,
                    ),
                )
            )
        return conflicts

    # === Pass 4: device ===

    def detect_device_conflicts(
        self,
        local_tabs: Sequence[Tab],
        remote: SyncSnapshot,
    ) -> list[Conflict]:
        conflicts = []

        if remote.device_id == self._device_id:
            conflicts.append(
                Conflict(
                    id="device_same_id",
                    kind=ConflictKind.SAME_DEVICE_ID,
                    severity=Severity.HIGH,
                    description="Remote data has same device ID as local device",
                    details=SameDeviceIdDetails(
                        device_id=self._device_id,
                        local_timestamp=max((t.timestamp for t in local_tabs), default=0),
                        remote_timestamp=remote.timestamp,
                    ),
                )
            )

        if self._device_metadata is not None and remote.metadata is not None:
            local_platform = normalize_platform(self._device_metadata.platform)
            remote_platform = normalize_platform(remote.metadata.platform)
            if local_platform != remote_platform:
                conflicts.append(
                    Conflict(
                        id="device_platform_difference",
                        kind=ConflictKind.PLATFORM_DIFFERENCE,
                        severity=Severity.LOW,
                        description=f"Different platforms: {local_platform} vs {remote_platform}",
                        details=PlatformDifferenceDetails(
                            local_platform=local_platform,
                            remote_platform=remote_platform,
                            local_metadata=self._device_metadata,
                            remote_metadata=remote.metadata,
                        ),
                    )
                )

        return conflicts

    # === Pass 5: window organization ===

    def detect_window_organization_conflicts(
        self,
        local_tabs: Sequence[Tab],
        remote_tabs: Sequence[Tab],
    ) -> list[Conflict]:
        remote_by_url = {tab.url: tab for tab in remote_tabs}
        moved = []
        for url, local_tab in {tab.url: tab for tab in local_tabs}.items():
            remote_tab = remote_by_url.get(url)
            if remote_tab is None or remote_tab.window_id == local_tab.window_id:
                continue
            moved.append(
                MovedTab(
                    url=url,
                    local_window_id=local_tab.window_id,
                    remote_window_id=remote_tab.window_id,
                    title=local_tab.title,
                )
            )

        if not moved:
            return []

        affected = {m.local_window_id for m in moved} | {m.remote_window_id for m in moved}
        return [
            Conflict(
                id="window_organization",
                kind=ConflictKind.WINDOW_ORGANIZATION,
                severity=Severity.LOW,
                description=f"{len(moved)} tabs moved between windows",
                details=WindowOrganizationDetails(
                    moved_tabs=tuple(moved),
                    affected_windows=tuple(sorted(affected)),
                ),
            )
        ]


def _ordered_urls(local_tabs: Sequence[Tab], remote_tabs: Sequence[Tab]) -> list[str]:
    """Distinct URLs in first-appearance order, local first."""
    seen: dict[str, None] = {}
    for tab in list(local_tabs) + list(remote_tabs):
        seen.setdefault(tab.url, None)
    return list(seen)


def detect_conflicts(
    local_tabs: Sequence[Tab],
    remote: SyncSnapshot,
    last_sync: int = 0,
    *,
    device_id: str,
    device_metadata: DeviceMetadata | None = None,
    clock: Clock | None = None,
) -> list[Conflict]:
    """Detect and prioritize all conflicts between local and remote.

    Args:
        local_tabs: Current local tab set
        remote: Remote snapshot
        last_sync: Last successful sync time in ms (0 if never synced)
        device_id: Local device id
        device_metadata: Local device metadata, if known
        clock: Millisecond clock (default: wall clock)

    Returns:
        Conflicts ordered by severity (descending) then type
    """
    detector = ConflictDetector(device_id, device_metadata=device_metadata, clock=clock)
    conflicts = prioritize(detector.detect(local_tabs, remote, last_sync))

    logger.info(
        "Conflict detection completed: %d conflicts (by type: %s, by severity: %s)",
        len(conflicts),
        group_by_type(conflicts),
        group_by_severity(conflicts),
    )
    return conflicts
