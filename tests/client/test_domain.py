"""Tests for sync domain modules.

Tests for:
- domain/conflicts.py - Conflict types and validation
- domain/detector.py - Conflict detection passes
- domain/priorities.py - Conflict ordering
- domain/decisions.py - Default strategy table
"""

from __future__ import annotations

import pytest

from tabsync.client.sync.domain import (
    DEFAULT_RULES,
    Conflict,
    ConflictCategory,
    ConflictDetector,
    ConflictKind,
    DefaultRule,
    ResolutionStrategy,
    ResolutionStrategyResolver,
    Severity,
    detect_conflicts,
    group_by_severity,
    group_by_type,
    prioritize,
)
from tabsync.client.sync.domain.conflicts import (
    CANDIDATE_STRATEGIES,
    DuplicateTabDetails,
    StaleDataDetails,
    hash_url,
)
from tabsync.client.sync.domain.detector import (
    STALE_THRESHOLD_MS,
    compare_tab_metadata,
    normalize_platform,
    tab_conflict_severity,
)
from tabsync.client.sync.types import DeviceMetadata, SyncSnapshot, Tab

NOW = 1_700_000_000_000
LOCAL_ID = "device_linux_1_local"
REMOTE_ID = "device_mac_1_remote"


def clock() -> int:
    return NOW


def make_tab(
    url: str,
    *,
    device_id: str = LOCAL_ID,
    window_id: int = 1,
    index: int = 0,
    timestamp: int = NOW - 1000,
    title: str | None = None,
    pinned: bool = False,
) -> Tab:
    """Create a Tab for testing."""
    return Tab(
        id=f"{device_id}:{url}",
        url=url,
        title=title or url,
        window_id=window_id,
        index=index,
        timestamp=timestamp,
        device_id=device_id,
        pinned=pinned,
    )


def make_snapshot(
    tabs: list[Tab],
    device_id: str = REMOTE_ID,
    timestamp: int | None = None,
    metadata: DeviceMetadata | None = None,
) -> SyncSnapshot:
    """Create a remote SyncSnapshot for testing."""
    if timestamp is None:
        timestamp = max((t.timestamp for t in tabs), default=NOW)
    return SyncSnapshot(
        device_id=device_id,
        timestamp=timestamp,
        tabs=tuple(tabs),
        metadata=metadata,
    )


def make_metadata(device_id: str, platform: str) -> DeviceMetadata:
    return DeviceMetadata(
        device_id=device_id,
        device_name="test",
        browser_name="firefox",
        browser_version="120",
        platform=platform,
        last_seen=NOW,
    )


def remote_tab(url: str, **kwargs) -> Tab:
    kwargs.setdefault("timestamp", NOW - 2000)
    return make_tab(url, device_id=REMOTE_ID, **kwargs)


# =============================================================================
# Tests for domain/conflicts.py
# =============================================================================


class TestConflict:
    """Test Conflict construction and validation."""

    def _stale(self, severity: object) -> Conflict:
        return Conflict(
            id="timestamp_stale_local",
            kind=ConflictKind.STALE_LOCAL,
            severity=severity,  # type: ignore[arg-type]
            description="stale",
            details=StaleDataDetails(age=1, other_timestamp=2, threshold=3),
        )

    def test_plain_int_severity_is_normalized(self) -> None:
        """Integer severities become Severity members."""
        conflict = self._stale(2)
        assert conflict.severity is Severity.MEDIUM

    def test_out_of_range_severity_rejected(self) -> None:
        """Severity outside 1..3 is rejected."""
        with pytest.raises(ValueError):
            self._stale(4)

    def test_details_must_match_kind(self) -> None:
        """A kind only accepts its own details type."""
        with pytest.raises(TypeError, match="DuplicateTabDetails"):
            Conflict(
                id="tab_duplicate_x",
                kind=ConflictKind.DUPLICATE,
                severity=Severity.LOW,
                description="dup",
                details=StaleDataDetails(age=1, other_timestamp=2, threshold=3),
            )

    def test_type_and_subtype(self) -> None:
        """Type is the category value, subtype the kind value."""
        conflict = self._stale(Severity.MEDIUM)
        assert conflict.category is ConflictCategory.TIMESTAMP
        assert conflict.type == "timestamp"
        assert conflict.subtype == "stale_local"

    def test_every_kind_allows_manual(self) -> None:
        """Manual resolution is always a candidate."""
        for kind in ConflictKind:
            assert ResolutionStrategy.MANUAL in CANDIDATE_STRATEGIES[kind]

    def test_to_dict_drops_external_handles(self) -> None:
        """Serialized details never carry tab source handles."""
        tab = Tab(
            id="1",
            url="https://a.example",
            title="A",
            window_id=1,
            index=0,
            timestamp=NOW,
            device_id=LOCAL_ID,
            external_handle=object(),
        )
        conflict = Conflict(
            id=f"tab_duplicate_{hash_url(tab.url)}",
            kind=ConflictKind.DUPLICATE,
            severity=Severity.LOW,
            description="dup",
            url=tab.url,
            details=DuplicateTabDetails(local_tabs=(tab,), remote_tabs=(), devices=(LOCAL_ID,)),
        )

        data = conflict.to_dict()

        assert data["type"] == "tab_metadata"
        assert data["subtype"] == "duplicate"
        assert data["severity"] == 1
        assert "external_handle" not in data["details"]["local_tabs"][0]
        assert "keep_all" in data["resolutionStrategies"]


# =============================================================================
# Tests for domain/detector.py
# =============================================================================


class TestHelpers:
    """Test detector helper functions."""

    @pytest.mark.parametrize(
        "platform, family",
        [
            ("MacIntel", "mac"),
            ("Darwin arm64", "mac"),
            ("Win32", "windows"),
            ("Windows AMD64", "windows"),
            ("Linux x86_64", "linux"),
            ("iPhone", "mobile"),
            ("Android", "mobile"),
            ("", "unknown"),
            (None, "unknown"),
        ],
    )
    def test_normalize_platform(self, platform: str | None, family: str) -> None:
        """Platform strings map to families."""
        assert normalize_platform(platform) == family

    def test_compare_tab_metadata_weights(self) -> None:
        """Differences carry their field weight."""
        local = make_tab("https://a.example", title="A", window_id=1)
        remote = remote_tab("https://a.example", title="B", window_id=2)

        differences = compare_tab_metadata(local, remote)

        assert {(d.field, d.weight) for d in differences} == {("title", 2), ("window_id", 3)}

    def test_severity_from_differences(self) -> None:
        """Index only is low, one critical field medium, two critical high."""
        local = make_tab("https://a.example", title="A")

        index_only = compare_tab_metadata(local, remote_tab("https://a.example", title="A", index=3))
        title_only = compare_tab_metadata(local, remote_tab("https://a.example", title="B"))
        title_and_pin = compare_tab_metadata(
            local, remote_tab("https://a.example", title="B", pinned=True)
        )

        assert tab_conflict_severity(index_only) is Severity.LOW
        assert tab_conflict_severity(title_only) is Severity.MEDIUM
        assert tab_conflict_severity(title_and_pin) is Severity.HIGH

    def test_window_move_alone_is_high(self) -> None:
        """A window change has the highest weight."""
        local = make_tab("https://a.example")
        differences = compare_tab_metadata(local, remote_tab("https://a.example", window_id=9))
        assert tab_conflict_severity(differences) is Severity.HIGH


class TestTimestampConflicts:
    """Test the timestamp detection pass."""

    def test_concurrent_modification_is_high_when_close(self) -> None:
        """Both sides changed since last sync, within five minutes."""
        local = [make_tab("https://a.example", timestamp=NOW - 1000)]
        remote = make_snapshot([remote_tab("https://b.example", window_id=2)], timestamp=NOW - 2000)

        conflicts = ConflictDetector(LOCAL_ID, clock=clock).detect(local, remote, last_sync=0)

        assert [c.id for c in conflicts] == ["timestamp_concurrent_modification"]
        conflict = conflicts[0]
        assert conflict.severity is Severity.HIGH
        assert conflict.details.time_difference == 1000
        assert conflict.details.local_changes == 1
        assert conflict.details.remote_changes == 1

    def test_concurrent_modification_is_medium_when_apart(self) -> None:
        """Changes more than five minutes apart are medium severity."""
        local = [make_tab("https://a.example", timestamp=NOW - 1000)]
        remote = make_snapshot([], timestamp=NOW - 10 * 60 * 1000)

        conflicts = ConflictDetector(LOCAL_ID, clock=clock).detect_timestamp_conflicts(
            local, remote, 0
        )

        assert conflicts[0].severity is Severity.MEDIUM

    def test_no_conflict_when_nothing_changed_since_last_sync(self) -> None:
        """Nothing newer than last sync means no timestamp conflict."""
        local = [make_tab("https://a.example", timestamp=NOW - 5000)]
        remote = make_snapshot([], timestamp=NOW - 4000)

        conflicts = ConflictDetector(LOCAL_ID, clock=clock).detect_timestamp_conflicts(
            local, remote, NOW - 3000
        )

        assert conflicts == []

    def test_stale_local(self) -> None:
        """Local older than the threshold while remote changed."""
        old = NOW - STALE_THRESHOLD_MS - 1
        local = [make_tab("https://a.example", timestamp=old)]
        remote = make_snapshot([], timestamp=NOW - 1000)

        conflicts = ConflictDetector(LOCAL_ID, clock=clock).detect_timestamp_conflicts(
            local, remote, old
        )

        assert [c.id for c in conflicts] == ["timestamp_stale_local"]
        assert conflicts[0].details.age == STALE_THRESHOLD_MS + 1
        assert conflicts[0].severity is Severity.MEDIUM

    def test_stale_remote(self) -> None:
        """Remote older than the threshold while local changed."""
        old = NOW - STALE_THRESHOLD_MS - 1
        local = [make_tab("https://a.example", timestamp=NOW - 1000)]
        remote = make_snapshot([], timestamp=old)

        conflicts = ConflictDetector(LOCAL_ID, clock=clock).detect_timestamp_conflicts(
            local, remote, old
        )

        assert [c.id for c in conflicts] == ["timestamp_stale_remote"]


class TestTabMetadataConflicts:
    """Test the tab metadata detection pass."""

    def test_modified_tab(self) -> None:
        """Same URL from another device with a different title."""
        url = "https://a.example"
        local = [make_tab(url, title="Alpha")]
        remote = [remote_tab(url, title="Alpha (updated)")]

        conflicts = ConflictDetector(LOCAL_ID, clock=clock).detect_tab_metadata_conflicts(
            local, remote
        )

        modified = [c for c in conflicts if c.kind is ConflictKind.MODIFIED]
        assert len(modified) == 1
        assert modified[0].id == f"tab_modified_{hash_url(url)}"
        assert modified[0].url == url
        assert modified[0].details.conflict_fields == ("title",)
        assert modified[0].severity is Severity.MEDIUM

    def test_same_device_tabs_are_not_compared(self) -> None:
        """Tabs written by this device are never a metadata conflict."""
        url = "https://a.example"
        local = [make_tab(url, title="Alpha")]
        remote = [make_tab(url, title="Other title")]

        conflicts = ConflictDetector(LOCAL_ID, clock=clock).detect_tab_metadata_conflicts(
            local, remote
        )

        assert conflicts == []

    def test_duplicate_across_devices(self) -> None:
        """The same URL contributed by two devices is a duplicate."""
        url = "https://a.example"
        local = [make_tab(url)]
        remote = [remote_tab(url, title=url)]

        conflicts = ConflictDetector(LOCAL_ID, clock=clock).detect_tab_metadata_conflicts(
            local, remote
        )

        assert [c.id for c in conflicts] == [f"tab_duplicate_{hash_url(url)}"]
        details = conflicts[0].details
        assert details.devices == tuple(sorted([LOCAL_ID, REMOTE_ID]))
        assert len(details.tabs) == 2
        assert conflicts[0].severity is Severity.LOW


class TestStructuralConflicts:
    """Test the structural detection pass."""

    def test_window_count(self) -> None:
        """Different number of windows."""
        local = [
            make_tab("https://a.example", window_id=1),
            make_tab("https://b.example", window_id=2),
        ]
        remote = [remote_tab("https://a.example", window_id=1)]

        conflicts = ConflictDetector(LOCAL_ID, clock=clock).detect_structural_conflicts(
            local, remote
        )

        counts = [c for c in conflicts if c.kind is ConflictKind.WINDOW_COUNT]
        assert counts[0].id == "structural_window_count"
        assert counts[0].details.local_windows == (1, 2)
        assert counts[0].details.remote_windows == (1,)

    def test_tab_order(self) -> None:
        """Same window with a different URL order."""
        local = [
            make_tab("https://a.example", index=0),
            make_tab("https://b.example", index=1),
            make_tab("https://c.example", index=2),
        ]
        remote = [
            remote_tab("https://b.example", index=0),
            remote_tab("https://a.example", index=1),
            remote_tab("https://d.example", index=2),
        ]

        conflicts = ConflictDetector(LOCAL_ID, clock=clock).detect_structural_conflicts(
            local, remote
        )

        assert [c.id for c in conflicts] == ["structural_order_1"]
        details = conflicts[0].details
        assert details.common_urls == ("https://a.example", "https://b.example")
        assert details.local_only_urls == ("https://c.example",)
        assert details.remote_only_urls == ("https://d.example",)

    def test_pinned_status(self) -> None:
        """Pinned on one side only."""
        url = "https://a.example"
        local = [make_tab(url, pinned=True)]
        remote = [remote_tab(url)]

        conflicts = ConflictDetector(LOCAL_ID, clock=clock).detect_pinned_conflicts(
            local, remote
        )

        assert [c.id for c in conflicts] == [f"pinned_conflict_{hash_url(url)}"]
        assert conflicts[0].details.local_pinned is True
        assert "locally but not remotely" in conflicts[0].description


class TestDeviceConflicts:
    """Test the device detection pass."""

    def test_same_device_id(self) -> None:
        """Remote written under this device's id."""
        remote = make_snapshot([], device_id=LOCAL_ID, timestamp=NOW - 5)

        conflicts = ConflictDetector(LOCAL_ID, clock=clock).detect_device_conflicts([], remote)

        assert [c.id for c in conflicts] == ["device_same_id"]
        assert conflicts[0].severity is Severity.HIGH

    def test_platform_difference(self) -> None:
        """Different platform families are reported."""
        remote = make_snapshot([], metadata=make_metadata(REMOTE_ID, "MacIntel"))
        detector = ConflictDetector(
            LOCAL_ID, device_metadata=make_metadata(LOCAL_ID, "Linux x86_64"), clock=clock
        )

        conflicts = detector.detect_device_conflicts([], remote)

        assert [c.id for c in conflicts] == ["device_platform_difference"]
        assert conflicts[0].details.local_platform == "linux"
        assert conflicts[0].details.remote_platform == "mac"

    def test_same_platform_family(self) -> None:
        """Two builds of the same OS are not a conflict."""
        remote = make_snapshot([], metadata=make_metadata(REMOTE_ID, "Win32"))
        detector = ConflictDetector(
            LOCAL_ID, device_metadata=make_metadata(LOCAL_ID, "Windows AMD64"), clock=clock
        )

        assert detector.detect_device_conflicts([], remote) == []

    def test_platform_check_needs_both_metadata(self) -> None:
        """Without local metadata there is nothing to compare."""
        remote = make_snapshot([], metadata=make_metadata(REMOTE_ID, "MacIntel"))
        assert ConflictDetector(LOCAL_ID, clock=clock).detect_device_conflicts([], remote) == []


class TestWindowOrganizationConflicts:
    """Test the window organization detection pass."""

    def test_moved_tabs(self) -> None:
        """A URL in a different window on each side."""
        local = [make_tab("https://a.example", window_id=1)]
        remote = [remote_tab("https://a.example", window_id=2)]

        conflicts = ConflictDetector(
            LOCAL_ID, clock=clock
        ).detect_window_organization_conflicts(local, remote)

        assert [c.id for c in conflicts] == ["window_organization"]
        moved = conflicts[0].details.moved_tabs
        assert moved[0].local_window_id == 1
        assert moved[0].remote_window_id == 2
        assert conflicts[0].details.affected_windows == (1, 2)


class TestDetectConflicts:
    """Test the full detection entry point."""

    def _scenario(self) -> tuple[list[Tab], SyncSnapshot]:
        local = [
            make_tab("https://a.example", title="Alpha", index=0, pinned=True),
            make_tab("https://b.example", index=1),
        ]
        remote = make_snapshot(
            [
                remote_tab("https://b.example", index=0),
                remote_tab("https://a.example", title="Alpha!", index=1),
            ]
        )
        return local, remote

    def test_results_are_prioritized(self) -> None:
        """Severity descending, then type."""
        local, remote = self._scenario()

        conflicts = detect_conflicts(local, remote, 0, device_id=LOCAL_ID, clock=clock)

        severities = [int(c.severity) for c in conflicts]
        assert severities == sorted(severities, reverse=True)
        # Two HIGH conflicts: "tab_metadata" sorts before "timestamp"
        assert [c.id for c in conflicts[:2]] == [
            f"tab_modified_{hash_url('https://a.example')}",
            "timestamp_concurrent_modification",
        ]

    def test_detection_is_deterministic(self) -> None:
        """Same input, same conflicts and ids."""
        local, remote = self._scenario()

        first = detect_conflicts(local, remote, 0, device_id=LOCAL_ID, clock=clock)
        second = detect_conflicts(local, remote, 0, device_id=LOCAL_ID, clock=clock)

        assert first == second
        assert len({c.id for c in first}) == len(first)

    def test_detection_does_not_mutate_input(self) -> None:
        """Input lists are left untouched."""
        local, remote = self._scenario()
        local_before = list(local)

        detect_conflicts(local, remote, 0, device_id=LOCAL_ID, clock=clock)

        assert local == local_before

    def test_identical_sets_only_report_timestamps(self) -> None:
        """Same tabs from this device produce no tab conflicts."""
        local = [make_tab("https://a.example")]
        remote = make_snapshot([make_tab("https://a.example")])

        conflicts = detect_conflicts(local, remote, 0, device_id=LOCAL_ID, clock=clock)

        assert {c.type for c in conflicts} == {"timestamp"}

    def test_same_url_changed_on_both_sides_since_last_sync(self) -> None:
        """local t=100, remote t=50, last sync 10: one high concurrent conflict."""
        local = [make_tab("https://a", timestamp=100)]
        remote = make_snapshot([make_tab("https://a", timestamp=50)], timestamp=50)

        conflicts = detect_conflicts(local, remote, 10, device_id=LOCAL_ID, clock=lambda: 200)

        [conflict] = conflicts
        assert conflict.type == "timestamp"
        assert conflict.kind is ConflictKind.CONCURRENT_MODIFICATION
        assert conflict.severity is Severity.HIGH
        assert conflict.details.time_difference == 50

    def test_same_url_from_two_devices_without_timestamp_overlap(self) -> None:
        """d1 and d2 both have https://x: exactly one duplicate over both devices."""
        local = [make_tab("https://x", device_id="d1", timestamp=5)]
        remote = make_snapshot([make_tab("https://x", device_id="d2", timestamp=5)], timestamp=5)

        conflicts = detect_conflicts(local, remote, 10, device_id="d1", clock=lambda: 20)

        [conflict] = conflicts
        assert conflict.kind is ConflictKind.DUPLICATE
        assert len(conflict.details.devices) == 2


# =============================================================================
# Tests for domain/priorities.py
# =============================================================================


class TestPrioritize:
    """Test conflict ordering."""

    def _conflict(self, conflict_id: str, severity: Severity) -> Conflict:
        return Conflict(
            id=conflict_id,
            kind=ConflictKind.STALE_REMOTE,
            severity=severity,
            description="",
            details=StaleDataDetails(age=0, other_timestamp=0, threshold=0),
        )

    def test_severity_descending_and_stable(self) -> None:
        """Equal keys keep input order."""
        low = self._conflict("low", Severity.LOW)
        high = self._conflict("high", Severity.HIGH)
        first = self._conflict("first", Severity.MEDIUM)
        second = self._conflict("second", Severity.MEDIUM)

        ordered = prioritize([low, first, high, second])

        assert [c.id for c in ordered] == ["high", "first", "second", "low"]

    def test_prioritize_does_not_mutate(self) -> None:
        """Input order is left untouched."""
        conflicts = [self._conflict("a", Severity.LOW), self._conflict("b", Severity.HIGH)]
        prioritize(conflicts)
        assert [c.id for c in conflicts] == ["a", "b"]

    def test_groupings(self) -> None:
        """Diagnostic counts by type and severity."""
        conflicts = [self._conflict("a", Severity.LOW), self._conflict("b", Severity.LOW)]

        assert group_by_type(conflicts) == {"timestamp_stale_remote": 2}
        assert group_by_severity(conflicts) == {1: 2}


# =============================================================================
# Tests for domain/decisions.py
# =============================================================================


class TestResolutionStrategyResolver:
    """Test the default strategy table and choices."""

    def _modified(self) -> Conflict:
        url = "https://a.example"
        local = make_tab(url, title="A")
        remote = remote_tab(url, title="B")
        return ConflictDetector(LOCAL_ID, clock=clock).detect_tab_metadata_conflicts(
            [local], [remote]
        )[0]

    def test_every_kind_has_a_default(self) -> None:
        """No kind is left without a rule."""
        assert ResolutionStrategyResolver().missing_defaults() == []
        assert {rule.kind for rule in DEFAULT_RULES} == set(ConflictKind)

    def test_defaults_are_candidates(self) -> None:
        """Each default is a valid strategy for its kind."""
        for rule in DEFAULT_RULES:
            assert rule.strategy in CANDIDATE_STRATEGIES[rule.kind]

    @pytest.mark.parametrize(
        "kind, strategy",
        [
            (ConflictKind.CONCURRENT_MODIFICATION, ResolutionStrategy.LOCAL_WINS),
            (ConflictKind.STALE_LOCAL, ResolutionStrategy.REMOTE_WINS),
            (ConflictKind.STALE_REMOTE, ResolutionStrategy.LOCAL_WINS),
            (ConflictKind.MODIFIED, ResolutionStrategy.MERGE_METADATA),
            (ConflictKind.DUPLICATE, ResolutionStrategy.KEEP_NEWEST),
            (ConflictKind.WINDOW_COUNT, ResolutionStrategy.MERGE_WINDOWS),
            (ConflictKind.TAB_ORDER, ResolutionStrategy.LOCAL_ORDER),
            (ConflictKind.PINNED_STATUS, ResolutionStrategy.KEEP_PINNED),
            (ConflictKind.WINDOW_ORGANIZATION, ResolutionStrategy.LOCAL_ORGANIZATION),
            (ConflictKind.SAME_DEVICE_ID, ResolutionStrategy.REGENERATE_DEVICE_ID),
            (ConflictKind.PLATFORM_DIFFERENCE, ResolutionStrategy.PLATFORM_AWARE_MERGE),
        ],
    )
    def test_default_for(self, kind: ConflictKind, strategy: ResolutionStrategy) -> None:
        """Default table."""
        default, reason = ResolutionStrategyResolver().default_for(kind)
        assert default is strategy
        assert reason

    def test_choice_overrides_default(self) -> None:
        """A valid choice (as string) wins."""
        conflict = self._modified()

        resolution = ResolutionStrategyResolver().resolve(conflict, {conflict.id: "remote_wins"})

        assert resolution.strategy is ResolutionStrategy.REMOTE_WINS
        assert resolution.conflict_id == conflict.id
        assert resolution.explicit

    def test_unknown_choice_falls_back(self) -> None:
        """An unknown strategy name is ignored."""
        conflict = self._modified()

        resolution = ResolutionStrategyResolver().resolve(conflict, {conflict.id: "shrug"})

        assert resolution.strategy is ResolutionStrategy.MERGE_METADATA
        assert not resolution.explicit

    def test_choice_for_other_kind_falls_back(self) -> None:
        """A strategy of another kind is ignored."""
        conflict = self._modified()

        resolution = ResolutionStrategyResolver().resolve(
            conflict, {conflict.id: ResolutionStrategy.KEEP_PINNED}
        )

        assert resolution.strategy is ResolutionStrategy.MERGE_METADATA

    def test_kind_without_rule_is_manual(self) -> None:
        """A table without the kind leaves the conflict manual."""
        resolver = ResolutionStrategyResolver(
            rules=[
                DefaultRule(
                    kind=ConflictKind.DUPLICATE,
                    strategy=ResolutionStrategy.KEEP_ALL,
                    reason="test",
                )
            ]
        )

        resolution = resolver.resolve(self._modified())

        assert resolution.is_manual
        assert ConflictKind.MODIFIED in resolver.missing_defaults()

    def test_resolve_all(self) -> None:
        """One resolution per conflict, in order."""
        conflict = self._modified()
        resolutions = ResolutionStrategyResolver().resolve_all([conflict, conflict])
        assert [r.conflict_id for r in resolutions] == [conflict.id, conflict.id]
