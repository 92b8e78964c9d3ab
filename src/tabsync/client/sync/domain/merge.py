"""Merge engine.

Applies a resolution to every conflict and produces the merged tab set.

Conflicts are processed by category: timestamp, then tab metadata, then
structural, then device (input order within a category).

- Timestamp conflicts are recorded only
- Modified tabs are replaced by the local, remote or field-merged tab
- Duplicates are collapsed to one copy (or all copies with keep_all)
- When two resolutions settle the same URL the first one stands, unless the
  later one is keep_all or was chosen while the first was a default; the
  losing resolution carries a superseded_by payload
- Structural and device resolutions are recorded as operations, for the
  layout pass and the coordinator to act on

Every other URL is taken from the union of both sides (the newer copy wins),
then indices are made dense per window.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field, replace
from typing import Any

from tabsync.client.sync.domain.conflicts import (
    Conflict,
    ConflictCategory,
    ConflictKind,
    ResolutionStrategy,
)
from tabsync.client.sync.domain.decisions import (
    Choices,
    Resolution,
    ResolutionStrategyResolver,
)
from tabsync.client.sync.types import Clock, Tab, now_ms

logger = logging.getLogger(__name__)

# Concurrent edits further apart than this are kept side by side
PRESERVE_BOTH_THRESHOLD_MS = 60 * 60 * 1000

CATEGORY_ORDER: tuple[ConflictCategory, ...] = (
    ConflictCategory.TIMESTAMP,
    ConflictCategory.TAB_METADATA,
    ConflictCategory.STRUCTURAL,
    ConflictCategory.DEVICE,
)


@dataclass(frozen=True)
class MergeOperation:
    """Audit record of one applied resolution.

    Attributes:
        kind: Kind of the resolved conflict
        strategy: Strategy that was applied
        conflict_id: Resolved conflict
        url: Affected URL, for per-tab conflicts
        window_id: Affected window, for per-window conflicts
        payload: Strategy-specific data (orders, pin value, assignments...)
    """

    kind: ConflictKind
    strategy: ResolutionStrategy
    conflict_id: str | None = None
    url: str | None = None
    window_id: int | None = None
    payload: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "strategy": self.strategy.value,
            "conflictId": self.conflict_id,
            "url": self.url,
            "windowId": self.window_id,
            "payload": dict(self.payload),
        }


@dataclass
class MergeResult:
    """Outcome of a merge.

    Every input conflict id is in exactly one of applied_resolutions
    and unresolved_conflicts.
    """

    merged_tabs: list[Tab]
    applied_resolutions: list[Resolution] = field(default_factory=list)
    unresolved_conflicts: list[Conflict] = field(default_factory=list)
    merge_operations: list[MergeOperation] = field(default_factory=list)

    @property
    def fully_resolved(self) -> bool:
        return not self.unresolved_conflicts

    def operations_of(self, kind: ConflictKind) -> list[MergeOperation]:
        return [op for op in self.merge_operations if op.kind is kind]


@dataclass
class _Outcome:
    """What one resolution contributes, committed only if it succeeds."""

    settled: dict[str, list[Tab]] = field(default_factory=dict)
    operations: list[MergeOperation] = field(default_factory=list)
    keep_all: bool = False


def merge_tab_metadata(local: Tab, remote: Tab, *, timestamp: int, device_id: str) -> Tab:
    """Field-by-field merge of two copies of the same tab.

    - title: the longer one (local on a tie)
    - pinned: pinned on either side
    - index: floor of the mean
    - window_id: local
    - favicon, active: from the newer copy (local on a tie)
    """
    newer = local if local.timestamp >= remote.timestamp else remote
    return replace(
        local,
        title=local.title if len(local.title) >= len(remote.title) else remote.title,
        pinned=local.pinned or remote.pinned,
        index=(local.index + remote.index) // 2,
        window_id=local.window_id,
        favicon=newer.favicon,
        active=newer.active,
        timestamp=timestamp,
        device_id=device_id,
    )


def reindex(tabs: Sequence[Tab]) -> list[Tab]:
    """Stable sort by (window_id, index) and renumber each window from 0."""
    ordered = sorted(tabs, key=lambda t: (t.window_id, t.index))
    result = []
    positions: dict[int, int] = {}
    for tab in ordered:
        position = positions.get(tab.window_id, 0)
        positions[tab.window_id] = position + 1
        result.append(tab if tab.index == position else replace(tab, index=position))
    return result


def _superseded(resolution: Resolution, by: str) -> Resolution:
    return replace(resolution, payload={"superseded_by": by})


def _supersede_applied(result: MergeResult, conflict_id: str, by: str) -> None:
    """Mark an earlier applied resolution (and its operations) as replaced."""
    result.applied_resolutions = [
        _superseded(r, by) if r.conflict_id == conflict_id else r
        for r in result.applied_resolutions
    ]
    result.merge_operations = [
        replace(op, payload={**op.payload, "superseded_by": by})
        if op.conflict_id == conflict_id
        else op
        for op in result.merge_operations
    ]


def _newest(tabs: Sequence[Tab]) -> Tab:
    # max() keeps the first of equal timestamps, so local wins ties
    return max(tabs, key=lambda t: t.timestamp)


class MergeEngine:
    """Resolves conflicts and merges two tab sets.

    Usage:
        engine = MergeEngine(device_id)
        result = engine.merge(local_tabs, remote_tabs, conflicts, choices)
    """

    def __init__(
        self,
        device_id: str,
        resolver: ResolutionStrategyResolver | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._device_id = device_id
        self._resolver = resolver or ResolutionStrategyResolver()
        self._clock = clock or now_ms
        self._handlers: dict[
            ConflictCategory, Callable[[Conflict, ResolutionStrategy], _Outcome]
        ] = {
            ConflictCategory.TIMESTAMP: self._resolve_timestamp,
            ConflictCategory.TAB_METADATA: self._resolve_tab_metadata,
            ConflictCategory.STRUCTURAL: self._resolve_structural,
            ConflictCategory.DEVICE: self._resolve_device,
        }

    def merge(
        self,
        local_tabs: Sequence[Tab],
        remote_tabs: Sequence[Tab],
        conflicts: Sequence[Conflict],
        choices: Choices | None = None,
    ) -> MergeResult:
        """Resolve every conflict and build the merged tab set.

        Args:
            local_tabs: Local tab set
            remote_tabs: Remote tab set
            conflicts: Conflicts detected between the two
            choices: Optional conflict id -> strategy overrides

        Returns:
            MergeResult (never raises for well-formed input)
        """
        settled: dict[str, list[Tab]] = {}
        owners: dict[str, Resolution] = {}
        kept_all: set[str] = set()
        result = MergeResult(merged_tabs=[])

        ordered = sorted(conflicts, key=lambda c: CATEGORY_ORDER.index(c.category))
        for conflict in ordered:
            resolution = self._resolver.resolve(conflict, choices)
            if resolution.is_manual:
                logger.info("Conflict %s left for manual resolution", conflict.id)
                result.unresolved_conflicts.append(conflict)
                continue

            try:
                outcome = self._handlers[conflict.category](conflict, resolution.strategy)
            except Exception:
                logger.exception(
                    "Failed to apply %s to conflict %s",
                    resolution.strategy.value,
                    conflict.id,
                )
                result.unresolved_conflicts.append(conflict)
                continue

            operations = outcome.operations
            for url, tabs in outcome.settled.items():
                owner = owners.get(url)
                if owner is not None:
                    if not (outcome.keep_all or (resolution.explicit and not owner.explicit)):
                        logger.info(
                            "Conflict %s superseded by %s for %s",
                            conflict.id,
                            owner.conflict_id,
                            url,
                        )
                        resolution = _superseded(resolution, owner.conflict_id)
                        operations = [
                            replace(op, payload={"superseded_by": owner.conflict_id})
                            for op in operations
                        ]
                        continue
                    _supersede_applied(result, owner.conflict_id, conflict.id)
                settled[url] = tabs
                owners[url] = resolution
                if outcome.keep_all:
                    kept_all.add(url)
            result.merge_operations.extend(operations)
            result.applied_resolutions.append(resolution)

        result.merged_tabs = reindex(self._combine(local_tabs, remote_tabs, settled))

        logger.debug(
            "Merged %d local + %d remote tabs into %d (%d applied, %d unresolved, keep_all: %s)",
            len(local_tabs),
            len(remote_tabs),
            len(result.merged_tabs),
            len(result.applied_resolutions),
            len(result.unresolved_conflicts),
            sorted(kept_all),
        )
        return result

    def _combine(
        self,
        local_tabs: Sequence[Tab],
        remote_tabs: Sequence[Tab],
        settled: dict[str, list[Tab]],
    ) -> list[Tab]:
        """Settled tabs plus the union of unsettled URLs, in first-seen order."""
        newest: dict[str, Tab] = {}
        for tab in list(local_tabs) + list(remote_tabs):
            if tab.url in settled:
                newest.setdefault(tab.url, tab)
                continue
            current = newest.get(tab.url)
            if current is None or tab.timestamp > current.timestamp:
                newest[tab.url] = tab

        combined: list[Tab] = []
        for url, tab in newest.items():
            combined.extend(settled.get(url, [tab]))
        return combined

    # === Timestamp ===

    def _resolve_timestamp(self, conflict: Conflict, strategy: ResolutionStrategy) -> _Outcome:
        payload: dict[str, Any] = {}
        if conflict.kind is ConflictKind.CONCURRENT_MODIFICATION:
            difference = conflict.details.time_difference
            payload["time_difference"] = difference
            if strategy is ResolutionStrategy.MERGE:
                payload["action"] = (
                    "preserve_both" if difference > PRESERVE_BOTH_THRESHOLD_MS else "use_newer"
                )
        else:
            payload["age"] = conflict.details.age
        return _Outcome(operations=[self._operation(conflict, strategy, payload=payload)])

    # === Tab metadata ===

    def _resolve_tab_metadata(
        self, conflict: Conflict, strategy: ResolutionStrategy
    ) -> _Outcome:
        if conflict.kind is ConflictKind.MODIFIED:
            return self._resolve_modified(conflict, strategy)
        return self._resolve_duplicate(conflict, strategy)

    def _resolve_modified(self, conflict: Conflict, strategy: ResolutionStrategy) -> _Outcome:
        details = conflict.details
        if strategy is ResolutionStrategy.LOCAL_WINS:
            tab = details.local_tab
        elif strategy is ResolutionStrategy.REMOTE_WINS:
            tab = details.remote_tab
        elif strategy is ResolutionStrategy.MERGE_METADATA:
            tab = merge_tab_metadata(
                details.local_tab,
                details.remote_tab,
                timestamp=self._clock(),
                device_id=self._device_id,
            )
        else:
            raise ValueError(f"Unsupported strategy for modified tab: {strategy.value}")

        return _Outcome(
            settled={tab.url: [tab]},
            operations=[
                self._operation(
                    conflict,
                    strategy,
                    payload={"fields": list(details.conflict_fields)},
                )
            ],
        )

    def _resolve_duplicate(self, conflict: Conflict, strategy: ResolutionStrategy) -> _Outcome:
        details = conflict.details
        copies = details.tabs
        if not copies:
            raise ValueError(f"Duplicate conflict {conflict.id} has no tabs")

        if strategy is ResolutionStrategy.KEEP_ALL:
            kept = [copies[0]] + [
                replace(tab, title=f"{tab.title} ({n})")
                for n, tab in enumerate(copies[1:], start=2)
            ]
        elif strategy is ResolutionStrategy.KEEP_LOCAL:
            kept = [_newest(details.local_tabs or copies)]
        elif strategy is ResolutionStrategy.KEEP_REMOTE:
            kept = [_newest(details.remote_tabs or copies)]
        elif strategy is ResolutionStrategy.KEEP_NEWEST:
            kept = [_newest(copies)]
        else:
            raise ValueError(f"Unsupported strategy for duplicate tab: {strategy.value}")

        url = copies[0].url
        return _Outcome(
            settled={url: kept},
            keep_all=strategy is ResolutionStrategy.KEEP_ALL,
            operations=[
                self._operation(
                    conflict,
                    strategy,
                    payload={"kept": len(kept), "devices": list(details.devices)},
                )
            ],
        )

    # === Structural ===

    def _resolve_structural(self, conflict: Conflict, strategy: ResolutionStrategy) -> _Outcome:
        details = conflict.details
        S = ResolutionStrategy

        if conflict.kind is ConflictKind.WINDOW_COUNT:
            op = self._operation(
                conflict,
                strategy,
                payload={
                    "local_windows": list(details.local_windows),
                    "remote_windows": list(details.remote_windows),
                },
            )
        elif conflict.kind is ConflictKind.TAB_ORDER:
            orders = {
                S.LOCAL_ORDER: list(details.local_order),
                S.REMOTE_ORDER: list(details.remote_order),
                S.MERGE_ORDER: list(
                    details.common_urls + details.local_only_urls + details.remote_only_urls
                ),
            }
            op = self._operation(
                conflict,
                strategy,
                window_id=details.window_id,
                payload={"order": orders[strategy]},
            )
        elif conflict.kind is ConflictKind.PINNED_STATUS:
            if strategy not in (S.KEEP_PINNED, S.REMOVE_PIN):
                raise ValueError(f"Unsupported strategy for pinned status: {strategy.value}")
            op = self._operation(
                conflict,
                strategy,
                payload={"pinned": strategy is S.KEEP_PINNED},
            )
        elif conflict.kind is ConflictKind.WINDOW_ORGANIZATION:
            if strategy is S.REMOTE_ORGANIZATION:
                assignments = {m.url: m.remote_window_id for m in details.moved_tabs}
            elif strategy in (S.LOCAL_ORGANIZATION, S.MERGE_SMART):
                assignments = {m.url: m.local_window_id for m in details.moved_tabs}
            else:
                raise ValueError(
                    f"Unsupported strategy for window organization: {strategy.value}"
                )
            op = self._operation(conflict, strategy, payload={"assignments": assignments})
        else:
            raise ValueError(f"Not a structural conflict: {conflict.kind.value}")

        return _Outcome(operations=[op])

    # === Device ===

    def _resolve_device(self, conflict: Conflict, strategy: ResolutionStrategy) -> _Outcome:
        details = conflict.details
        if conflict.kind is ConflictKind.SAME_DEVICE_ID:
            newer = (
                "local" if details.local_timestamp >= details.remote_timestamp else "remote"
            )
            payload = {"old_device_id": details.device_id, "newer_side": newer}
        else:
            payload = {
                "local_platform": details.local_platform,
                "remote_platform": details.remote_platform,
            }
        return _Outcome(operations=[self._operation(conflict, strategy, payload=payload)])

    @staticmethod
    def _operation(
        conflict: Conflict,
        strategy: ResolutionStrategy,
        *,
        window_id: int | None = None,
        payload: dict[str, Any] | None = None,
    ) -> MergeOperation:
        return MergeOperation(
            kind=conflict.kind,
            strategy=strategy,
            conflict_id=conflict.id,
            url=conflict.url,
            window_id=window_id,
            payload=payload or {},
        )


def resolve_and_merge(
    local_tabs: Sequence[Tab],
    remote_tabs: Sequence[Tab],
    conflicts: Sequence[Conflict],
    choices: Choices | None = None,
    *,
    device_id: str,
    clock: Clock | None = None,
) -> MergeResult:
    """Resolve conflicts (choices first, defaults otherwise) and merge.

    Args:
        local_tabs: Local tab set
        remote_tabs: Remote tab set
        conflicts: Detected conflicts
        choices: Optional conflict id -> strategy overrides
        device_id: Local device id (stamped on field-merged tabs)
        clock: Millisecond clock (default: wall clock)

    Returns:
        MergeResult with merged tabs, applied and unresolved conflicts
    """
    return MergeEngine(device_id, clock=clock).merge(local_tabs, remote_tabs, conflicts, choices)
