"""Layout pass.

Applies the structural decisions recorded by the merge engine to the merged
tab set:

| Strategy                                   | Effect                           |
|--------------------------------------------|----------------------------------|
| keep_pinned / remove_pin                   | Set the URL's pinned flag        |
| local_order / remote_order / merge_order   | Reorder the window by URL order  |
| local_organization / remote_organization / | Move each URL to its recorded    |
| merge_smart                                | window                           |
| merge_windows                              | Keep every window                |
| local_structure / remote_structure         | Fold unknown windows into the    |
|                                            | preferred side's lowest window   |

The pass never adds or drops tabs and always ends with dense indices.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import replace
from typing import Any

from tabsync.client.sync.domain.conflicts import ConflictKind, ResolutionStrategy
from tabsync.client.sync.domain.merge import MergeOperation, reindex
from tabsync.client.sync.types import Tab

logger = logging.getLogger(__name__)


def apply_layout(tabs: Sequence[Tab], operations: Sequence[MergeOperation]) -> list[Tab]:
    """Apply recorded structural operations, in order.

    Args:
        tabs: Merged tab set
        operations: Operations recorded by the merge engine

    Returns:
        Re-laid-out tabs with dense per-window indices
    """
    result = reindex(tabs)
    for op in operations:
        if op.kind is ConflictKind.PINNED_STATUS:
            result = set_pinned(result, op.url, bool(op.payload.get("pinned")))
        elif op.kind is ConflictKind.TAB_ORDER:
            result = reorder_window(result, op.window_id, op.payload.get("order", []))
        elif op.kind is ConflictKind.WINDOW_ORGANIZATION:
            result = move_tabs(result, op.payload.get("assignments", {}))
        elif op.kind is ConflictKind.WINDOW_COUNT:
            result = fold_windows(result, op.strategy, op.payload)
    return reindex(result)


def set_pinned(tabs: Sequence[Tab], url: str | None, pinned: bool) -> list[Tab]:
    return [
        replace(tab, pinned=pinned) if tab.url == url and tab.pinned != pinned else tab
        for tab in tabs
    ]


def reorder_window(
    tabs: Sequence[Tab], window_id: int | None, order: Sequence[str]
) -> list[Tab]:
    """Reorder one window by URL order.

    URLs not in the order keep their relative order after the listed ones.
    """
    rank = {url: i for i, url in enumerate(order)}
    positions = sorted(
        (i for i, tab in enumerate(tabs) if tab.window_id == window_id),
        key=lambda i: (rank.get(tabs[i].url, len(rank)), tabs[i].index),
    )
    result = list(tabs)
    for new_index, i in enumerate(positions):
        if result[i].index != new_index:
            result[i] = replace(result[i], index=new_index)
    return result


def move_tabs(tabs: Sequence[Tab], assignments: Mapping[str, int]) -> list[Tab]:
    """Move tabs to their assigned windows (by URL)."""
    return _move(tabs, lambda tab: assignments.get(tab.url))


def fold_windows(
    tabs: Sequence[Tab], strategy: ResolutionStrategy, payload: Mapping[str, Any]
) -> list[Tab]:
    """Apply a window count decision."""
    if strategy is ResolutionStrategy.LOCAL_STRUCTURE:
        preferred = set(payload.get("local_windows", []))
    elif strategy is ResolutionStrategy.REMOTE_STRUCTURE:
        preferred = set(payload.get("remote_windows", []))
    else:
        # merge_windows keeps the union
        return list(tabs)

    if not preferred:
        return list(tabs)
    target = min(preferred)
    return _move(tabs, lambda tab: None if tab.window_id in preferred else target)


def _move(tabs: Sequence[Tab], target_of: Callable[[Tab], int | None]) -> list[Tab]:
    """Move each tab to target_of(tab), appending after the target's last tab."""
    next_index: dict[int, int] = {}
    for tab in tabs:
        next_index[tab.window_id] = max(next_index.get(tab.window_id, 0), tab.index + 1)

    result = []
    for tab in tabs:
        target = target_of(tab)
        if target is None or target == tab.window_id:
            result.append(tab)
            continue
        index = next_index.get(target, 0)
        next_index[target] = index + 1
        logger.debug("Moving %s from window %d to %d", tab.url, tab.window_id, target)
        result.append(replace(tab, window_id=target, index=index))
    return result
