"""Conflict prioritization.

Conflicts are handled most severe first. Within one severity, the category
decides (alphabetical by name), and ties keep detection order.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from tabsync.client.sync.domain.conflicts import Conflict


def priority_key(conflict: Conflict) -> tuple[int, str]:
    """Sort key: severity descending, then category name."""
    return (-int(conflict.severity), conflict.type)


def prioritize(conflicts: Iterable[Conflict]) -> list[Conflict]:
    """Return conflicts in handling order. Stable, never mutates input."""
    return sorted(conflicts, key=priority_key)


def group_by_type(conflicts: Iterable[Conflict]) -> dict[str, int]:
    """Count conflicts per "<type>_<subtype>" key (diagnostics only)."""
    return dict(Counter(f"{c.type}_{c.subtype}" for c in conflicts))


def group_by_severity(conflicts: Iterable[Conflict]) -> dict[int, int]:
    """Count conflicts per severity value (diagnostics only)."""
    return dict(Counter(int(c.severity) for c in conflicts))
