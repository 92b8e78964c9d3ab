"""Domain modules for sync business rules.

This package centralizes business logic for tab sync:
- conflicts: Conflict kinds, severities, strategies and details
- detector: Conflict detection between local tabs and a remote snapshot
- priorities: Conflict ordering
- decisions: Default resolution strategies
- merge: Resolution and merge of two tab sets
- layout: Structural decisions applied to merged tabs
- session: Sync pass state machine

Architecture:
    domain/ contains pure business logic without external dependencies.
    I/O (tab source, remote store, local state) stays in the coordinator.
"""

from tabsync.client.sync.domain.conflicts import (
    CANDIDATE_STRATEGIES,
    Conflict,
    ConflictCategory,
    ConflictKind,
    ResolutionStrategy,
    Severity,
)
from tabsync.client.sync.domain.decisions import (
    DEFAULT_RULES,
    DefaultRule,
    Resolution,
    ResolutionStrategyResolver,
)
from tabsync.client.sync.domain.detector import ConflictDetector, detect_conflicts
from tabsync.client.sync.domain.layout import apply_layout
from tabsync.client.sync.domain.merge import (
    MergeEngine,
    MergeOperation,
    MergeResult,
    resolve_and_merge,
)
from tabsync.client.sync.domain.priorities import (
    group_by_severity,
    group_by_type,
    prioritize,
)
from tabsync.client.sync.domain.session import (
    InvalidTransitionError,
    SyncPhase,
    SyncSession,
)

__all__ = [
    # conflicts
    "Conflict",
    "ConflictCategory",
    "ConflictKind",
    "Severity",
    "ResolutionStrategy",
    "CANDIDATE_STRATEGIES",
    # detector
    "ConflictDetector",
    "detect_conflicts",
    # priorities
    "prioritize",
    "group_by_type",
    "group_by_severity",
    # decisions
    "DefaultRule",
    "DEFAULT_RULES",
    "Resolution",
    "ResolutionStrategyResolver",
    # merge
    "MergeEngine",
    "MergeOperation",
    "MergeResult",
    "resolve_and_merge",
    # layout
    "apply_layout",
    # session
    "SyncPhase",
    "SyncSession",
    "InvalidTransitionError",
]
