"""Default resolution strategies.

When no choice is supplied for a conflict, this module decides how it is
resolved.

Table:
| Kind                    | Default              | Reason                          |
|-------------------------|----------------------|---------------------------------|
| concurrent_modification | local_wins           | The user is looking at local    |
| stale_local             | remote_wins          | Remote is fresher               |
| stale_remote            | local_wins           | Local is fresher                |
| modified                | merge_metadata       | Keep the best of both tabs      |
| duplicate               | keep_newest          | One copy, latest state          |
| window_count            | merge_windows        | Never drop a window             |
| tab_order               | local_order          | Don't reshuffle the user's tabs |
| pinned_status           | keep_pinned          | Pinning is deliberate           |
| window_organization     | local_organization   | Don't move the user's tabs      |
| same_device_id          | regenerate_device_id | Identities must be unique       |
| platform_difference     | platform_aware_merge | Informational only              |

A kind with no rule resolves to manual, i.e. stays unresolved.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from tabsync.client.sync.domain.conflicts import (
    Conflict,
    ConflictKind,
    ResolutionStrategy,
)

logger = logging.getLogger(__name__)

# Conflict id -> chosen strategy (enum or its string value)
Choices = Mapping[str, ResolutionStrategy | str]


@dataclass(frozen=True)
class DefaultRule:
    """A rule in the default strategy table."""

    kind: ConflictKind
    strategy: ResolutionStrategy
    reason: str


@dataclass(frozen=True)
class Resolution:
    """The strategy selected for one conflict.

    Attributes:
        conflict_id: Conflict this resolution applies to
        strategy: Selected strategy
        payload: Optional strategy-specific data
        explicit: True when the strategy was chosen rather than defaulted
    """

    conflict_id: str
    strategy: ResolutionStrategy
    payload: Any = None
    explicit: bool = field(default=False, compare=False)

    @property
    def is_manual(self) -> bool:
        return self.strategy is ResolutionStrategy.MANUAL


# Declarative default rules
DEFAULT_RULES: list[DefaultRule] = [
    DefaultRule(
        kind=ConflictKind.CONCURRENT_MODIFICATION,
        strategy=ResolutionStrategy.LOCAL_WINS,
        reason="Local state is what the user currently sees",
    ),
    DefaultRule(
        kind=ConflictKind.STALE_LOCAL,
        strategy=ResolutionStrategy.REMOTE_WINS,
        reason="Local data is older than the staleness threshold",
    ),
    DefaultRule(
        kind=ConflictKind.STALE_REMOTE,
        strategy=ResolutionStrategy.LOCAL_WINS,
        reason="Remote data is older than the staleness threshold",
    ),
    DefaultRule(
        kind=ConflictKind.MODIFIED,
        strategy=ResolutionStrategy.MERGE_METADATA,
        reason="Field-level merge keeps the most information",
    ),
    DefaultRule(
        kind=ConflictKind.DUPLICATE,
        strategy=ResolutionStrategy.KEEP_NEWEST,
        reason="Keep a single copy with the latest state",
    ),
    DefaultRule(
        kind=ConflictKind.WINDOW_COUNT,
        strategy=ResolutionStrategy.MERGE_WINDOWS,
        reason="Keep every window from both sides",
    ),
    DefaultRule(
        kind=ConflictKind.TAB_ORDER,
        strategy=ResolutionStrategy.LOCAL_ORDER,
        reason="Keep the local tab order",
    ),
    DefaultRule(
        kind=ConflictKind.PINNED_STATUS,
        strategy=ResolutionStrategy.KEEP_PINNED,
        reason="A pin on either side is kept",
    ),
    DefaultRule(
        kind=ConflictKind.WINDOW_ORGANIZATION,
        strategy=ResolutionStrategy.LOCAL_ORGANIZATION,
        reason="Keep tabs in their local windows",
    ),
    DefaultRule(
        kind=ConflictKind.SAME_DEVICE_ID,
        strategy=ResolutionStrategy.REGENERATE_DEVICE_ID,
        reason="Two devices must not share an identity",
    ),
    DefaultRule(
        kind=ConflictKind.PLATFORM_DIFFERENCE,
        strategy=ResolutionStrategy.PLATFORM_AWARE_MERGE,
        reason="Platform differences are informational",
    ),
]


class ResolutionStrategyResolver:
    """Selects a resolution strategy for each conflict."""

    def __init__(self, rules: list[DefaultRule] | None = None) -> None:
        self._rules = {rule.kind: rule for rule in (rules or DEFAULT_RULES)}

    def default_for(self, kind: ConflictKind) -> tuple[ResolutionStrategy, str]:
        """Default strategy for a kind, with the reason.

        Returns:
            (strategy, reason) tuple; MANUAL when the kind has no rule
        """
        rule = self._rules.get(kind)
        if rule is None:
            return ResolutionStrategy.MANUAL, "No default rule, leaving to the user"
        return rule.strategy, rule.reason

    def resolve(self, conflict: Conflict, choices: Choices | None = None) -> Resolution:
        """Select the strategy for a conflict.

        A valid choice for the conflict id wins; anything else falls back to
        the default table.

        Args:
            conflict: Conflict to resolve
            choices: Optional conflict id -> strategy mapping

        Returns:
            The selected resolution
        """
        chosen = self._valid_choice(conflict, choices)
        if chosen is not None:
            return Resolution(conflict.id, chosen, explicit=True)

        strategy, reason = self.default_for(conflict.kind)
        logger.debug("Default %s for %s: %s", strategy.value, conflict.id, reason)
        return Resolution(conflict.id, strategy)

    def resolve_all(
        self, conflicts: list[Conflict], choices: Choices | None = None
    ) -> list[Resolution]:
        return [self.resolve(conflict, choices) for conflict in conflicts]

    def missing_defaults(self) -> list[ConflictKind]:
        """Kinds with no default rule."""
        return [kind for kind in ConflictKind if kind not in self._rules]

    def _valid_choice(
        self, conflict: Conflict, choices: Choices | None
    ) -> ResolutionStrategy | None:
        if not choices or conflict.id not in choices:
            return None

        raw = choices[conflict.id]
        try:
            strategy = ResolutionStrategy(raw)
        except ValueError:
            logger.warning("Ignoring unknown strategy %r for %s", raw, conflict.id)
            return None

        if strategy not in conflict.candidate_strategies:
            logger.warning(
                "Ignoring strategy %s for %s: not valid for %s conflicts",
                strategy.value,
                conflict.id,
                conflict.subtype,
            )
            return None
        return strategy
