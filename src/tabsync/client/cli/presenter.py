"""Interactive conflict presenter for the CLI."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import click

from tabsync.client.sync.domain.conflicts import Conflict, Severity
from tabsync.client.sync.domain.decisions import ResolutionStrategyResolver

SEVERITY_COLORS = {
    Severity.HIGH: "red",
    Severity.MEDIUM: "yellow",
    Severity.LOW: "cyan",
}


def format_conflict(conflict: Conflict) -> str:
    """One-line summary: [SEVERITY] type/subtype: description."""
    label = click.style(
        f"[{conflict.severity.name}]", fg=SEVERITY_COLORS[conflict.severity]
    )
    return f"{label} {conflict.type}/{conflict.subtype}: {conflict.description}"


class ClickPromptPresenter:
    """Asks the user to pick a strategy for each conflict.

    The default of each prompt is the strategy that would apply anyway.
    """

    def __init__(self, resolver: ResolutionStrategyResolver | None = None) -> None:
        self._resolver = resolver or ResolutionStrategyResolver()

    def present(
        self, conflicts: Sequence[Conflict], context: dict[str, Any]
    ) -> dict[str, str] | None:
        if not conflicts:
            return None

        click.echo(
            f"\n{len(conflicts)} conflicts between this device and "
            f"{context.get('remote_device_id', 'remote')}:"
        )
        choices: dict[str, str] = {}
        for conflict in conflicts:
            click.echo(f"\n{format_conflict(conflict)}")
            default, _ = self._resolver.default_for(conflict.kind)
            choice = click.prompt(
                "Resolution",
                type=click.Choice([s.value for s in conflict.candidate_strategies]),
                default=default.value,
                show_default=True,
            )
            choices[conflict.id] = choice
        return choices
