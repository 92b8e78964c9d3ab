"""Sync commands for tabsync CLI.

Commands:
- sync: Run one sync pass with the remote store
- conflicts: List conflicts with the remote snapshot without syncing
"""

from __future__ import annotations

import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import click

from tabsync.client.api import HTTPRemoteStore
from tabsync.client.cli.config import (
    get_default_tabs_file,
    get_state_db,
    load_sync_config,
)
from tabsync.client.cli.presenter import ClickPromptPresenter, format_conflict
from tabsync.client.device import build_device_metadata
from tabsync.client.state import LocalSyncState
from tabsync.client.store import DirectoryRemoteStore
from tabsync.client.sync import (
    ConcurrentSyncError,
    ConflictPresenter,
    OperationStatus,
    SyncCoordinator,
    SyncDirection,
    SyncError,
    SyncOptions,
)
from tabsync.client.tabs import JsonFileTabSource
from tabsync.core.config import SyncConfig


def require_config() -> SyncConfig:
    """Load the sync configuration or exit with an error."""
    config = load_sync_config()
    if config is None:
        click.echo("Error: tabsync not initialized. Run 'tabsync init' first.", err=True)
        sys.exit(1)
    return config


@contextmanager
def open_coordinator(
    config: SyncConfig, presenter: ConflictPresenter | None = None
) -> Iterator[SyncCoordinator]:
    """Build a coordinator from the configuration and close its resources after use."""
    state = LocalSyncState(get_state_db(), history_limit=config.history_limit)
    store: HTTPRemoteStore | DirectoryRemoteStore
    if config.is_http:
        store = HTTPRemoteStore(config)
    else:
        store = DirectoryRemoteStore(config.store_url)

    tab_source = JsonFileTabSource(config.tabs_file or get_default_tabs_file(), state.current_id)
    try:
        yield SyncCoordinator(
            tab_source,
            store,
            state,
            last_sync_store=state,
            history=state,
            presenter=presenter,
            config=config,
            metadata_provider=lambda device_id: build_device_metadata(
                device_id, config.device_name
            ),
        )
    finally:
        if isinstance(store, HTTPRemoteStore):
            store.close()
        state.close()


def _describe_operation(operation: dict[str, Any]) -> str:
    details = [
        f"{key}={value}"
        for key, value in operation.items()
        if key not in ("type", "action", "timestamp", "mergeOperations")
    ]
    text = f"{operation['type']}: {operation['action']}"
    return f"{text} ({', '.join(details)})" if details else text


@click.command()
@click.option(
    "--direction",
    "-d",
    type=click.Choice([d.value for d in SyncDirection]),
    default=SyncDirection.BIDIRECTIONAL.value,
    show_default=True,
    help="Which way to sync.",
)
@click.option("--dry-run", is_flag=True, help="Detect and plan without changing anything.")
@click.option("--force", is_flag=True, help="On download, replace local tabs with remote ones.")
@click.option("--interactive", "-i", is_flag=True, help="Choose how to resolve each conflict.")
def sync(direction: str, dry_run: bool, force: bool, interactive: bool) -> None:
    """Synchronize tabs with the remote store.

    Bidirectional sync detects conflicts between local and remote tabs,
    resolves them and uploads the merged result.
    """
    config = require_config()
    presenter = ClickPromptPresenter() if interactive else None
    options = SyncOptions(force_overwrite=force, dry_run=dry_run)

    with open_coordinator(config, presenter) as coordinator:
        try:
            record = coordinator.run_sync_pass(direction, options)
        except ConcurrentSyncError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)

    prefix = "[dry run] " if dry_run else ""
    for operation in record.operations:
        click.echo(f"{prefix}{_describe_operation(operation)}")
    if record.conflicts:
        click.echo(f"{prefix}{len(record.conflicts)} conflicts detected")

    if record.status is OperationStatus.FAILED:
        click.echo(f"Sync failed: {record.error_message}", err=True)
        sys.exit(1)

    click.echo(f"{prefix}Sync completed in {record.duration}ms")


@click.command()
def conflicts() -> None:
    """List conflicts with the remote snapshot, highest severity first."""
    config = require_config()

    with open_coordinator(config) as coordinator:
        try:
            detected = coordinator.preview_conflicts()
        except SyncError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)

    if not detected:
        click.echo("No conflicts.")
        return

    for conflict in detected:
        strategies = ", ".join(s.value for s in conflict.candidate_strategies)
        click.echo(format_conflict(conflict))
        click.echo(f"    strategies: {strategies}")
    click.echo(f"\n{len(detected)} conflicts")
