"""Status commands for tabsync CLI.

Commands:
- status: Show device identity, store and sync statistics
- history: Show recent sync passes
"""

from __future__ import annotations

from datetime import datetime

import click

from tabsync.client.cli.config import get_config_file, get_state_db
from tabsync.client.cli.sync import require_config
from tabsync.client.state import LocalSyncState


def format_timestamp(timestamp_ms: int | None) -> str:
    """Format an epoch ms timestamp in local time."""
    if not timestamp_ms:
        return "never"
    return datetime.fromtimestamp(timestamp_ms / 1000).strftime("%Y-%m-%d %H:%M:%S")


@click.command()
def status() -> None:
    """Show this device's sync status."""
    config = require_config()
    state = LocalSyncState(get_state_db(), history_limit=config.history_limit)
    try:
        device_id = state.current_id()
        stats = state.get_statistics()
    finally:
        state.close()

    click.echo(f"Device ID: {device_id}")
    click.echo(f"Device name: {config.device_name or '-'}")
    click.echo(f"Store: {config.store_url}")
    click.echo(f"Tabs file: {config.tabs_file or '-'}")
    click.echo(f"Config file: {get_config_file()}")
    click.echo(f"Last sync: {format_timestamp(stats['last_sync_at'])}")
    click.echo(
        f"Syncs: {stats['total']} ({stats['completed']} completed, "
        f"{stats['failed']} failed)"
    )
    click.echo(f"Conflicts seen: {stats['conflicts']}")
    click.echo(f"Average duration: {stats['average_duration']:.0f}ms")


@click.command()
@click.option("--limit", "-n", type=click.IntRange(min=1), default=10, show_default=True)
def history(limit: int) -> None:
    """Show recent sync passes, newest first."""
    config = require_config()
    state = LocalSyncState(get_state_db(), history_limit=config.history_limit)
    try:
        records = state.list_history(limit)
    finally:
        state.close()

    if not records:
        click.echo("No sync history.")
        return

    for record in records:
        line = (
            f"{format_timestamp(record['startTime'])}  {record['direction']:<13}  "
            f"{record['status']:<9}  {record['duration']}ms"
        )
        if record.get("dryRun"):
            line += "  (dry run)"
        if record["conflicts"]:
            line += f"  {len(record['conflicts'])} conflicts"
        if record["errors"]:
            line += f"  error: {record['errors'][0]['message']}"
        click.echo(line)
