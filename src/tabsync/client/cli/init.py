"""Setup command for tabsync CLI.

Commands:
- init: Configure the remote store and create this device's identity
"""

from __future__ import annotations

import sys
from pathlib import Path

import click

from tabsync.client.cli.config import (
    get_config_dir,
    get_config_file,
    get_default_tabs_file,
    get_state_db,
    load_config,
    save_config,
)
from tabsync.client.device import get_device_name
from tabsync.client.state import LocalSyncState
from tabsync.core.config import SyncConfig


@click.command()
@click.option(
    "--store",
    "store_url",
    prompt="Remote store (http(s) URL or shared folder)",
    help="Snapshot server URL or shared folder path.",
)
@click.option("--token", default="", help="Bearer token for an HTTP store.")
@click.option(
    "--tabs-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="JSON file shared with the browser extension.",
)
@click.option("--device-name", default=None, help="Human-readable device name.")
@click.option("--force", is_flag=True, help="Overwrite an existing configuration.")
def init(
    store_url: str,
    token: str,
    tabs_file: Path | None,
    device_name: str | None,
    force: bool,
) -> None:
    """Initialize tabsync on this device.

    Saves the store settings to ~/.tabsync/config.json and creates the
    device id used in snapshots.
    """
    config_dir = get_config_dir()
    existing = load_config()

    if existing.get("store_url") and not force:
        click.echo("Error: tabsync already initialized.", err=True)
        click.echo(f"Config file: {get_config_file()}", err=True)
        click.echo("\nTo start over, run:")
        click.echo("  tabsync init --force")
        sys.exit(1)

    config = SyncConfig(
        store_url=store_url,
        token=token,
        tabs_file=str((tabs_file or get_default_tabs_file()).expanduser()),
        device_name=device_name or get_device_name(),
    )
    if not config.is_http:
        store_path = Path(config.store_url).expanduser().resolve()
        store_path.mkdir(parents=True, exist_ok=True)
        config.store_url = str(store_path)

    existing.update(config.to_dict())
    save_config(existing)

    state = LocalSyncState(get_state_db(), history_limit=config.history_limit)
    try:
        device_id = state.current_id()
    finally:
        state.close()

    click.echo("tabsync initialized successfully!")
    click.echo(f"Device ID: {device_id}")
    click.echo(f"Device name: {config.device_name}")
    click.echo(f"Store: {config.store_url}")
    click.echo(f"Tabs file: {config.tabs_file}")
    click.echo(f"Config directory: {config_dir}")
    if config.is_http and not config.is_secure:
        click.echo("Warning: store URL is not HTTPS; tabs are sent in clear text.", err=True)
