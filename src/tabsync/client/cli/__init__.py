"""Command-line interface for tabsync.

This module provides the main CLI entry point and assembles all commands.

Commands:
- init: Configure the remote store and create this device's identity
- sync: Run one sync pass with the remote store
- conflicts: List conflicts with the remote snapshot
- status: Show device identity and sync statistics
- history: Show recent sync passes
"""

from __future__ import annotations

import click

from tabsync.client.cli.config import (
    get_config_dir,
    get_config_file,
    load_config,
    load_sync_config,
    save_config,
    setup_logging,
)
from tabsync.client.cli.init import init
from tabsync.client.cli.status import history, status
from tabsync.client.cli.sync import conflicts, sync


@click.group()
@click.version_option(package_name="tabsync")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """tabsync - Browser tab synchronization with conflict resolution."""
    setup_logging(verbose)


# Setup commands
cli.add_command(init)

# Sync commands
cli.add_command(sync)
cli.add_command(conflicts)

# Status commands
cli.add_command(status)
cli.add_command(history)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    # Main entry points
    "cli",
    "main",
    # Config utilities
    "get_config_dir",
    "get_config_file",
    "load_config",
    "load_sync_config",
    "save_config",
]
