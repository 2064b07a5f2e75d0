"""Command-line interface for ftpsync.

This module provides the main CLI entry point and assembles all commands.

Commands:
- init: Configure the folder pair to synchronize
- sync: Synchronize once, or continuously with --watch
- status: Show the configured account and the baseline log
"""

from __future__ import annotations

import click

from ftpsync.client.cli.account import init, status
from ftpsync.client.cli.config import (
    get_config_dir,
    get_config_file,
    load_account,
    load_config,
    save_config,
    setup_logging,
)
from ftpsync.client.cli.sync import sync


@click.group()
@click.version_option(package_name="ftpsync")
@click.option("--verbose", "-v", is_flag=True, help="Log debug messages.")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """ftpsync - Keep a local folder in sync with an FTP folder."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    setup_logging(verbose)


cli.add_command(init)
cli.add_command(sync)
cli.add_command(status)


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
    "load_account",
    "load_config",
    "save_config",
]
