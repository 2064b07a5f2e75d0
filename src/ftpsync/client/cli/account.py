"""Account commands for the ftpsync CLI.

Commands:
- init: Configure the folder pair to synchronize
- status: Show the configured account and the baseline log
"""

from __future__ import annotations

import sys
import time
from pathlib import Path

import click

from ftpsync.client.cli.config import (
    NotConfiguredError,
    get_config_file,
    get_file_log_path,
    load_account,
    load_config,
    save_config,
)
from ftpsync.core.config import AccountConfig, RemoteProtocol, SyncDirection, SyncMethod


@click.command()
@click.option("--force", is_flag=True, help="Overwrite an existing configuration.")
def init(force: bool) -> None:
    """Configure the local and remote folders to synchronize.

    You will be prompted for the server, credentials and both folders.
    """
    config = load_config()
    if "account" in config and not force:
        click.echo("Error: ftpsync already initialized.", err=True)
        click.echo(f"Configuration exists at: {get_config_file()}", err=True)
        click.echo("\nTo start over, run:")
        click.echo("  ftpsync init --force")
        sys.exit(1)

    click.echo("Welcome to ftpsync!")
    click.echo("This wizard will set up the folder pair to keep in sync.\n")

    host = click.prompt("Server host")
    protocol = click.prompt(
        "Protocol",
        type=click.Choice([p.value for p in RemoteProtocol]),
        default=RemoteProtocol.FTP.value,
    )
    username = click.prompt("Username")
    password = click.prompt("Password", hide_input=True, default="", show_default=False)
    remote_path = click.prompt("Remote folder", default="/")
    local_input = click.prompt(
        "Local folder",
        default=str(Path.home() / "ftpsync"),
        show_default=True,
    )
    method = click.prompt(
        "Sync method",
        type=click.Choice([m.value for m in SyncMethod]),
        default=SyncMethod.AUTOMATIC.value,
    )
    frequency = 60
    if method == SyncMethod.AUTOMATIC.value:
        frequency = click.prompt("Check the remote folder every (seconds)", type=click.IntRange(min=1), default=60)

    try:
        account = AccountConfig(
            host=host,
            username=username,
            password=password,
            local_path=Path(local_input),
            remote_path=remote_path,
            protocol=RemoteProtocol(protocol),
            sync_method=SyncMethod(method),
            sync_frequency=frequency,
        )
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if not account.local_path.exists():
        account.local_path.mkdir(parents=True)
        click.echo(f"Created local folder: {account.local_path}")

    config["account"] = account.to_dict()
    save_config(config)

    click.echo(f"\nConfiguration saved to {get_config_file()}")
    click.echo("Run 'ftpsync sync' to synchronize.")


@click.command()
def status() -> None:
    """Show the configured account and what has been synchronized."""
    from ftpsync.client.state import FileLog

    try:
        account = load_account()
    except NotConfiguredError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(f"Server:     {account.protocol.value}://{account.username}@{account.host}:{account.port}")
    click.echo(f"Remote:     {account.remote_path}")
    click.echo(f"Local:      {account.local_path}")
    mode = account.sync_method.value
    if account.is_automatic:
        mode += f" (every {account.sync_frequency}s)"
    click.echo(f"Sync:       {mode}")
    if account.sync_direction != SyncDirection.BOTH:
        click.echo(f"Direction:  {account.sync_direction.value} only")

    log_path = get_file_log_path()
    if not log_path.exists():
        click.echo("\nNever synchronized.")
        return

    file_log = FileLog(log_path)
    try:
        files = file_log.list_files()
        folders = file_log.folders
    finally:
        file_log.close()

    click.echo(f"\nTracked:    {len(files)} files, {len(folders)} folders")
    if files:
        last = max(f.synced_at for f in files)
        click.echo(f"Last sync:  {time.strftime('%Y-%m-%d %H:%M:%S', time.localtime(last))}")
