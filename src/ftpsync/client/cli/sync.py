"""Sync command for the ftpsync CLI.

Commands:
- sync: Synchronize the local folder with the remote folder
"""

from __future__ import annotations

import logging
import sys
import time

import click

from ftpsync.client.cli.config import (
    NotConfiguredError,
    get_file_log_path,
    get_log_path,
    load_account,
    setup_logging,
)
from ftpsync.client.sync.types import SyncReport, SyncTo

logger = logging.getLogger(__name__)


def display_report(report: SyncReport) -> None:
    """Display the summary of a drain cycle."""
    from ftpsync.client.notifications import summarize

    for item in report.successful:
        arrow = "↑" if item.sync_to == SyncTo.REMOTE else "↓"
        click.echo(f"  {arrow} {item.action.value:<8} {item.new_common_path}")

    message = summarize(report)
    if report.failed:
        click.echo(click.style(f"  ✗ {report.failed} failed", fg="red"))
    if message:
        click.echo(f"  ✓ {message}")
    elif not report.failed:
        click.echo("Everything is up to date.")


@click.command()
@click.option("--watch", "-w", is_flag=True, help="Watch for changes and sync continuously.")
@click.option("--notify/--no-notify", default=True, help="Show desktop notifications in watch mode.")
@click.pass_context
def sync(ctx: click.Context, watch: bool, notify: bool) -> None:
    """Synchronize the local folder with the remote folder.

    Uploads local changes and downloads remote changes.
    Use --watch to keep monitoring both sides.
    """
    from ftpsync.client.ftp import FtpStore
    from ftpsync.client.notifications import notify_error, notify_sync_report
    from ftpsync.client.state import FileLog
    from ftpsync.client.sync import (
        ChangeAction,
        ClientItem,
        FileWatcher,
        SyncError,
        SyncQueue,
        SyncQueueItem,
    )

    verbose = bool(ctx.obj and ctx.obj.get("verbose"))
    setup_logging(verbose, get_log_path())

    try:
        account = load_account()
    except NotConfiguredError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if not account.local_path.exists():
        account.local_path.mkdir(parents=True)
        click.echo(f"Created local folder: {account.local_path}")

    remote = FtpStore(account)
    try:
        remote.connect()
    except SyncError as e:
        click.echo(f"Error: {e}", err=True)
        if watch and notify:
            notify_error(str(e))
        sys.exit(1)

    file_log = FileLog(get_file_log_path())

    def on_report(report: SyncReport) -> None:
        display_report(report)
        if watch and notify:
            notify_sync_report(report)

    queue = SyncQueue(
        account,
        remote,
        file_log,
        on_report=on_report,
        on_state_change=lambda state: logger.debug("State: %s", state.value),
        autostart=watch,
    )

    click.echo(f"Syncing {account.local_path} with {account.host}{account.remote_path}...")

    watcher = None
    if watch:
        watcher = FileWatcher(account.local_path, queue, ignore_patterns=account.ignore_patterns)
        queue.set_guard(watcher)
        watcher.start()

    # Local changes made while not running, then everything on the remote side
    queue.add(
        SyncQueueItem(
            item=ClientItem.folder("."),
            action=ChangeAction.CHANGED,
            sync_to=SyncTo.REMOTE,
            skip_notification=True,
        )
    )
    queue.add_root_scan()

    try:
        if watch:
            click.echo("\nWatching for changes... (Ctrl+C to stop)\n")
            while True:
                time.sleep(1.0)
        else:
            queue.start_queue()
            queue.wait_idle()
    except KeyboardInterrupt:
        click.echo("\nStopping...")
    finally:
        if watcher is not None:
            watcher.stop()
        queue.stop()
        file_log.close()
        remote.close()
