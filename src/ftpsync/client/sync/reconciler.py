"""Discovery of work by comparing the two replicas.

This module provides:
- Reconciler: Three-way timestamp check for single files, and folder
  comparisons in both directions that queue the items actually needed

Three-way check: the current local and remote modification times are
compared with the ones recorded in the file log after the last successful
sync. Differences of one second or less are noise.

    remote changed, local not           -> download
    both changed, remote by more        -> download
    local changed                       -> re-queue an upload (no inline transfer)
    neither changed                     -> nothing to do
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import replace
from pathlib import Path
from typing import TYPE_CHECKING

from ftpsync.client.sync.ignore import IGNORE_FILE_NAME, IgnorePatterns
from ftpsync.client.sync.types import (
    REMOTE_ERRORS,
    ChangeAction,
    ClientItem,
    ItemType,
    StatusType,
    SyncError,
    SyncQueueItem,
    SyncTo,
    TransferStatus,
    common_path,
    to_local,
)
from ftpsync.client.sync.watcher import paused
from ftpsync.core.types import SyncState

if TYPE_CHECKING:
    from ftpsync.client.remote import RemoteStore
    from ftpsync.client.state import FileLog
    from ftpsync.client.sync.queue import SyncQueue
    from ftpsync.client.sync.watcher import WatchGuard
    from ftpsync.core.config import AccountConfig

logger = logging.getLogger(__name__)

# Timestamp differences up to this many seconds are ignored
TOLERANCE_S = 1.0


class Reconciler:
    """Compares replicas and feeds the differences to the queue."""

    def __init__(
        self,
        config: AccountConfig,
        remote: RemoteStore,
        file_log: FileLog,
        queue: SyncQueue,
        guard: WatchGuard,
        ignore: IgnorePatterns | None = None,
    ) -> None:
        self._config = config
        self._remote = remote
        self._log = file_log
        self._queue = queue
        self.guard = guard
        if ignore is None:
            ignore = IgnorePatterns(config.ignore_patterns)
            ignore.load_from_file(config.local_path / IGNORE_FILE_NAME)
        self._ignore = ignore

    @property
    def root(self) -> Path:
        """Local synchronized root."""
        return self._config.local_path

    def gets_synced(self, path: str, is_dir: bool = False) -> bool:
        """Check if a common path takes part in synchronization."""
        return path == "." or self._ignore.gets_synced(path, is_dir=is_dir)

    # === Files ===

    def download(self, item: SyncQueueItem) -> TransferStatus:
        """Download a remote file with the local watcher paused."""
        with paused(self.guard):
            return self._remote.safe_download(item, to_local(self.root, item.common_path))

    def fetch_file(self, item: SyncQueueItem) -> TransferStatus:
        """Bring a remote file to the local folder if it is missing or outdated."""
        if not to_local(self.root, item.common_path).is_file():
            return self.download(item)
        return self.check_existing_file(item)

    def check_existing_file(self, item: SyncQueueItem) -> TransferStatus:
        """Decide the transfer direction for a file present on both replicas.

        Returns:
            The download outcome, or TransferStatus.NONE if nothing was
            transferred.
        """
        path = item.common_path
        local = to_local(self.root, path)

        stat = local.stat()
        loc_now = stat.st_mtime
        rem_now = self._remote.try_get_modified_time(path)
        if rem_now is None:
            rem_now = item.item.last_write_time

        rem_diff = rem_now - self._log.get_remote(path)
        loc_diff = loc_now - self._log.get_local(path)

        status = TransferStatus.NONE
        if rem_diff > TOLERANCE_S and loc_diff > TOLERANCE_S:
            if rem_diff > loc_diff:
                status = self.download(item)
        elif rem_diff > TOLERANCE_S:
            status = self.download(item)

        if loc_diff > TOLERANCE_S:
            # Changed locally without the watcher noticing: upload through the queue
            logger.warning("%s seems to have escaped the startup check", path)
            self._queue.add(
                SyncQueueItem(
                    item=ClientItem.file(path, last_write_time=loc_now, size=stat.st_size),
                    action=ChangeAction.CHANGED,
                    sync_to=SyncTo.REMOTE,
                )
            )

        return status

    # === Folders ===

    def _walk_local(self, folder: Path) -> tuple[list[Path], list[Path]]:
        """List synchronized subfolders and files below a local folder."""
        dirs: list[Path] = []
        files: list[Path] = []
        if not folder.is_dir():
            return dirs, files

        for dirpath, dirnames, filenames in os.walk(folder):
            current = Path(dirpath)
            kept = []
            for name in sorted(dirnames):
                path = current / name
                if self._ignore.should_ignore(path, self.root):
                    continue
                kept.append(name)
                dirs.append(path)
            dirnames[:] = kept

            for name in sorted(filenames):
                path = current / name
                if not self._ignore.should_ignore(path, self.root):
                    files.append(path)

        return dirs, files

    def _relative(self, path: Path) -> str:
        return common_path(str(path.relative_to(self.root)))

    def _reconnect(self) -> None:
        self._queue.set_state(SyncState.OFFLINE)
        try:
            self._remote.reconnect()
        except SyncError as e:
            logger.error("Reconnect failed: %s", e)

    def sync_remote_folder(self, item: SyncQueueItem) -> StatusType:
        """Bring a local folder in line with the remote one.

        Missing local folders are created and missing or outdated files
        downloaded right away. Local items the remote store lacks are
        queued: as uploads when they are new or changed since the last
        sync, as local deletions otherwise.
        """
        path = item.common_path
        self._queue.set_state(SyncState.LISTING)
        logger.debug("Syncing remote folder %s to local", path)

        if not self._remote.check_working_directory():
            self._queue.set_state(SyncState.OFFLINE)
            return StatusType.FAILURE

        entries = self._remote.list_recursive(path)
        if self._remote.listing_failed:
            logger.warning("Listing of %s failed", path)
            self._reconnect()
            return StatusType.FAILURE

        self._queue.set_state(SyncState.SYNCING)
        remote_paths: set[str] = set()

        for entry in entries:
            cp = common_path(entry.path)
            remote_paths.add(cp)
            is_dir = entry.type == ItemType.FOLDER
            if not self.gets_synced(cp, is_dir):
                continue
            if self._queue.has_pending_remote_delete(cp, include_ancestors=True):
                # Deleted locally, the delete has not reached the server yet
                continue

            sqi = SyncQueueItem(
                item=entry.to_client_item(),
                action=ChangeAction.CREATED,
                sync_to=SyncTo.LOCAL,
            )
            local = to_local(self.root, cp)

            if is_dir:
                if local.is_dir():
                    continue
                try:
                    with paused(self.guard):
                        local.mkdir(parents=True, exist_ok=True)
                    sqi.status = StatusType.SUCCESS
                except OSError as e:
                    logger.error("Cannot create local folder %s: %s", local, e)
                    sqi.status = StatusType.FAILURE
                self._queue.record_completed(sqi)
                continue

            try:
                status = self.fetch_file(sqi)
            except Exception as e:
                logger.error("Failed to sync %s: %s", cp, e)
                status = TransferStatus.FAILURE
            if status == TransferStatus.NONE:
                continue
            sqi.status = StatusType.SUCCESS if status == TransferStatus.SUCCESS else StatusType.FAILURE
            self._queue.record_completed(sqi)

        dirs, files = self._walk_local(to_local(self.root, path))

        for local in files:
            cp = self._relative(local)
            if cp in remote_paths:
                continue
            try:
                stat = local.stat()
            except OSError:
                continue
            client_item = ClientItem.file(cp, last_write_time=stat.st_mtime, size=stat.st_size)
            if not self._log.contains(cp) or self._log.get_local(cp) != stat.st_mtime:
                # New or changed locally
                self._queue.add(SyncQueueItem(client_item, ChangeAction.CREATED, SyncTo.REMOTE))
            else:
                # Unchanged since the last sync: removed from the remote store
                self._queue.add(SyncQueueItem(client_item, ChangeAction.DELETED, SyncTo.LOCAL))

        for local in dirs:
            cp = self._relative(local)
            if cp in remote_paths or not self._log.has_folder(cp):
                continue
            self._queue.add(
                SyncQueueItem(ClientItem.folder(cp), ChangeAction.DELETED, SyncTo.LOCAL)
            )

        return StatusType.SUCCESS

    def check_local_folder(self, folder: SyncQueueItem) -> None:
        """Queue what the remote store lacks from a local folder.

        A folder missing remotely is queued itself, followed by every
        subfolder and file. When the remote store cannot be queried a failed
        copy of the scan is recorded and a fresh one retained for the next
        drain cycle; ``folder`` itself is left untouched.
        """
        path = folder.common_path
        if not self.gets_synced(path, is_dir=True):
            return

        remote_paths: set[str] = set()
        try:
            exists = path == "." or self._remote.exists(path)
            if exists:
                remote_paths = {common_path(e.path) for e in self._remote.list_recursive(path)}
            failed = self._remote.listing_failed
        except REMOTE_ERRORS as e:
            logger.warning("Cannot query %s: %s", path, e)
            failed = True

        if failed:
            logger.warning("Scan of %s failed, will retry", path)
            self._queue.record_completed(
                replace(folder, item=replace(folder.item), status=StatusType.FAILURE)
            )
            self._reconnect()
            self._queue.retain(
                replace(
                    folder,
                    item=replace(folder.item),
                    status=StatusType.WAITING,
                    completed_on=None,
                )
            )
            return

        if not exists:
            self._queue.enqueue(folder)

        dirs, files = self._walk_local(to_local(self.root, path))

        for local in dirs:
            cp = self._relative(local)
            if cp in remote_paths:
                continue
            self._queue.enqueue(
                SyncQueueItem(
                    ClientItem.folder(cp, last_write_time=time.time()),
                    ChangeAction.CHANGED,
                    SyncTo.REMOTE,
                )
            )

        for local in files:
            cp = self._relative(local)
            try:
                stat = local.stat()
            except OSError:
                continue
            if cp in remote_paths and stat.st_mtime <= self._log.get_local(cp):
                continue
            self._queue.enqueue(
                SyncQueueItem(
                    ClientItem.file(cp, last_write_time=stat.st_mtime, size=stat.st_size),
                    ChangeAction.CHANGED,
                    SyncTo.REMOTE,
                )
            )
