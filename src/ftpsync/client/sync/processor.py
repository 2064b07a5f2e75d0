"""Execution of single queue items.

This module provides:
- ItemProcessor: Applies one queue item to the replica it targets and
  returns its terminal status

Failures never propagate: every error is logged and mapped to
StatusType.FAILURE so the worker can carry on with the next item.
"""

from __future__ import annotations

import logging
import shutil
from typing import TYPE_CHECKING

from send2trash import send2trash

from ftpsync.client.sync.types import (
    ChangeAction,
    LocalIOError,
    StatusType,
    SyncQueueItem,
    SyncTo,
    TransferStatus,
    to_local,
)
from ftpsync.client.sync.watcher import paused
from ftpsync.core.config import SyncDirection

if TYPE_CHECKING:
    from pathlib import Path

    from ftpsync.client.remote import RemoteStore
    from ftpsync.client.sync.reconciler import Reconciler
    from ftpsync.client.sync.watcher import WatchGuard
    from ftpsync.core.config import AccountConfig

logger = logging.getLogger(__name__)


def to_status(status: TransferStatus) -> StatusType:
    """Map a transfer outcome to an item status."""
    if status == TransferStatus.NONE:
        return StatusType.SKIPPED
    if status == TransferStatus.SUCCESS:
        return StatusType.SUCCESS
    return StatusType.FAILURE


class ItemProcessor:
    """Applies queue items to the local folder or the remote store."""

    def __init__(
        self,
        config: AccountConfig,
        remote: RemoteStore,
        reconciler: Reconciler,
        guard: WatchGuard,
    ) -> None:
        self._config = config
        self._remote = remote
        self._reconciler = reconciler
        self.guard = guard

    def allows(self, item: SyncQueueItem) -> bool:
        """Check the item against the account's one-way direction."""
        direction = self._config.sync_direction
        if direction == SyncDirection.LOCAL and item.sync_to == SyncTo.REMOTE:
            return False
        if direction == SyncDirection.REMOTE and item.sync_to == SyncTo.LOCAL:
            return False
        return True

    def process(self, item: SyncQueueItem) -> StatusType:
        """Process one item and return its terminal status."""
        if not self.allows(item):
            logger.debug("Skipping %r (direction %s)", item, self._config.sync_direction.value)
            item.skip_notification = True
            return StatusType.SKIPPED

        if item.action == ChangeAction.DELETED:
            return self._delete(item)
        if item.action == ChangeAction.RENAMED:
            return self._rename(item)
        return self._update(item)

    # === Deletes ===

    def _delete(self, item: SyncQueueItem) -> StatusType:
        try:
            if item.sync_to == SyncTo.LOCAL:
                with paused(self.guard):
                    self._delete_local(to_local(self._config.local_path, item.common_path))
            elif item.is_folder:
                self._remote.remove_folder(item.common_path)
            else:
                self._remote.remove(item.common_path)
        except Exception as e:
            logger.error("Failed to delete %s: %s", item.common_path, e)
            return StatusType.FAILURE

        logger.info("Deleted %s (%s)", item.common_path, item.sync_to.value)
        return StatusType.SUCCESS

    def _delete_local(self, path: Path) -> None:
        if not path.exists() and not path.is_symlink():
            logger.debug("Already gone: %s", path)
            return
        try:
            if self._config.recycle:
                send2trash(str(path))
            elif path.is_dir() and not path.is_symlink():
                shutil.rmtree(path)
            else:
                path.unlink()
        except OSError as e:
            raise LocalIOError(f"Cannot delete {path}: {e}") from e

    # === Renames ===

    def _rename(self, item: SyncQueueItem) -> StatusType:
        old_path, new_path = item.common_path, item.new_common_path

        if item.sync_to == SyncTo.LOCAL:
            # Remote renames are never observed, only inferred as delete + create
            logger.warning("Ignoring local rename %s -> %s", old_path, new_path)
            return StatusType.SKIPPED

        logger.info("Renaming %s to %s", old_path, new_path)
        try:
            self._remote.rename(old_path, new_path)
            return StatusType.SUCCESS
        except Exception as e:
            logger.warning("Rename of %s failed: %s", old_path, e)

        # The rename may have gone through before the error surfaced
        try:
            if not self._remote.exists(old_path) and self._remote.exists(new_path):
                logger.info("Rename of %s verified after error", old_path)
                return StatusType.SUCCESS
        except Exception as e:
            logger.error("Cannot verify rename of %s: %s", old_path, e)
        return StatusType.FAILURE

    # === Creates and changes ===

    def _update(self, item: SyncQueueItem) -> StatusType:
        if not item.is_folder:
            try:
                if item.sync_to == SyncTo.REMOTE:
                    local = to_local(self._config.local_path, item.common_path)
                    status = self._remote.safe_upload(item, local)
                else:
                    status = self._reconciler.fetch_file(item)
            except Exception as e:
                logger.error("Failed to transfer %s: %s", item.common_path, e)
                return StatusType.FAILURE
            return to_status(status)

        if item.sync_to == SyncTo.REMOTE:
            try:
                self._remote.make_folder(item.common_path)
            except Exception as e:
                logger.error("Failed to create remote folder %s: %s", item.common_path, e)
                return StatusType.FAILURE
            logger.info("Created remote folder %s", item.common_path)
            return StatusType.SUCCESS

        return self._reconciler.sync_remote_folder(item)
