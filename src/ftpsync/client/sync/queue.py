"""Coalescing sync queue.

This module provides:
- SyncQueue: Ordered pending items with path-based coalescing, completion
  accounting and the finish routine run at the end of every drain cycle

Items are kept in insertion order and indexed by the path they leave
behind once processed (``new_common_path``). Adding an item first
rewrites or drops any pending item for the same path, so at most one
change per path is waiting at any time:

    pending            incoming          result
    -------            --------          ------
    renamed a->b       deleted b         deleted a (notification suppressed)
    created/changed    deleted           nothing queued
    renamed a->b       renamed b->c      renamed a->c
    renamed a->b       changed b         deleted a, changed b
    created/changed    changed           changed (latest wins)

The item being processed by the worker is never rewritten.

Usage:
    queue = SyncQueue(config, remote, file_log, guard=watcher)
    queue.add(item)          # coalesces and starts the worker
    queue.wait_idle()
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from pathlib import PurePosixPath
from typing import TYPE_CHECKING

from ftpsync.client.sync.processor import ItemProcessor
from ftpsync.client.sync.reconciler import Reconciler
from ftpsync.client.sync.scheduler import SchedulerState, SyncScheduler
from ftpsync.client.sync.types import (
    ChangeAction,
    ClientItem,
    ReportCallback,
    StatusType,
    SyncQueueItem,
    SyncReport,
    SyncTo,
    is_under,
    to_local,
)
from ftpsync.client.sync.watcher import NullWatchGuard
from ftpsync.core.types import SyncState

if TYPE_CHECKING:
    from ftpsync.client.remote import RemoteStore
    from ftpsync.client.state import FileLog
    from ftpsync.client.sync.ignore import IgnorePatterns
    from ftpsync.client.sync.watcher import WatchGuard
    from ftpsync.core.config import AccountConfig

logger = logging.getLogger(__name__)

_TABLE_ROW = "%-9s %-40s %-8s %-7s %-8s"


class SyncQueue:
    """Thread-safe coalescing queue drained by a single worker."""

    def __init__(
        self,
        config: AccountConfig,
        remote: RemoteStore,
        file_log: FileLog,
        guard: WatchGuard | None = None,
        on_report: ReportCallback | None = None,
        on_state_change: Callable[[SyncState], None] | None = None,
        external_pending: Callable[[], bool] | None = None,
        ignore: IgnorePatterns | None = None,
        autostart: bool = True,
    ) -> None:
        """Initialize the queue.

        Args:
            config: Account being synchronized.
            remote: Remote store client.
            file_log: Baseline log.
            guard: Watcher to pause around local mutations.
            on_report: Reporting sink called at the end of every cycle.
            on_state_change: Called on every SyncState transition.
            external_pending: Returns True while the host has an action
                outstanding; the queue then stays running until
                external_action_finished() is called.
            ignore: Patterns deciding which items get synced.
            autostart: Start the worker whenever an item is added.
        """
        self._config = config
        self._remote = remote
        self._log = file_log
        self._on_report = on_report
        self._on_state_change = on_state_change
        self._external_pending = external_pending
        self._autostart = autostart

        self._lock = threading.RLock()
        # Pending items in insertion order, keyed by identity
        self._order: dict[int, SyncQueueItem] = {}
        # Pending items by new_common_path (the item being processed is not indexed)
        self._index: dict[str, list[SyncQueueItem]] = {}
        self._current: SyncQueueItem | None = None
        self._completed: list[SyncQueueItem] = []
        # Failed folder scans with the number of the cycle that reported them
        self._retained: list[tuple[int, SyncQueueItem]] = []
        self._cycles = 0
        self._running = False
        self._held = False
        self._state = SyncState.IDLE
        self._last_report: SyncReport | None = None

        guard = guard or NullWatchGuard()
        self.reconciler = Reconciler(config, remote, file_log, self, guard, ignore)
        self.processor = ItemProcessor(config, remote, self.reconciler, guard)
        self._scheduler = SyncScheduler(
            run_cycle=self.drain_cycle,
            has_work=self._has_work,
            on_timer=self.add_root_scan,
            interval=config.sync_frequency,
            lock=self._lock,
        )

    # === State ===

    @property
    def running(self) -> bool:
        """Check if the queue is syncing (or holding for the host)."""
        return self._running

    @property
    def state(self) -> SyncState:
        """Current activity state."""
        return self._state

    @property
    def scheduler_state(self) -> SchedulerState:
        """State of the worker/timer pair."""
        return self._scheduler.state

    @property
    def pending(self) -> list[SyncQueueItem]:
        """Snapshot of pending items in processing order."""
        with self._lock:
            return list(self._order.values())

    @property
    def completed(self) -> list[SyncQueueItem]:
        """Snapshot of items completed in the current cycle."""
        with self._lock:
            return list(self._completed)

    @property
    def retained(self) -> list[SyncQueueItem]:
        """Snapshot of failed folder scans waiting for a retry."""
        with self._lock:
            return [x for _, x in self._retained]

    @property
    def last_report(self) -> SyncReport | None:
        """Report of the last finished cycle."""
        return self._last_report

    def __len__(self) -> int:
        with self._lock:
            return len(self._order)

    def set_guard(self, guard: WatchGuard) -> None:
        """Use a watcher created after the queue as its watch guard."""
        self.reconciler.guard = guard
        self.processor.guard = guard

    def set_state(self, state: SyncState) -> None:
        """Record a state transition and notify the host."""
        if state == self._state:
            return
        self._state = state
        if self._on_state_change:
            try:
                self._on_state_change(state)
            except Exception:
                logger.exception("State change callback failed")

    # === Adding ===

    def add(self, item: SyncQueueItem) -> None:
        """Add an item, coalescing it with pending items for the same path.

        Folders bound for the remote store (other than deletes and renames)
        are not queued: the local folder is compared with the remote one and
        only the needed items are queued.
        """
        logger.debug("Adding %r (lwt %.3f)", item, item.item.last_write_time)

        if (
            item.is_folder
            and item.sync_to == SyncTo.REMOTE
            and item.action not in (ChangeAction.DELETED, ChangeAction.RENAMED)
        ):
            self.reconciler.check_local_folder(item)
        else:
            self.enqueue(item)

        if self._autostart:
            self.start_queue()

    def add_root_scan(self) -> None:
        """Queue a silent check of the whole remote folder."""
        self.add(
            SyncQueueItem(
                item=ClientItem.folder("."),
                action=ChangeAction.CHANGED,
                sync_to=SyncTo.LOCAL,
                skip_notification=True,
            )
        )

    def enqueue(self, item: SyncQueueItem) -> None:
        """Coalesce and append an item without any folder expansion."""
        with self._lock:
            if self._coalesce(item):
                item.added_on = time.time()
                self._order[id(item)] = item
                self._index.setdefault(item.new_common_path, []).append(item)

    def _coalesce(self, item: SyncQueueItem) -> bool:
        """Rewrite pending items for the item's path.

        Returns:
            False if the incoming item was absorbed by a pending one.
        """
        keep = True
        for old in list(self._index.get(item.common_path, [])):
            if item.action == ChangeAction.DELETED:
                if old.action == ChangeAction.RENAMED:
                    # Rename undone by a delete: delete the source instead
                    self._rename_to_delete(old)
                    old.skip_notification = True
                    keep = False
                else:
                    self._discard(old)
                    if old.action in (ChangeAction.CREATED, ChangeAction.CHANGED):
                        keep = False
            elif item.action == ChangeAction.RENAMED:
                if old.action == ChangeAction.RENAMED:
                    self._retarget(old, item.new_common_path)
                    keep = False
            else:
                self._supersede(old)

        if keep and item.action == ChangeAction.RENAMED:
            originals = [
                x for x in self._index.get(item.common_path, [])
                if x.action in (ChangeAction.CREATED, ChangeAction.CHANGED)
            ]
            if originals:
                # Edited then renamed: delete the old name, create the new one
                for old in originals:
                    if old.action == ChangeAction.CREATED:
                        self._discard(old)
                    else:
                        old.action = ChangeAction.DELETED
                new_path = item.new_common_path
                item.action = ChangeAction.CREATED
                item.item.path = new_path
                item.item.name = PurePosixPath(new_path).name
                item.item.new_path = None
                for old in list(self._index.get(new_path, [])):
                    self._supersede(old)

        return keep

    def _supersede(self, old: SyncQueueItem) -> None:
        """Make room for a created/changed item at the old item's path."""
        if old.action == ChangeAction.RENAMED:
            self._rename_to_delete(old)
            old.added_on = time.time()
        else:
            self._discard(old)

    def _discard(self, old: SyncQueueItem) -> None:
        self._unindex(old)
        self._order.pop(id(old), None)

    def _unindex(self, item: SyncQueueItem) -> None:
        bucket = self._index.get(item.new_common_path)
        if bucket is None:
            return
        for i, x in enumerate(bucket):
            if x is item:
                del bucket[i]
                break
        if not bucket:
            del self._index[item.new_common_path]

    def _rename_to_delete(self, old: SyncQueueItem) -> None:
        self._unindex(old)
        old.action = ChangeAction.DELETED
        old.item.new_path = None
        self._index.setdefault(old.new_common_path, []).append(old)

    def _retarget(self, old: SyncQueueItem, new_path: str) -> None:
        self._unindex(old)
        if new_path == old.common_path:
            # Renamed back to where it started
            self._order.pop(id(old), None)
            return
        old.item.new_path = new_path
        self._index.setdefault(old.new_common_path, []).append(old)

    def has_pending_remote_delete(self, path: str, include_ancestors: bool = False) -> bool:
        """Check for a pending local deletion that shadows a remote path."""
        with self._lock:
            for x in self._order.values():
                if x.action != ChangeAction.DELETED or x.sync_to != SyncTo.REMOTE:
                    continue
                if x.common_path == path:
                    return True
                if include_ancestors and is_under(path, x.common_path):
                    return True
        return False

    def retain(self, item: SyncQueueItem) -> None:
        """Keep a failed folder scan for the drain cycle after the current one."""
        with self._lock:
            self._retained.append((self._cycles, item))

    # === Draining ===

    def start_queue(self) -> None:
        """Start the worker unless it is already running."""
        with self._lock:
            if self._held:
                return
        self._scheduler.start()

    def _has_work(self) -> bool:
        return bool(self._order) and not self._held

    def drain_cycle(self) -> None:
        """Process pending items until none are left, then finish."""
        with self._lock:
            self._running = True
            retry = [x for n, x in self._retained if n < self._cycles]
            self._retained = [(n, x) for n, x in self._retained if n >= self._cycles]
        self.set_state(SyncState.SYNCING)

        for folder in retry:
            logger.info("Retrying scan of %s", folder.common_path)
            self.add(folder)

        while True:
            with self._lock:
                if not self._order:
                    break
                item = next(iter(self._order.values()))
                self._unindex(item)
                self._current = item

            try:
                item.status = self.processor.process(item)
            except Exception:
                logger.exception("Failed to process %r", item)
                item.status = StatusType.FAILURE

            try:
                self.record_completed(item)
            except Exception:
                logger.exception("Failed to record %r", item)

            with self._lock:
                self._order.pop(id(item), None)
                self._current = None

        self._finish()

    def record_completed(self, item: SyncQueueItem) -> None:
        """Move an item to the completion list and update the baseline log."""
        item.completed_on = time.time()
        with self._lock:
            self._completed.append(item)
        if item.status == StatusType.SUCCESS:
            self._log_item(item)

    def _log_item(self, item: SyncQueueItem) -> None:
        path, new_path = item.common_path, item.new_common_path

        if item.is_folder:
            if item.action == ChangeAction.DELETED:
                self._log.remove_folder(path)
            elif item.action == ChangeAction.RENAMED:
                self._log.put_folder(new_path, renamed_from=path)
            elif path != ".":
                self._log.put_folder(path)
            return

        if item.action == ChangeAction.DELETED:
            self._log.remove_file(path)
        elif item.action == ChangeAction.RENAMED:
            self._log.remove_file(path)
            self._put_file(item, new_path)
        else:
            self._put_file(item, path)

    def _put_file(self, item: SyncQueueItem, path: str) -> None:
        local = to_local(self._config.local_path, path)
        try:
            local_mtime = local.stat().st_mtime
        except OSError:
            local_mtime = item.item.last_write_time
        remote_mtime = self._remote.try_get_modified_time(path)
        if remote_mtime is None:
            remote_mtime = item.item.last_write_time
        self._log.put_file(path, local_mtime, remote_mtime)

    def _finish(self) -> None:
        """Report the cycle, prune the log and schedule the next one."""
        with self._lock:
            completed, self._completed = self._completed, []
            self._cycles += 1

        report = SyncReport.from_completed(completed)
        self._last_report = report
        self.set_state(SyncState.IDLE)

        for x in report.completed:
            if x.status == StatusType.SUCCESS:
                logger.info("Synced %s", x.new_common_path)
        logger.info(
            "%d files synced, %d folders synced, %d failed",
            report.files,
            report.folders,
            report.failed,
        )
        if report.completed:
            logger.info(_TABLE_ROW, "Added On", "Common Path", "Action", "SyncTo", "Status")
            for x in report.completed:
                logger.info(
                    _TABLE_ROW,
                    time.strftime("%H:%M:%S", time.localtime(x.added_on)),
                    x.common_path,
                    x.action.value,
                    x.sync_to.value,
                    x.status.value,
                )

        if self._on_report:
            try:
                self._on_report(report)
            except Exception:
                logger.exception("Report callback failed")

        try:
            self._log.prune_folders(self._config.local_path)
        except Exception:
            logger.exception("Failed to prune folder log")

        if self._external_pending and self._external_pending():
            logger.info("Waiting for an external action to finish")
            with self._lock:
                self._held = True
            return

        if self._config.is_automatic:
            self._scheduler.arm()
        with self._lock:
            self._running = False

    def external_action_finished(self) -> None:
        """Resume after the host's pending action completed."""
        with self._lock:
            if not self._held:
                return
            self._held = False
            has_items = bool(self._order)
            if not has_items:
                self._running = False

        if has_items:
            self.start_queue()
        elif self._config.is_automatic:
            self._scheduler.arm()

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Wait until the worker has finished.

        Returns:
            True if the worker finished within the timeout.
        """
        return self._scheduler.wait(timeout)

    def stop(self, timeout: float = 5.0) -> None:
        """Cancel the timer and wait for the current cycle to end."""
        self._scheduler.stop(timeout)
        with self._lock:
            self._running = False
