"""Sync queue engine.

Architecture:
    FileWatcher / Reconciler / timer → SyncQueue → ItemProcessor → RemoteStore

Components:
- **SyncQueue**: Ordered, coalescing queue of pending changes; completion accounting
- **ItemProcessor**: Applies one item to the local folder or the remote store
- **Reconciler**: Three-way timestamp check and folder comparisons
- **SyncScheduler**: Single worker thread and one-shot re-arm timer
- **FileWatcher**: Watch the local folder for real-time changes

All public symbols are re-exported here.
"""

from ftpsync.client.sync.ignore import IgnorePatterns
from ftpsync.client.sync.processor import ItemProcessor
from ftpsync.client.sync.queue import SyncQueue
from ftpsync.client.sync.reconciler import Reconciler
from ftpsync.client.sync.retry import retry_with_backoff
from ftpsync.client.sync.scheduler import SchedulerState, SyncScheduler
from ftpsync.client.sync.types import (
    ChangeAction,
    ClientItem,
    ItemType,
    ListingError,
    LocalIOError,
    RemoteOperationError,
    ReportCallback,
    StatusType,
    SyncError,
    SyncQueueItem,
    SyncReport,
    SyncTo,
    TransferError,
    TransferStatus,
    common_path,
)
from ftpsync.client.sync.watcher import (
    FileWatcher,
    NullWatchGuard,
    WatchGuard,
    paused,
)

__all__ = [
    # Queue
    "SyncQueue",
    "ItemProcessor",
    "Reconciler",
    "SchedulerState",
    "SyncScheduler",
    # Watcher
    "FileWatcher",
    "NullWatchGuard",
    "WatchGuard",
    "paused",
    # Helpers
    "IgnorePatterns",
    "retry_with_backoff",
    "common_path",
    # Types
    "ChangeAction",
    "ClientItem",
    "ItemType",
    "ReportCallback",
    "StatusType",
    "SyncQueueItem",
    "SyncReport",
    "SyncTo",
    "TransferStatus",
    # Errors
    "ListingError",
    "LocalIOError",
    "RemoteOperationError",
    "SyncError",
    "TransferError",
]
