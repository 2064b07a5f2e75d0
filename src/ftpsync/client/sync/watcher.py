"""File system watcher with debouncing for sync detection.

This module provides:
- WatchGuard: Protocol for pausable watchers
- NullWatchGuard: Guard used when nothing watches the local folder
- paused: Context manager bracketing programmatic local mutations
- FileWatcher: Watches the local folder using watchdog and feeds the sync queue
- Debouncing: Coalesces rapid events (250ms window)
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from watchdog.events import (
    DirCreatedEvent,
    DirDeletedEvent,
    DirModifiedEvent,
    DirMovedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from ftpsync.client.sync.ignore import IGNORE_FILE_NAME, IgnorePatterns
from ftpsync.client.sync.types import (
    ChangeAction,
    ClientItem,
    ItemType,
    SyncQueueItem,
    SyncTo,
    common_path,
)

if TYPE_CHECKING:
    from watchdog.observers.api import BaseObserver

logger = logging.getLogger(__name__)


class WatchGuard(Protocol):
    """A watcher that can be paused around programmatic local changes."""

    def pause(self) -> None:
        """Stop reacting to local changes."""
        ...

    def resume(self) -> None:
        """React to local changes again."""
        ...


class ItemSink(Protocol):
    """Receiver of queue items produced by the watcher."""

    def add(self, item: SyncQueueItem) -> None:
        """Queue an item."""
        ...


class NullWatchGuard:
    """Guard for when the local folder is not being watched."""

    def pause(self) -> None:
        """Nothing to pause."""

    def resume(self) -> None:
        """Nothing to resume."""


@contextmanager
def paused(guard: WatchGuard) -> Iterator[None]:
    """Pause a watch guard for the duration of a block.

    Resume runs exactly once, whether or not the block raises.
    """
    guard.pause()
    try:
        yield
    finally:
        guard.resume()


class ChangeType(Enum):
    """Type of file system change."""

    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"
    MOVED = "moved"


@dataclass
class FileChange:
    """Represents a file system change event."""

    path: Path
    change_type: ChangeType
    is_directory: bool
    timestamp: float = field(default_factory=time.time)
    dest_path: Path | None = None  # For MOVED events


_ACTIONS = {
    ChangeType.CREATED: ChangeAction.CREATED,
    ChangeType.MODIFIED: ChangeAction.CHANGED,
    ChangeType.DELETED: ChangeAction.DELETED,
    ChangeType.MOVED: ChangeAction.RENAMED,
}


class DebouncedEventHandler(FileSystemEventHandler):
    """Event handler that debounces rapid file system events."""

    def __init__(
        self,
        base_path: Path,
        sink: ItemSink,
        debounce_ms: int = 250,
        sync_delay_s: float = 1.0,
        settle_s: float = 0.5,
        ignore_patterns: IgnorePatterns | None = None,
    ) -> None:
        """Initialize the debounced handler.

        Args:
            base_path: Base directory being watched.
            sink: Queue receiving the produced items.
            debounce_ms: Debounce window in milliseconds.
            sync_delay_s: Delay after last change before queueing.
            settle_s: Events arriving this soon after a resume are dropped.
            ignore_patterns: Patterns for files to ignore.
        """
        super().__init__()
        self._base_path = base_path
        self._sink = sink
        self._debounce_ms = debounce_ms
        self._sync_delay_s = sync_delay_s
        self._settle_s = settle_s
        self._ignore = ignore_patterns or IgnorePatterns()

        # Pending changes keyed by path
        self._pending: dict[str, FileChange] = {}
        self._lock = threading.Lock()
        self._timer: threading.Timer | None = None
        self._last_event_time: float = 0.0

        self._pause_count = 0
        self._resumed_at = 0.0

    @property
    def is_paused(self) -> bool:
        """Check if events are currently dropped."""
        return self._pause_count > 0

    def pause(self) -> None:
        """Drop events until the matching resume()."""
        with self._lock:
            self._pause_count += 1

    def resume(self) -> None:
        """Undo one pause()."""
        with self._lock:
            if self._pause_count > 0:
                self._pause_count -= 1
            self._resumed_at = time.time()

    def _schedule_flush(self) -> None:
        """Schedule a flush of pending changes after sync delay."""
        if self._timer:
            self._timer.cancel()

        self._timer = threading.Timer(self._sync_delay_s, self._flush_changes)
        self._timer.daemon = True
        self._timer.start()

    def _flush_changes(self) -> None:
        """Flush pending changes to the sync queue."""
        with self._lock:
            if not self._pending:
                return

            changes = list(self._pending.values())
            self._pending.clear()
            self._timer = None

        # Queue items outside lock
        for change in changes:
            item = self.to_queue_item(change)
            if item is None:
                continue
            try:
                self._sink.add(item)
            except Exception:
                logger.exception("Failed to queue %s", item)

    def _relative(self, path: Path) -> str | None:
        """Get the common path of a local path, or None if outside the root."""
        try:
            rel_path = path.relative_to(self._base_path)
        except ValueError:
            logger.warning("Path %s is not relative to %s", path, self._base_path)
            return None
        return common_path(str(rel_path))

    def to_queue_item(self, change: FileChange) -> SyncQueueItem | None:
        """Convert a FileChange to a SyncQueueItem targeting the remote."""
        rel = self._relative(change.path)
        if rel is None or rel == ".":
            return None

        action = _ACTIONS[change.change_type]
        new_rel: str | None = None
        if change.change_type == ChangeType.MOVED:
            dest = self._relative(change.dest_path) if change.dest_path else None
            if dest is None or self._ignore.matches(dest, change.is_directory):
                # Moved out of the synchronized tree
                action = ChangeAction.DELETED
            else:
                new_rel = dest

        item = ClientItem(
            name=change.path.name,
            path=rel,
            type=ItemType.FOLDER if change.is_directory else ItemType.FILE,
            last_write_time=change.timestamp,
            new_path=new_rel,
        )

        # Stats come from the path that exists after the change
        current = change.dest_path if new_rel else change.path
        if action != ChangeAction.DELETED and current is not None and current.exists():
            try:
                stat = current.stat()
                item.last_write_time = stat.st_mtime
                if not change.is_directory:
                    item.size = stat.st_size
            except OSError:
                # File may have been deleted between detection and stat
                pass

        return SyncQueueItem(item=item, action=action, sync_to=SyncTo.REMOTE)

    def _handle_event(self, event: FileSystemEvent) -> None:
        """Handle a file system event with debouncing."""
        now = time.time()
        if self.is_paused or now - self._resumed_at < self._settle_s:
            return

        src_path = event.src_path
        if isinstance(src_path, bytes):
            src_path = src_path.decode("utf-8", errors="replace")
        path = Path(src_path)

        # Determine change type
        if isinstance(event, FileCreatedEvent | DirCreatedEvent):
            change_type = ChangeType.CREATED
        elif isinstance(event, FileModifiedEvent):
            change_type = ChangeType.MODIFIED
        elif isinstance(event, FileDeletedEvent | DirDeletedEvent):
            change_type = ChangeType.DELETED
        elif isinstance(event, FileMovedEvent | DirMovedEvent):
            change_type = ChangeType.MOVED
        else:
            # Folder modifications only mean their content changed
            return

        is_directory = isinstance(
            event,
            DirCreatedEvent | DirModifiedEvent | DirDeletedEvent | DirMovedEvent,
        )

        dest_path = None
        if isinstance(event, FileMovedEvent | DirMovedEvent):
            dest = event.dest_path
            if isinstance(dest, bytes):
                dest = dest.decode("utf-8", errors="replace")
            dest_path = Path(dest)

        rel = self._relative(path)
        if rel is not None and self._ignore.matches(rel, is_directory):
            if change_type != ChangeType.MOVED or dest_path is None:
                return
            # Moved from an ignored name into the tree: a creation
            path, dest_path, change_type = dest_path, None, ChangeType.CREATED

        change = FileChange(
            path=path,
            change_type=change_type,
            is_directory=is_directory,
            timestamp=now,
            dest_path=dest_path,
        )

        with self._lock:
            key = str(path)

            # Debounce: check if we recently saw an event for this path
            if key in self._pending:
                previous = self._pending[key]
                time_diff = (now - previous.timestamp) * 1000
                if time_diff < self._debounce_ms and previous.change_type == ChangeType.CREATED \
                        and change_type == ChangeType.MODIFIED:
                    # Writes right after creation are part of the creation
                    change.change_type = ChangeType.CREATED

            self._pending[key] = change
            self._last_event_time = now
            self._schedule_flush()

    def on_created(self, event: FileSystemEvent) -> None:
        """Handle created event."""
        self._handle_event(event)

    def on_modified(self, event: FileSystemEvent) -> None:
        """Handle modified event."""
        self._handle_event(event)

    def on_deleted(self, event: FileSystemEvent) -> None:
        """Handle deleted event."""
        self._handle_event(event)

    def on_moved(self, event: FileSystemEvent) -> None:
        """Handle moved event."""
        self._handle_event(event)

    def stop(self) -> None:
        """Stop any pending timers."""
        if self._timer:
            self._timer.cancel()
            self._timer = None


class FileWatcher:
    """Watches the local folder and feeds changes to the sync queue.

    Also acts as the queue's WatchGuard: while paused, local events are
    dropped so the queue's own writes do not come back as changes.
    """

    def __init__(
        self,
        watch_path: Path,
        sink: ItemSink,
        debounce_ms: int = 250,
        sync_delay_s: float = 1.0,
        settle_s: float = 0.5,
        ignore_patterns: list[str] | None = None,
    ) -> None:
        """Initialize the file watcher.

        Args:
            watch_path: Directory to watch.
            sink: Queue receiving produced items.
            debounce_ms: Debounce window in milliseconds.
            sync_delay_s: Delay after last change before queueing.
            settle_s: Events arriving this soon after a resume are dropped.
            ignore_patterns: Additional patterns to ignore.
        """
        self._watch_path = Path(watch_path).resolve()
        if not self._watch_path.is_dir():
            raise ValueError(f"Watch path must be a directory: {watch_path}")

        self._ignore = IgnorePatterns(ignore_patterns)
        self._ignore.load_from_file(self._watch_path / IGNORE_FILE_NAME)

        self._handler = DebouncedEventHandler(
            base_path=self._watch_path,
            sink=sink,
            debounce_ms=debounce_ms,
            sync_delay_s=sync_delay_s,
            settle_s=settle_s,
            ignore_patterns=self._ignore,
        )

        self._observer: BaseObserver = Observer()
        self._running = False

    @property
    def watch_path(self) -> Path:
        """Get the watched directory path."""
        return self._watch_path

    @property
    def is_running(self) -> bool:
        """Check if the watcher is running."""
        return self._running

    @property
    def is_paused(self) -> bool:
        """Check if the watcher currently drops events."""
        return self._handler.is_paused

    def pause(self) -> None:
        """Stop reacting to local changes."""
        self._handler.pause()

    def resume(self) -> None:
        """React to local changes again."""
        self._handler.resume()

    def start(self) -> None:
        """Start watching for changes."""
        if self._running:
            return

        self._observer.schedule(self._handler, str(self._watch_path), recursive=True)
        self._observer.start()
        self._running = True
        logger.info("Watching %s", self._watch_path)

    def stop(self) -> None:
        """Stop watching for changes."""
        if not self._running:
            return

        self._handler.stop()
        self._observer.stop()
        self._observer.join(timeout=5.0)
        self._running = False

    def __enter__(self) -> FileWatcher:
        """Context manager entry."""
        self.start()
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.stop()
