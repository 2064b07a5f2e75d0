"""Shared types and dataclasses for the sync queue.

This module provides:
- SyncError, TransferError, RemoteOperationError, ListingError, LocalIOError
- REMOTE_ERRORS: Everything a remote store call may raise
- ItemType, ChangeAction, SyncTo, StatusType, TransferStatus: Queue enums
- ClientItem: A file or folder on either replica
- SyncQueueItem: One pending or completed change
- SyncReport: Summary of a finished drain cycle
- common_path, is_under, to_local: Helpers for replica-independent relative paths
"""

from __future__ import annotations

import ftplib
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum, IntEnum, auto
from pathlib import Path, PurePosixPath


class SyncError(Exception):
    """Base exception for sync errors."""


class TransferError(SyncError):
    """Failed to upload or download a file."""


class RemoteOperationError(SyncError):
    """Failed to delete, rename or create an item on the remote store."""


class ListingError(SyncError):
    """Failed to list a remote directory."""


class LocalIOError(SyncError):
    """Failed to delete or create a local item."""


# Errors from the wire, or from failing to (re)connect
REMOTE_ERRORS = (*ftplib.all_errors, RemoteOperationError)


def common_path(path: str) -> str:
    """Normalize a relative path so it is identical on both replicas.

    Args:
        path: Relative path using either separator.

    Returns:
        Path with forward slashes, no leading ``./`` or ``/``, and ``.``
        for the root.
    """
    normalized = path.replace("\\", "/").strip()
    while normalized.startswith("./"):
        normalized = normalized[2:]
    normalized = normalized.strip("/")
    if normalized in ("", "."):
        return "."
    return str(PurePosixPath(normalized))


def is_under(path: str, parent: str) -> bool:
    """Check if a common path is the same as, or inside, another one."""
    if parent == ".":
        return True
    return path == parent or path.startswith(parent + "/")


def to_local(root: Path, path: str) -> Path:
    """Resolve a common path below the local synchronized root."""
    cp = common_path(path)
    if cp == ".":
        return root
    return root.joinpath(*cp.split("/"))


class ItemType(Enum):
    """Kind of item."""

    FILE = "file"
    FOLDER = "folder"


class ChangeAction(Enum):
    """What happened to an item."""

    CREATED = "created"
    CHANGED = "changed"
    DELETED = "deleted"
    RENAMED = "renamed"


class SyncTo(Enum):
    """Replica a queue item writes to."""

    LOCAL = "local"
    REMOTE = "remote"


class StatusType(Enum):
    """Status of a queue item."""

    WAITING = "waiting"
    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"


class TransferStatus(IntEnum):
    """Outcome of an upload, download or three-way check."""

    NONE = auto()
    SUCCESS = auto()
    FAILURE = auto()


@dataclass
class ClientItem:
    """A file or folder on either replica.

    Attributes:
        name: Base name of the item.
        path: Path relative to the synchronized root.
        type: File or folder.
        size: Size in bytes (0 for folders).
        last_write_time: Modification time (POSIX seconds).
        new_path: Target path, only set for renames.
    """

    name: str
    path: str
    type: ItemType
    size: int = 0
    last_write_time: float = 0.0
    new_path: str | None = None

    @classmethod
    def folder(cls, path: str, last_write_time: float | None = None) -> ClientItem:
        """Create a folder item for a relative path."""
        cp = common_path(path)
        return cls(
            name=PurePosixPath(cp).name or ".",
            path=cp,
            type=ItemType.FOLDER,
            last_write_time=time.time() if last_write_time is None else last_write_time,
        )

    @classmethod
    def file(
        cls,
        path: str,
        last_write_time: float = 0.0,
        size: int = 0,
    ) -> ClientItem:
        """Create a file item for a relative path."""
        cp = common_path(path)
        return cls(
            name=PurePosixPath(cp).name,
            path=cp,
            type=ItemType.FILE,
            size=size,
            last_write_time=last_write_time,
        )

    @property
    def is_folder(self) -> bool:
        """Check if this item is a folder."""
        return self.type == ItemType.FOLDER


@dataclass
class SyncQueueItem:
    """A single pending or completed change.

    Attributes:
        item: The file or folder this change refers to.
        action: What happened to the item.
        sync_to: Replica that will be written to.
        status: Current status.
        added_on: When the item was (last) queued.
        completed_on: When the item reached a terminal status.
        skip_notification: Exclude from user-facing summaries.
    """

    item: ClientItem
    action: ChangeAction
    sync_to: SyncTo
    status: StatusType = StatusType.WAITING
    added_on: float = field(default_factory=time.time)
    completed_on: float | None = None
    skip_notification: bool = False

    @property
    def common_path(self) -> str:
        """Replica-independent path of the item."""
        return common_path(self.item.path)

    @property
    def new_common_path(self) -> str:
        """Path the item occupies once processed (rename target for renames)."""
        if self.action == ChangeAction.RENAMED and self.item.new_path:
            return common_path(self.item.new_path)
        return self.common_path

    @property
    def is_folder(self) -> bool:
        """Check if the item is a folder."""
        return self.item.is_folder

    def __repr__(self) -> str:
        """Human-readable representation."""
        target = self.common_path
        if self.action == ChangeAction.RENAMED:
            target = f"{self.common_path} -> {self.new_common_path}"
        return (
            f"SyncQueueItem({self.action.value}, {self.item.type.value}, "
            f"path={target!r}, to={self.sync_to.value}, status={self.status.value})"
        )


@dataclass
class SyncReport:
    """Summary of a finished drain cycle.

    Attributes:
        completed: Completed items ordered by added_on.
        files: Successful file items that should be reported.
        folders: Successful folder items that should be reported.
        failed: Number of failed items.
    """

    completed: list[SyncQueueItem]
    files: int = 0
    folders: int = 0
    failed: int = 0

    @classmethod
    def from_completed(cls, completed: list[SyncQueueItem]) -> SyncReport:
        """Build a report from the completion list."""
        ordered = sorted(completed, key=lambda x: x.added_on)
        successful = [
            x for x in ordered
            if x.status == StatusType.SUCCESS and not x.skip_notification
        ]
        return cls(
            completed=ordered,
            files=sum(1 for x in successful if not x.is_folder),
            folders=sum(1 for x in successful if x.is_folder),
            failed=sum(1 for x in ordered if x.status == StatusType.FAILURE),
        )

    @property
    def successful(self) -> list[SyncQueueItem]:
        """Successful items that should be reported."""
        return [
            x for x in self.completed
            if x.status == StatusType.SUCCESS and not x.skip_notification
        ]


# Type alias for the reporting sink
ReportCallback = Callable[[SyncReport], None]
