"""Remote store contract consumed by the sync queue.

This module provides:
- RemoteEntry: One item of a remote listing
- RemoteStore: Protocol implemented by concrete remote clients (see ftp.py)

All paths exchanged with a RemoteStore are common paths, relative to the
configured remote root.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from ftpsync.client.sync.types import ClientItem, ItemType, TransferStatus, common_path

if TYPE_CHECKING:
    from ftpsync.client.sync.types import SyncQueueItem


@dataclass
class RemoteEntry:
    """An item found while listing the remote store."""

    name: str
    path: str
    type: ItemType
    size: int = 0
    modified: float = 0.0

    def to_client_item(self) -> ClientItem:
        """Convert to a ClientItem."""
        return ClientItem(
            name=self.name,
            path=common_path(self.path),
            type=self.type,
            size=self.size,
            last_write_time=self.modified,
        )


class RemoteStore(Protocol):
    """Operations the sync queue needs from a remote store.

    ``listing_failed`` is sticky: once a listing fails it stays set until
    ``reconnect()`` succeeds.
    """

    listing_failed: bool

    def exists(self, path: str) -> bool:
        """Check if a remote file or folder exists."""
        ...

    def list_recursive(self, path: str) -> list[RemoteEntry]:
        """List every file and folder below a remote folder."""
        ...

    def reconnect(self) -> None:
        """Drop and re-establish the connection."""
        ...

    def remove(self, path: str) -> None:
        """Delete a remote file."""
        ...

    def remove_folder(self, path: str) -> None:
        """Delete a remote folder and its contents."""
        ...

    def make_folder(self, path: str) -> None:
        """Create a remote folder (and missing parents)."""
        ...

    def rename(self, old_path: str, new_path: str) -> None:
        """Rename a remote file or folder."""
        ...

    def safe_upload(self, item: SyncQueueItem, local_path: Path) -> TransferStatus:
        """Upload a local file over the remote item's path."""
        ...

    def safe_download(self, item: SyncQueueItem, local_path: Path) -> TransferStatus:
        """Download the remote item into a local file."""
        ...

    def try_get_modified_time(self, path: str) -> float | None:
        """Get the remote modification time, or None if it cannot be queried."""
        ...

    def check_working_directory(self) -> bool:
        """Check that the connection is usable and rooted correctly."""
        ...
