"""Shared fixtures: an in-memory remote store, a recording watch guard and a queue."""

import os
import time
from collections.abc import Callable, Generator
from pathlib import Path

import pytest

from ftpsync.client.remote import RemoteEntry
from ftpsync.client.state import FileLog
from ftpsync.client.sync.queue import SyncQueue
from ftpsync.client.sync.types import (
    ItemType,
    RemoteOperationError,
    SyncQueueItem,
    TransferStatus,
    common_path,
    is_under,
)
from ftpsync.core.config import AccountConfig, SyncMethod


class FakeRemote:
    """In-memory RemoteStore."""

    def __init__(self) -> None:
        self.files: dict[str, tuple[bytes, float]] = {}
        self.folders: set[str] = set()
        self.listing_failed = False
        self.fail_listing = False
        self.online = True
        self.supports_mdtm = True
        self.fail_rename = False
        self.rename_before_error = False
        self.reconnects = 0
        self.uploads: list[str] = []
        self.downloads: list[str] = []
        self.connected = False

    # Test helpers

    def put(self, path: str, data: bytes = b"remote", mtime: float | None = None) -> None:
        path = common_path(path)
        self._add_parents(path)
        self.files[path] = (data, time.time() if mtime is None else mtime)

    def _add_parents(self, path: str) -> None:
        parts = path.split("/")[:-1]
        for i in range(len(parts)):
            self.folders.add("/".join(parts[: i + 1]))

    def _move(self, old: str, new: str) -> None:
        for path in [p for p in self.files if is_under(p, old)]:
            self.files[new + path[len(old):]] = self.files.pop(path)
        for path in [p for p in self.folders if is_under(p, old)]:
            self.folders.discard(path)
            self.folders.add(new + path[len(old):])

    # RemoteStore

    def connect(self) -> None:
        self.connected = True

    def close(self) -> None:
        self.connected = False

    def exists(self, path: str) -> bool:
        path = common_path(path)
        return path == "." or path in self.files or path in self.folders

    def list_recursive(self, path: str) -> list[RemoteEntry]:
        if self.fail_listing:
            self.listing_failed = True
            return []
        path = common_path(path)
        entries = []
        for folder in sorted(self.folders):
            if is_under(folder, path) and folder != path:
                entries.append(RemoteEntry(folder.rsplit("/", 1)[-1], folder, ItemType.FOLDER))
        for name, (data, mtime) in sorted(self.files.items()):
            if is_under(name, path):
                entries.append(
                    RemoteEntry(name.rsplit("/", 1)[-1], name, ItemType.FILE, len(data), mtime)
                )
        return entries

    def reconnect(self) -> None:
        self.reconnects += 1
        self.listing_failed = False

    def remove(self, path: str) -> None:
        if path not in self.files:
            raise RemoteOperationError(f"550 {path}: no such file")
        del self.files[path]

    def remove_folder(self, path: str) -> None:
        if path not in self.folders:
            raise RemoteOperationError(f"550 {path}: no such folder")
        for name in [p for p in self.files if is_under(p, path)]:
            del self.files[name]
        self.folders -= {p for p in self.folders if is_under(p, path)}

    def make_folder(self, path: str) -> None:
        self._add_parents(path)
        self.folders.add(path)

    def rename(self, old_path: str, new_path: str) -> None:
        if self.fail_rename:
            if self.rename_before_error:
                self._move(old_path, new_path)
            raise RemoteOperationError("421 connection lost")
        if not self.exists(old_path):
            raise RemoteOperationError(f"550 {old_path}: no such file")
        self._move(old_path, new_path)

    def safe_upload(self, item: SyncQueueItem, local_path: Path) -> TransferStatus:
        if not local_path.is_file():
            return TransferStatus.NONE
        self.put(item.common_path, local_path.read_bytes())
        self.uploads.append(item.common_path)
        return TransferStatus.SUCCESS

    def safe_download(self, item: SyncQueueItem, local_path: Path) -> TransferStatus:
        if item.common_path not in self.files:
            return TransferStatus.NONE
        data, mtime = self.files[item.common_path]
        local_path.parent.mkdir(parents=True, exist_ok=True)
        local_path.write_bytes(data)
        os.utime(local_path, (mtime, mtime))
        self.downloads.append(item.common_path)
        return TransferStatus.SUCCESS

    def try_get_modified_time(self, path: str) -> float | None:
        if not self.supports_mdtm or path not in self.files:
            return None
        return self.files[path][1]

    def check_working_directory(self) -> bool:
        return self.online


class RecordingGuard:
    """Watch guard recording pause/resume calls."""

    def __init__(self) -> None:
        self.calls: list[str] = []
        self.depth = 0

    def pause(self) -> None:
        self.calls.append("pause")
        self.depth += 1

    def resume(self) -> None:
        self.calls.append("resume")
        self.depth -= 1


def write_file(path: Path, data: bytes = b"local", mtime: float | None = None) -> Path:
    """Create a local file, optionally with a fixed modification time."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    if mtime is not None:
        os.utime(path, (mtime, mtime))
    return path


@pytest.fixture
def local_root(tmp_path: Path) -> Path:
    """Local synchronized folder."""
    root = tmp_path / "local"
    root.mkdir()
    return root


@pytest.fixture
def account(local_root: Path) -> AccountConfig:
    """Manual account with permanent local deletes."""
    return AccountConfig(
        host="ftp.example.com",
        username="alice",
        password="secret",
        local_path=local_root,
        remote_path="/www",
        sync_method=SyncMethod.MANUAL,
        recycle=False,
    )


@pytest.fixture
def remote() -> FakeRemote:
    """In-memory remote store."""
    return FakeRemote()


@pytest.fixture
def guard() -> RecordingGuard:
    """Recording watch guard."""
    return RecordingGuard()


@pytest.fixture
def file_log() -> Generator[FileLog, None, None]:
    """In-memory baseline log."""
    log = FileLog(":memory:")
    yield log
    log.close()


@pytest.fixture
def queue(
    account: AccountConfig,
    remote: FakeRemote,
    file_log: FileLog,
    guard: RecordingGuard,
) -> Generator[SyncQueue, None, None]:
    """Queue that only drains when start_queue() is called."""
    q = SyncQueue(account, remote, file_log, guard=guard, autostart=False)
    yield q
    q.stop()


@pytest.fixture
def write() -> Callable[..., Path]:
    """Expose write_file to tests."""
    return write_file
