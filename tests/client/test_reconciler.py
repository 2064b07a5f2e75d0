"""Tests for replica comparison."""

from pathlib import Path
from unittest.mock import patch

import pytest

from ftpsync.client.sync.queue import SyncQueue
from ftpsync.client.sync.reconciler import Reconciler
from ftpsync.client.sync.types import (
    ChangeAction,
    ClientItem,
    StatusType,
    SyncQueueItem,
    SyncTo,
    TransferStatus,
)
from ftpsync.core.types import SyncState


@pytest.fixture
def reconciler(queue: SyncQueue) -> Reconciler:
    """Reconciler wired to the test queue."""
    return queue.reconciler


def remote_file(path: str, mtime: float) -> SyncQueueItem:
    """A file found on the remote store."""
    return SyncQueueItem(
        item=ClientItem.file(path, last_write_time=mtime),
        action=ChangeAction.CREATED,
        sync_to=SyncTo.LOCAL,
    )


def root_scan() -> SyncQueueItem:
    """Remote-to-local scan of the whole tree."""
    return SyncQueueItem(ClientItem.folder("."), ChangeAction.CHANGED, SyncTo.LOCAL)


def summary(queue: SyncQueue) -> list[tuple[str, str, str]]:
    """Pending items as (action, path, direction) triples."""
    return [(x.action.value, x.common_path, x.sync_to.value) for x in queue.pending]


class TestThreeWayCheck:
    """Tests for files present on both replicas."""

    def test_remote_changed_downloads(
        self, reconciler: Reconciler, queue: SyncQueue, local_root: Path, remote, file_log, write
    ) -> None:
        """A newer remote copy replaces an unchanged local one."""
        write(local_root / "a.txt", b"old", mtime=1000.0)
        remote.put("a.txt", b"new", mtime=2000.0)
        file_log.put_file("a.txt", 1000.0, 1000.0)

        status = reconciler.check_existing_file(remote_file("a.txt", 2000.0))

        assert status == TransferStatus.SUCCESS
        assert (local_root / "a.txt").read_bytes() == b"new"
        assert len(queue) == 0

    def test_local_changed_requeues_upload(
        self, reconciler: Reconciler, queue: SyncQueue, local_root: Path, remote, file_log, write
    ) -> None:
        """A local change is not uploaded inline but queued for the worker."""
        write(local_root / "a.txt", b"edited", mtime=3000.0)
        remote.put("a.txt", b"old", mtime=1000.0)
        file_log.put_file("a.txt", 1000.0, 1000.0)

        status = reconciler.check_existing_file(remote_file("a.txt", 1000.0))

        assert status == TransferStatus.NONE
        assert remote.uploads == []
        assert summary(queue) == [("changed", "a.txt", "remote")]

    def test_unchanged_within_tolerance(
        self, reconciler: Reconciler, queue: SyncQueue, local_root: Path, remote, file_log, write
    ) -> None:
        """Sub-second differences are ignored."""
        write(local_root / "a.txt", mtime=1000.5)
        remote.put("a.txt", mtime=1000.8)
        file_log.put_file("a.txt", 1000.0, 1000.0)

        status = reconciler.check_existing_file(remote_file("a.txt", 1000.8))

        assert status == TransferStatus.NONE
        assert remote.downloads == []
        assert len(queue) == 0

    def test_both_changed_remote_newer(
        self, reconciler: Reconciler, local_root: Path, remote, file_log, write
    ) -> None:
        """When both changed, the side that moved further wins."""
        write(local_root / "a.txt", b"local", mtime=1500.0)
        remote.put("a.txt", b"remote", mtime=3000.0)
        file_log.put_file("a.txt", 1000.0, 1000.0)

        status = reconciler.check_existing_file(remote_file("a.txt", 3000.0))

        assert status == TransferStatus.SUCCESS
        assert remote.downloads == ["a.txt"]

    def test_both_changed_local_newer(
        self, reconciler: Reconciler, queue: SyncQueue, local_root: Path, remote, file_log, write
    ) -> None:
        """A local copy that moved further is kept and queued for upload."""
        write(local_root / "a.txt", b"local", mtime=3000.0)
        remote.put("a.txt", b"remote", mtime=1500.0)
        file_log.put_file("a.txt", 1000.0, 1000.0)

        status = reconciler.check_existing_file(remote_file("a.txt", 1500.0))

        assert status == TransferStatus.NONE
        assert remote.downloads == []
        assert summary(queue) == [("changed", "a.txt", "remote")]

    def test_listing_time_used_without_mdtm(
        self, reconciler: Reconciler, local_root: Path, remote, file_log, write
    ) -> None:
        """Without MDTM the listing's timestamp is used."""
        remote.supports_mdtm = False
        write(local_root / "a.txt", mtime=1000.0)
        remote.put("a.txt", mtime=2000.0)
        file_log.put_file("a.txt", 1000.0, 1000.0)

        status = reconciler.check_existing_file(remote_file("a.txt", 2000.0))

        assert status == TransferStatus.SUCCESS

    def test_fetch_missing_file(
        self, reconciler: Reconciler, local_root: Path, remote, guard
    ) -> None:
        """Missing local files are downloaded straight away."""
        remote.put("docs/a.txt", b"remote", mtime=2000.0)

        status = reconciler.fetch_file(remote_file("docs/a.txt", 2000.0))

        assert status == TransferStatus.SUCCESS
        assert (local_root / "docs" / "a.txt").stat().st_mtime == 2000.0
        assert guard.calls == ["pause", "resume"]


class TestSyncRemoteFolder:
    """Tests for bringing the local folder in line with the remote one."""

    def test_creates_folders_and_downloads(
        self, reconciler: Reconciler, queue: SyncQueue, local_root: Path, remote
    ) -> None:
        """Remote folders are created and files downloaded."""
        remote.put("docs/r.txt", b"remote")
        remote.make_folder("empty")

        status = reconciler.sync_remote_folder(root_scan())

        assert status == StatusType.SUCCESS
        assert (local_root / "docs" / "r.txt").read_bytes() == b"remote"
        assert (local_root / "empty").is_dir()
        completed = {x.common_path: x.status for x in queue.completed}
        assert completed == {
            "docs": StatusType.SUCCESS,
            "empty": StatusType.SUCCESS,
            "docs/r.txt": StatusType.SUCCESS,
        }
        assert queue.state == SyncState.SYNCING

    def test_new_local_file_queued_for_upload(
        self, reconciler: Reconciler, queue: SyncQueue, local_root: Path, write
    ) -> None:
        """A local file unknown to the log is new: upload it."""
        write(local_root / "new.txt")

        reconciler.sync_remote_folder(root_scan())

        assert summary(queue) == [("created", "new.txt", "remote")]

    def test_changed_local_file_queued_for_upload(
        self, reconciler: Reconciler, queue: SyncQueue, local_root: Path, file_log, write
    ) -> None:
        """A local file modified since the last sync is uploaded again."""
        write(local_root / "a.txt", mtime=2000.0)
        file_log.put_file("a.txt", 1000.0, 1000.0)

        reconciler.sync_remote_folder(root_scan())

        assert summary(queue) == [("created", "a.txt", "remote")]

    def test_unchanged_local_file_deleted(
        self, reconciler: Reconciler, queue: SyncQueue, local_root: Path, file_log, write
    ) -> None:
        """An unchanged file gone from the remote store is deleted locally."""
        write(local_root / "old.txt", mtime=1000.0)
        file_log.put_file("old.txt", 1000.0, 1000.0)

        reconciler.sync_remote_folder(root_scan())

        assert summary(queue) == [("deleted", "old.txt", "local")]

    def test_known_folder_deleted(
        self, reconciler: Reconciler, queue: SyncQueue, local_root: Path, file_log
    ) -> None:
        """A known folder gone from the remote store is deleted locally."""
        (local_root / "old").mkdir()
        (local_root / "fresh").mkdir()
        file_log.put_folder("old")

        reconciler.sync_remote_folder(root_scan())

        assert summary(queue) == [("deleted", "old", "local")]

    def test_pending_remote_delete_shadows_entries(
        self, reconciler: Reconciler, queue: SyncQueue, local_root: Path, remote
    ) -> None:
        """Items about to be deleted remotely are not brought back."""
        remote.put("gone.txt")
        remote.put("olddir/inner.txt")
        queue.add(
            SyncQueueItem(ClientItem.file("gone.txt"), ChangeAction.DELETED, SyncTo.REMOTE)
        )
        queue.add(
            SyncQueueItem(ClientItem.folder("olddir"), ChangeAction.DELETED, SyncTo.REMOTE)
        )

        reconciler.sync_remote_folder(root_scan())

        assert not (local_root / "gone.txt").exists()
        assert not (local_root / "olddir").exists()
        assert remote.downloads == []

    def test_pending_folder_delete_shadows_nested_folders(
        self, reconciler: Reconciler, queue: SyncQueue, local_root: Path, remote
    ) -> None:
        """Subfolders of a folder about to be deleted remotely are not recreated."""
        remote.put("a/b/f.txt")
        queue.add(SyncQueueItem(ClientItem.folder("a"), ChangeAction.DELETED, SyncTo.REMOTE))

        reconciler.sync_remote_folder(root_scan())

        assert not (local_root / "a").exists()
        assert queue.completed == []
        assert remote.downloads == []

    def test_ignored_entries_skipped(
        self, reconciler: Reconciler, local_root: Path, remote
    ) -> None:
        """Remote items matching ignore patterns are not downloaded."""
        remote.put("scratch.tmp")

        reconciler.sync_remote_folder(root_scan())

        assert not (local_root / "scratch.tmp").exists()

    def test_listing_failure(
        self, reconciler: Reconciler, queue: SyncQueue, local_root: Path, remote, write
    ) -> None:
        """A failed listing changes nothing locally and reconnects."""
        write(local_root / "a.txt")
        remote.fail_listing = True

        status = reconciler.sync_remote_folder(root_scan())

        assert status == StatusType.FAILURE
        assert remote.reconnects == 1
        assert len(queue) == 0
        assert (local_root / "a.txt").exists()
        assert queue.state == SyncState.OFFLINE

    def test_offline(self, reconciler: Reconciler, queue: SyncQueue, remote) -> None:
        """An unusable connection fails the scan."""
        remote.online = False

        assert reconciler.sync_remote_folder(root_scan()) == StatusType.FAILURE
        assert queue.state == SyncState.OFFLINE


class TestCheckLocalFolder:
    """Tests for queueing what the remote store lacks."""

    def test_newer_local_file_queued(
        self, reconciler: Reconciler, queue: SyncQueue, local_root: Path, remote, file_log, write
    ) -> None:
        """Files modified after their last sync are queued."""
        write(local_root / "a.txt", mtime=2000.0)
        write(local_root / "b.txt", mtime=1000.0)
        remote.put("a.txt", mtime=1000.0)
        remote.put("b.txt", mtime=1000.0)
        file_log.put_file("a.txt", 1000.0, 1000.0)
        file_log.put_file("b.txt", 1000.0, 1000.0)

        reconciler.check_local_folder(
            SyncQueueItem(ClientItem.folder("."), ChangeAction.CHANGED, SyncTo.REMOTE)
        )

        assert summary(queue) == [("changed", "a.txt", "remote")]

    def test_missing_remote_folders_queued(
        self, reconciler: Reconciler, queue: SyncQueue, local_root: Path
    ) -> None:
        """Local folders missing remotely are queued for creation."""
        (local_root / "docs").mkdir()

        reconciler.check_local_folder(
            SyncQueueItem(ClientItem.folder("."), ChangeAction.CHANGED, SyncTo.REMOTE)
        )

        assert summary(queue) == [("changed", "docs", "remote")]

    def test_ignored_folder(
        self, reconciler: Reconciler, queue: SyncQueue, local_root: Path, write
    ) -> None:
        """Ignored folders are not scanned."""
        write(local_root / ".git" / "config")

        reconciler.check_local_folder(
            SyncQueueItem(ClientItem.folder(".git"), ChangeAction.CHANGED, SyncTo.REMOTE)
        )

        assert len(queue) == 0

    def test_listing_failure_retained(
        self, reconciler: Reconciler, queue: SyncQueue, local_root: Path, remote, write
    ) -> None:
        """A failed scan is recorded as failed and nothing is queued."""
        write(local_root / "a.txt")
        remote.fail_listing = True
        folder = SyncQueueItem(ClientItem.folder("."), ChangeAction.CHANGED, SyncTo.REMOTE)

        reconciler.check_local_folder(folder)

        completed = queue.completed
        assert len(completed) == 1
        assert completed[0] is not folder
        assert completed[0].status == StatusType.FAILURE
        assert folder.status == StatusType.WAITING
        assert [x.common_path for x in queue.retained] == ["."]
        assert queue.retained[0] is not completed[0]
        assert len(queue) == 0
        assert remote.reconnects == 1

    def test_connection_loss_retained(
        self, reconciler: Reconciler, queue: SyncQueue, local_root: Path, remote, write
    ) -> None:
        """Errors raised while checking the remote folder are handled like listing failures."""
        write(local_root / "docs" / "a.txt")
        folder = SyncQueueItem(ClientItem.folder("docs"), ChangeAction.CHANGED, SyncTo.REMOTE)

        with patch.object(remote, "exists", side_effect=EOFError):
            reconciler.check_local_folder(folder)

        assert [x.status for x in queue.completed] == [StatusType.FAILURE]
        assert [x.common_path for x in queue.retained] == ["docs"]
        assert len(queue) == 0
        assert remote.reconnects == 1
        assert queue.state == SyncState.OFFLINE
