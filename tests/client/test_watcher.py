"""Tests for the local folder watcher."""

from pathlib import Path
from unittest.mock import MagicMock

import pytest
from watchdog.events import (
    DirDeletedEvent,
    DirModifiedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
)

from ftpsync.client.sync.ignore import IgnorePatterns
from ftpsync.client.sync.types import ChangeAction, ItemType, SyncQueueItem, SyncTo
from ftpsync.client.sync.watcher import (
    ChangeType,
    DebouncedEventHandler,
    FileChange,
    FileWatcher,
    NullWatchGuard,
    paused,
)


@pytest.fixture
def root(tmp_path: Path) -> Path:
    """Watched folder."""
    path = tmp_path / "root"
    path.mkdir()
    return path


@pytest.fixture
def sink() -> MagicMock:
    """Receiver of queued items."""
    return MagicMock()


@pytest.fixture
def handler(root: Path, sink: MagicMock):
    """Handler whose flush is triggered by the test."""
    h = DebouncedEventHandler(root, sink, sync_delay_s=60, settle_s=0)
    yield h
    h.stop()


def flushed(handler: DebouncedEventHandler, sink: MagicMock) -> list[SyncQueueItem]:
    """Flush pending changes and return what reached the sink."""
    handler._flush_changes()
    return [c.args[0] for c in sink.add.call_args_list]


class TestIgnorePatterns:
    """Tests for ignore pattern matching."""

    def test_default_patterns(self, tmp_path: Path) -> None:
        """Partial transfers and the ignore file itself are never synced."""
        ignore = IgnorePatterns()

        assert ignore.matches("docs/a.txt.ftpsync-part") is True
        assert ignore.matches(".ftpsyncignore") is True
        assert ignore.matches(".git", is_dir=True) is True
        assert ignore.gets_synced("docs/a.txt") is True

    def test_load_from_file(self, tmp_path: Path) -> None:
        """Patterns are read from .ftpsyncignore."""
        (tmp_path / ".ftpsyncignore").write_text("# build output\n*.log\n\nbuild/\n")
        ignore = IgnorePatterns()
        ignore.load_from_file(tmp_path / ".ftpsyncignore")

        assert ignore.matches("app.log") is True
        assert ignore.matches("build", is_dir=True) is True
        assert ignore.matches("build/out.txt") is True
        assert ignore.matches("notes.txt") is False

    def test_double_star_is_anchored(self) -> None:
        """``**`` patterns match whole subtrees below the root only."""
        ignore = IgnorePatterns(["cache/**"])

        assert ignore.matches("cache/a/b.txt") is True
        assert ignore.matches("other/cache/b.txt") is False
        assert ignore.matches(".git/objects/ab") is True

    def test_folder_pattern_skips_files(self) -> None:
        """Folder-only patterns leave a file of the same name alone."""
        ignore = IgnorePatterns(["build/"])

        assert ignore.matches("build") is False
        assert ignore.matches("src/build", is_dir=True) is False
        assert ignore.matches("src/build/a.o") is True

    def test_root_never_ignored(self) -> None:
        """The synchronized root itself always takes part."""
        assert IgnorePatterns(["*"]).matches(".") is False

    def test_symlinks_ignored(self, tmp_path: Path) -> None:
        """Symlinks are never synchronized."""
        target = tmp_path / "target.txt"
        target.touch()
        link = tmp_path / "link.txt"
        link.symlink_to(target)

        assert IgnorePatterns().should_ignore(link, tmp_path) is True


class TestPaused:
    """Tests for the pause bracket."""

    def test_resumes_on_exception(self, guard) -> None:
        """Resume runs even when the block raises."""
        with pytest.raises(RuntimeError):
            with paused(guard):
                raise RuntimeError("boom")

        assert guard.calls == ["pause", "resume"]

    def test_null_guard(self) -> None:
        """The null guard accepts pause and resume."""
        with paused(NullWatchGuard()):
            pass


class TestDebouncedEventHandler:
    """Tests for turning file system events into queue items."""

    def test_created_file(self, handler: DebouncedEventHandler, sink: MagicMock, root: Path) -> None:
        """New files are queued as created, towards the remote store."""
        path = root / "a.txt"
        path.write_bytes(b"hello")

        handler.on_created(FileCreatedEvent(str(path)))
        items = flushed(handler, sink)

        assert len(items) == 1
        assert items[0].action == ChangeAction.CREATED
        assert items[0].sync_to == SyncTo.REMOTE
        assert items[0].common_path == "a.txt"
        assert items[0].item.size == 5

    def test_write_after_create_stays_created(
        self, handler: DebouncedEventHandler, sink: MagicMock, root: Path
    ) -> None:
        """Writes right after the creation are part of it."""
        path = root / "a.txt"
        path.touch()

        handler.on_created(FileCreatedEvent(str(path)))
        handler.on_modified(FileModifiedEvent(str(path)))
        items = flushed(handler, sink)

        assert [x.action for x in items] == [ChangeAction.CREATED]

    def test_modified_file(self, handler: DebouncedEventHandler, sink: MagicMock, root: Path) -> None:
        """Modifications are queued as changed."""
        path = root / "a.txt"
        path.touch()

        handler.on_modified(FileModifiedEvent(str(path)))

        assert [x.action for x in flushed(handler, sink)] == [ChangeAction.CHANGED]

    def test_deleted_folder(self, handler: DebouncedEventHandler, sink: MagicMock, root: Path) -> None:
        """Deleted folders are queued as folder deletes."""
        handler.on_deleted(DirDeletedEvent(str(root / "docs")))
        items = flushed(handler, sink)

        assert items[0].action == ChangeAction.DELETED
        assert items[0].item.type == ItemType.FOLDER

    def test_moved_file(self, handler: DebouncedEventHandler, sink: MagicMock, root: Path) -> None:
        """Moves inside the tree are renames."""
        (root / "b.txt").touch()

        handler.on_moved(FileMovedEvent(str(root / "a.txt"), str(root / "b.txt")))
        items = flushed(handler, sink)

        assert items[0].action == ChangeAction.RENAMED
        assert items[0].common_path == "a.txt"
        assert items[0].new_common_path == "b.txt"

    def test_moved_out_of_tree(
        self, handler: DebouncedEventHandler, sink: MagicMock, root: Path, tmp_path: Path
    ) -> None:
        """Moving a file out of the watched folder deletes it."""
        handler.on_moved(FileMovedEvent(str(root / "a.txt"), str(tmp_path / "elsewhere.txt")))
        items = flushed(handler, sink)

        assert items[0].action == ChangeAction.DELETED
        assert items[0].common_path == "a.txt"

    def test_moved_to_ignored_name(
        self, handler: DebouncedEventHandler, sink: MagicMock, root: Path
    ) -> None:
        """Renaming to an ignored name deletes the synced file."""
        handler.on_moved(FileMovedEvent(str(root / "a.txt"), str(root / "a.tmp")))
        items = flushed(handler, sink)

        assert items[0].action == ChangeAction.DELETED

    def test_moved_from_ignored_name(
        self, handler: DebouncedEventHandler, sink: MagicMock, root: Path
    ) -> None:
        """Renaming from an ignored name creates the file."""
        (root / "a.txt").touch()

        handler.on_moved(FileMovedEvent(str(root / "a.tmp"), str(root / "a.txt")))
        items = flushed(handler, sink)

        assert items[0].action == ChangeAction.CREATED
        assert items[0].common_path == "a.txt"

    def test_ignored_file(self, handler: DebouncedEventHandler, sink: MagicMock, root: Path) -> None:
        """Events on ignored files are dropped."""
        handler.on_created(FileCreatedEvent(str(root / ".DS_Store")))

        assert flushed(handler, sink) == []

    def test_folder_modified_ignored(
        self, handler: DebouncedEventHandler, sink: MagicMock, root: Path
    ) -> None:
        """Folder modifications carry no change of their own."""
        handler.on_modified(DirModifiedEvent(str(root / "docs")))

        assert flushed(handler, sink) == []

    def test_paused_drops_events(
        self, handler: DebouncedEventHandler, sink: MagicMock, root: Path
    ) -> None:
        """Events while paused are dropped."""
        handler.pause()
        handler.pause()
        handler.on_deleted(FileDeletedEvent(str(root / "a.txt")))
        handler.resume()

        assert handler.is_paused is True
        handler.resume()
        assert handler.is_paused is False
        assert flushed(handler, sink) == []

    def test_settle_window(self, root: Path, sink: MagicMock) -> None:
        """Events right after a resume are dropped."""
        handler = DebouncedEventHandler(root, sink, sync_delay_s=60, settle_s=60)
        try:
            handler.pause()
            handler.resume()
            handler.on_deleted(FileDeletedEvent(str(root / "a.txt")))

            assert flushed(handler, sink) == []
        finally:
            handler.stop()

    def test_sink_error_does_not_stop_flush(
        self, handler: DebouncedEventHandler, sink: MagicMock, root: Path
    ) -> None:
        """A failing sink is logged and the other changes are still queued."""
        sink.add.side_effect = [RuntimeError("boom"), None]
        handler.on_deleted(FileDeletedEvent(str(root / "a.txt")))
        handler.on_deleted(FileDeletedEvent(str(root / "b.txt")))

        assert len(flushed(handler, sink)) == 2

    def test_root_change_not_queued(self, handler: DebouncedEventHandler, root: Path) -> None:
        """Changes to the root itself produce no item."""
        change = FileChange(path=root, change_type=ChangeType.MODIFIED, is_directory=True)

        assert handler.to_queue_item(change) is None


class TestFileWatcher:
    """Tests for the watchdog-backed watcher."""

    def test_requires_directory(self, tmp_path: Path) -> None:
        """Watching a file is an error."""
        path = tmp_path / "a.txt"
        path.touch()

        with pytest.raises(ValueError, match="directory"):
            FileWatcher(path, MagicMock())

    def test_pause_resume(self, root: Path) -> None:
        """The watcher is its own watch guard."""
        watcher = FileWatcher(root, MagicMock())

        watcher.pause()
        assert watcher.is_paused is True
        watcher.resume()
        assert watcher.is_paused is False

    def test_start_stop(self, root: Path) -> None:
        """The watcher can be started and stopped as a context manager."""
        with FileWatcher(root, MagicMock()) as watcher:
            assert watcher.is_running is True
            assert watcher.watch_path == root.resolve()

        assert watcher.is_running is False
