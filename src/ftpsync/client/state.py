"""Baseline log for the sync queue.

This module provides:
- SyncedFile: Last synchronized timestamps of one file
- FileLog: SQLite-backed map from common path to baseline timestamps

The file log is the reconciliation oracle: it records, for every path,
the local and remote modification times observed right after the last
successful transfer, plus the set of folders known to exist on both sides.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass
class SyncedFile:
    """Baseline of a synchronized file.

    Attributes:
        path: Common path of the file.
        local_mtime: Local modification time at last sync.
        remote_mtime: Remote modification time at last sync.
        synced_at: When the baseline was written.
    """

    path: str
    local_mtime: float
    remote_mtime: float
    synced_at: float

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> SyncedFile:
        """Create SyncedFile from database row."""
        return cls(
            path=row["path"],
            local_mtime=row["local_mtime"],
            remote_mtime=row["remote_mtime"],
            synced_at=row["synced_at"],
        )


def _child_prefix(path: str) -> str:
    """Prefix shared by every path below a folder."""
    return path + "/"


class FileLog:
    """SQLite-backed baseline log.

    Missing entries read as timestamp 0.0 so that any existing file looks
    changed relative to an unknown baseline.
    """

    def __init__(self, db_path: Path | str) -> None:
        """Open (or create) the baseline database.

        Args:
            db_path: Path to SQLite database file, or ":memory:".
        """
        if str(db_path) != ":memory:":
            db_path = Path(db_path)
            db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db_path = db_path

        self._lock = threading.RLock()
        self._conn = sqlite3.connect(
            str(db_path),
            check_same_thread=False,
            isolation_level=None,  # Autocommit mode
        )
        self._conn.row_factory = sqlite3.Row
        if str(db_path) != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._create_tables()

    def _create_tables(self) -> None:
        """Create database tables if they don't exist."""
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS synced_files (
                path TEXT PRIMARY KEY,
                local_mtime REAL NOT NULL,
                remote_mtime REAL NOT NULL,
                synced_at REAL NOT NULL
            );

            CREATE TABLE IF NOT EXISTS synced_folders (
                path TEXT PRIMARY KEY
            );
        """)

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._conn.close()

    # === Files ===

    def get_file(self, path: str) -> SyncedFile | None:
        """Get the baseline of a file, or None if it was never synced."""
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM synced_files WHERE path = ?",
                (path,),
            ).fetchone()
        return SyncedFile.from_row(row) if row else None

    def get_local(self, path: str) -> float:
        """Local modification time recorded at last sync (0.0 if unknown)."""
        synced = self.get_file(path)
        return synced.local_mtime if synced else 0.0

    def get_remote(self, path: str) -> float:
        """Remote modification time recorded at last sync (0.0 if unknown)."""
        synced = self.get_file(path)
        return synced.remote_mtime if synced else 0.0

    def contains(self, path: str) -> bool:
        """Check if a file has a baseline."""
        return self.get_file(path) is not None

    def list_files(self) -> list[SyncedFile]:
        """List all file baselines."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM synced_files ORDER BY path"
            ).fetchall()
        return [SyncedFile.from_row(row) for row in rows]

    def put_file(self, path: str, local_mtime: float, remote_mtime: float) -> None:
        """Record the baseline of a file (upsert)."""
        with self._lock:
            self._conn.execute(
                """
                INSERT OR REPLACE INTO synced_files (path, local_mtime, remote_mtime, synced_at)
                VALUES (?, ?, ?, ?)
                """,
                (path, local_mtime, remote_mtime, time.time()),
            )
        logger.debug("Logged %s (local=%.3f, remote=%.3f)", path, local_mtime, remote_mtime)

    def remove_file(self, path: str) -> None:
        """Forget the baseline of a file."""
        with self._lock:
            self._conn.execute("DELETE FROM synced_files WHERE path = ?", (path,))

    # === Folders ===

    @property
    def folders(self) -> set[str]:
        """Folders known to exist on both replicas."""
        with self._lock:
            rows = self._conn.execute("SELECT path FROM synced_folders").fetchall()
        return {row["path"] for row in rows}

    def has_folder(self, path: str) -> bool:
        """Check if a folder is known."""
        with self._lock:
            row = self._conn.execute(
                "SELECT 1 FROM synced_folders WHERE path = ?",
                (path,),
            ).fetchone()
        return row is not None

    def put_folder(self, path: str, renamed_from: str | None = None) -> None:
        """Record a folder, optionally moving everything from its old path.

        Args:
            path: Common path of the folder.
            renamed_from: Previous path when the folder was renamed.
        """
        with self._lock:
            if renamed_from and renamed_from != path:
                self._move_prefix(renamed_from, path)
            self._conn.execute(
                "INSERT OR IGNORE INTO synced_folders (path) VALUES (?)",
                (path,),
            )

    def _move_prefix(self, old: str, new: str) -> None:
        """Rewrite every entry at or below ``old`` to live below ``new``."""
        prefix = _child_prefix(old)
        self._conn.execute("DELETE FROM synced_folders WHERE path = ?", (old,))
        for table in ("synced_files", "synced_folders"):
            self._conn.execute(
                f"""
                UPDATE OR REPLACE {table}
                SET path = ? || substr(path, ?)
                WHERE substr(path, 1, ?) = ?
                """,
                (new, len(prefix), len(prefix), prefix),
            )
        logger.debug("Moved baseline entries from %s to %s", old, new)

    def remove_folder(self, path: str) -> None:
        """Forget a folder and every entry below it."""
        prefix = _child_prefix(path)
        with self._lock:
            self._conn.execute("DELETE FROM synced_folders WHERE path = ?", (path,))
            for table in ("synced_files", "synced_folders"):
                self._conn.execute(
                    f"DELETE FROM {table} WHERE substr(path, 1, ?) = ?",
                    (len(prefix), prefix),
                )

    def prune_folders(self, base_path: Path) -> int:
        """Drop folder entries whose local directory no longer exists.

        Args:
            base_path: Local synchronized root.

        Returns:
            Number of folder entries removed.
        """
        stale = [p for p in self.folders if not (base_path / p).is_dir()]
        if not stale:
            return 0
        with self._lock:
            self._conn.executemany(
                "DELETE FROM synced_folders WHERE path = ?",
                [(p,) for p in stale],
            )
        logger.debug("Pruned %d stale folder entries", len(stale))
        return len(stale)
