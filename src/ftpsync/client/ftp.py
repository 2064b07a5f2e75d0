"""FTP / FTPS remote store.

This module provides:
- FtpStore: RemoteStore implementation over ftplib
- parse_ftp_time: Parser for MLSD/MDTM timestamps

A single control connection is shared by the watcher thread and the
queue worker, so every operation holds the store's lock. Listing
requires MLSD support (RFC 3659).
"""

from __future__ import annotations

import calendar
import ftplib
import logging
import os
import posixpath
import threading
import time
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING

from ftpsync.client.remote import RemoteEntry
from ftpsync.client.sync.retry import retry_with_backoff
from ftpsync.client.sync.types import (
    REMOTE_ERRORS,
    ItemType,
    RemoteOperationError,
    TransferStatus,
    common_path,
)
from ftpsync.core.config import RemoteProtocol

if TYPE_CHECKING:
    from ftpsync.client.sync.types import SyncQueueItem
    from ftpsync.core.config import AccountConfig

logger = logging.getLogger(__name__)

PART_SUFFIX = ".ftpsync-part"


def parse_ftp_time(value: str) -> float:
    """Parse a ``YYYYMMDDHHMMSS[.sss]`` UTC timestamp into POSIX seconds."""
    main, _, frac = value.strip().partition(".")
    seconds = calendar.timegm(time.strptime(main[:14], "%Y%m%d%H%M%S"))
    if frac:
        return seconds + float("0." + frac)
    return float(seconds)


class FtpStore:
    """Remote store reached over FTP or explicit FTPS.

    Paths passed in are common paths relative to the configured remote
    folder.
    """

    def __init__(
        self,
        config: AccountConfig,
        ftp_factory: Callable[[], ftplib.FTP] | None = None,
        max_retries: int = 3,
    ) -> None:
        """Initialize the store (does not connect).

        Args:
            config: Account to connect with.
            ftp_factory: Creates the ftplib client (replaceable in tests).
            max_retries: Connection attempts after the first one.
        """
        self._config = config
        self._root = config.remote_path
        self._factory = ftp_factory or self._default_factory
        self._max_retries = max_retries
        self._lock = threading.RLock()
        self._ftp: ftplib.FTP | None = None
        self.listing_failed = False

    def _default_factory(self) -> ftplib.FTP:
        if self._config.protocol == RemoteProtocol.FTPS:
            return ftplib.FTP_TLS(timeout=self._config.timeout)
        return ftplib.FTP(timeout=self._config.timeout)

    # === Connection ===

    def connect(self) -> None:
        """Connect and log in, retrying with exponential backoff."""
        with self._lock:
            try:
                self._ftp = retry_with_backoff(
                    self._connect_once,
                    max_retries=self._max_retries,
                    retryable_exceptions=ftplib.all_errors,
                )
            except ftplib.all_errors as e:
                raise RemoteOperationError(
                    f"Cannot connect to {self._config.host}:{self._config.port}: {e}"
                ) from e
            self.listing_failed = False
            logger.info("Connected to %s%s", self._config.host, self._root)

    def _connect_once(self) -> ftplib.FTP:
        ftp = self._factory()
        ftp.connect(self._config.host, self._config.port)
        ftp.login(self._config.username, self._config.password)
        if isinstance(ftp, ftplib.FTP_TLS):
            ftp.prot_p()
        ftp.cwd(self._root)
        return ftp

    def close(self) -> None:
        """Close the connection."""
        with self._lock:
            if self._ftp is None:
                return
            try:
                self._ftp.quit()
            except ftplib.all_errors:
                self._ftp.close()
            self._ftp = None

    def reconnect(self) -> None:
        """Drop and re-establish the connection."""
        logger.info("Reconnecting to %s", self._config.host)
        with self._lock:
            self.close()
            self.connect()

    @property
    def _client(self) -> ftplib.FTP:
        if self._ftp is None:
            self.connect()
        assert self._ftp is not None
        return self._ftp

    def _abs(self, path: str) -> str:
        cp = common_path(path)
        if cp == ".":
            return self._root
        return posixpath.join(self._root, cp)

    def check_working_directory(self) -> bool:
        """Check that the connection is alive and in the remote folder."""
        with self._lock:
            try:
                if self._client.pwd() != self._root:
                    self._client.cwd(self._root)
                return True
            except REMOTE_ERRORS as e:
                logger.warning("Connection check failed: %s", e)
            try:
                self.reconnect()
                return True
            except RemoteOperationError as e:
                logger.error("%s", e)
                return False

    # === Queries ===

    def exists(self, path: str) -> bool:
        """Check if a remote file or folder exists."""
        if common_path(path) == ".":
            return True
        with self._lock:
            try:
                self._client.sendcmd(f"MLST {self._abs(path)}")
                return True
            except ftplib.error_perm:
                return False

    def try_get_modified_time(self, path: str) -> float | None:
        """Get a file's modification time with MDTM, or None if unavailable."""
        with self._lock:
            try:
                response = self._client.sendcmd(f"MDTM {self._abs(path)}")
            except REMOTE_ERRORS as e:
                logger.debug("MDTM %s failed: %s", path, e)
                return None
        code, _, value = response.partition(" ")
        if code != "213":
            return None
        try:
            return parse_ftp_time(value)
        except ValueError:
            return None

    def list_recursive(self, path: str) -> list[RemoteEntry]:
        """List every item below a remote folder.

        On error the entries gathered so far are returned and
        ``listing_failed`` is set until the next successful connect.
        """
        entries: list[RemoteEntry] = []
        with self._lock:
            try:
                self._list_into(common_path(path), entries)
            except REMOTE_ERRORS as e:
                logger.warning("Listing %s failed: %s", path, e)
                self.listing_failed = True
        return entries

    def _list_into(self, path: str, entries: list[RemoteEntry]) -> None:
        folders = []
        for name, facts in self._client.mlsd(self._abs(path), facts=["type", "size", "modify"]):
            kind = facts.get("type", "").lower()
            if kind in ("cdir", "pdir") or name in (".", ".."):
                continue
            rel = name if path == "." else f"{path}/{name}"
            try:
                modified = parse_ftp_time(facts["modify"]) if "modify" in facts else 0.0
            except ValueError:
                modified = 0.0

            if kind == "dir":
                entries.append(RemoteEntry(name, rel, ItemType.FOLDER, 0, modified))
                folders.append(rel)
            elif kind == "file":
                size = int(facts.get("size", 0))
                entries.append(RemoteEntry(name, rel, ItemType.FILE, size, modified))

        for folder in folders:
            self._list_into(folder, entries)

    # === Operations ===

    def remove(self, path: str) -> None:
        """Delete a remote file."""
        with self._lock:
            try:
                self._client.delete(self._abs(path))
            except ftplib.all_errors as e:
                raise RemoteOperationError(f"Cannot delete {path}: {e}") from e

    def remove_folder(self, path: str) -> None:
        """Delete a remote folder and its contents."""
        with self._lock:
            try:
                self._remove_tree(common_path(path))
            except ftplib.all_errors as e:
                raise RemoteOperationError(f"Cannot delete folder {path}: {e}") from e

    def _remove_tree(self, path: str) -> None:
        for name, facts in list(self._client.mlsd(self._abs(path), facts=["type"])):
            kind = facts.get("type", "").lower()
            if kind in ("cdir", "pdir") or name in (".", ".."):
                continue
            child = f"{path}/{name}"
            if kind == "dir":
                self._remove_tree(child)
            else:
                self._client.delete(self._abs(child))
        self._client.rmd(self._abs(path))

    def make_folder(self, path: str) -> None:
        """Create a remote folder and any missing parents."""
        cp = common_path(path)
        if cp == ".":
            return
        with self._lock:
            current = ""
            for part in cp.split("/"):
                current = f"{current}/{part}" if current else part
                try:
                    self._client.mkd(self._abs(current))
                except ftplib.error_perm as e:
                    # 550 when it already exists
                    if not self.exists(current):
                        raise RemoteOperationError(f"Cannot create {current}: {e}") from e
                except ftplib.all_errors as e:
                    raise RemoteOperationError(f"Cannot create {current}: {e}") from e

    def rename(self, old_path: str, new_path: str) -> None:
        """Rename a remote file or folder."""
        with self._lock:
            try:
                self._client.rename(self._abs(old_path), self._abs(new_path))
            except ftplib.all_errors as e:
                raise RemoteOperationError(f"Cannot rename {old_path}: {e}") from e

    # === Transfers ===

    def safe_upload(self, item: SyncQueueItem, local_path: Path) -> TransferStatus:
        """Upload to a temporary name, then move it over the target."""
        if not local_path.is_file():
            logger.debug("Nothing to upload, %s is gone", local_path)
            return TransferStatus.NONE

        path = item.common_path
        parent = posixpath.dirname(path)
        target = self._abs(path)
        temp = target + PART_SUFFIX

        with self._lock:
            try:
                if parent:
                    self.make_folder(parent)
                with open(local_path, "rb") as f:
                    self._client.storbinary(f"STOR {temp}", f)
                try:
                    self._client.rename(temp, target)
                except ftplib.error_perm:
                    # Some servers refuse to rename over an existing file
                    self._client.delete(target)
                    self._client.rename(temp, target)
            except REMOTE_ERRORS as e:
                logger.error("Upload of %s failed: %s", path, e)
                self._discard_remote(temp)
                return TransferStatus.FAILURE

        logger.info("Uploaded %s", path)
        return TransferStatus.SUCCESS

    def _discard_remote(self, path: str) -> None:
        try:
            self._client.delete(path)
        except ftplib.all_errors:
            pass

    def safe_download(self, item: SyncQueueItem, local_path: Path) -> TransferStatus:
        """Download to a temporary file, then replace the target."""
        path = item.common_path
        temp = local_path.with_name(local_path.name + PART_SUFFIX)

        with self._lock:
            try:
                local_path.parent.mkdir(parents=True, exist_ok=True)
                with open(temp, "wb") as f:
                    self._client.retrbinary(f"RETR {self._abs(path)}", f.write)
                os.replace(temp, local_path)
            except ftplib.error_perm as e:
                temp.unlink(missing_ok=True)
                if str(e).startswith("550"):
                    logger.debug("Nothing to download, %s is gone", path)
                    return TransferStatus.NONE
                logger.error("Download of %s failed: %s", path, e)
                return TransferStatus.FAILURE
            except ftplib.all_errors as e:
                temp.unlink(missing_ok=True)
                logger.error("Download of %s failed: %s", path, e)
                return TransferStatus.FAILURE

            modified = self.try_get_modified_time(path) or item.item.last_write_time

        if modified:
            # Keep the local copy stamped with the remote time
            os.utime(local_path, (modified, modified))
        logger.info("Downloaded %s", path)
        return TransferStatus.SUCCESS
