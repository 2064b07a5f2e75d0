"""Shared configuration classes for ftpsync.

This module defines the account configuration consumed by the sync engine,
the remote store and the CLI.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class RemoteProtocol(str, Enum):
    """Protocol used to reach the remote store."""

    FTP = "ftp"
    FTPS = "ftps"


class SyncMethod(str, Enum):
    """How drain cycles are triggered.

    AUTOMATIC re-arms a timer after every cycle to re-check the remote
    folder; MANUAL only syncs on local changes or explicit requests.
    """

    AUTOMATIC = "automatic"
    MANUAL = "manual"


class SyncDirection(str, Enum):
    """Which replica may be written to.

    LOCAL means only the local folder is updated (download only), REMOTE
    means only the remote folder is updated (upload only).
    """

    BOTH = "both"
    LOCAL = "local"
    REMOTE = "remote"


DEFAULT_PORTS = {
    RemoteProtocol.FTP: 21,
    RemoteProtocol.FTPS: 21,
}


@dataclass
class AccountConfig:
    """Configuration of one synchronized folder pair.

    Attributes:
        host: Remote server host name.
        username: Login name.
        password: Login password.
        local_path: Local folder being synchronized.
        remote_path: Remote folder being synchronized (absolute on the server).
        protocol: FTP or explicit FTPS.
        port: Server port (defaults to the protocol's port).
        sync_method: Automatic (timer driven) or manual.
        sync_direction: Restrict writes to one replica.
        sync_frequency: Seconds between automatic remote checks.
        timeout: Network timeout in seconds.
        recycle: Send local deletions to the trash instead of unlinking.
        ignore_patterns: Extra gitignore-style patterns.
    """

    host: str
    username: str
    password: str
    local_path: Path
    remote_path: str = "/"
    protocol: RemoteProtocol = RemoteProtocol.FTP
    port: int = 0
    sync_method: SyncMethod = SyncMethod.AUTOMATIC
    sync_direction: SyncDirection = SyncDirection.BOTH
    sync_frequency: int = 60
    timeout: float = 30.0
    recycle: bool = True
    ignore_patterns: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Normalize paths and enum values."""
        self.protocol = RemoteProtocol(self.protocol)
        self.sync_method = SyncMethod(self.sync_method)
        self.sync_direction = SyncDirection(self.sync_direction)
        self.local_path = Path(self.local_path).expanduser().resolve()

        remote = self.remote_path.replace("\\", "/").strip()
        if not remote.startswith("/"):
            remote = "/" + remote
        if len(remote) > 1:
            remote = remote.rstrip("/")
        self.remote_path = remote

        if not self.port:
            self.port = DEFAULT_PORTS[self.protocol]
        if self.sync_frequency < 1:
            raise ValueError("sync_frequency must be at least 1 second")

    @property
    def is_automatic(self) -> bool:
        """Check if the account re-checks the remote folder on a timer."""
        return self.sync_method == SyncMethod.AUTOMATIC

    def to_dict(self) -> dict[str, object]:
        """Serialize to a JSON-compatible dict."""
        return {
            "host": self.host,
            "username": self.username,
            "password": self.password,
            "local_path": str(self.local_path),
            "remote_path": self.remote_path,
            "protocol": self.protocol.value,
            "port": self.port,
            "sync_method": self.sync_method.value,
            "sync_direction": self.sync_direction.value,
            "sync_frequency": self.sync_frequency,
            "timeout": self.timeout,
            "recycle": self.recycle,
            "ignore_patterns": list(self.ignore_patterns),
        }

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> AccountConfig:
        """Create an AccountConfig from a dict produced by to_dict()."""
        return cls(
            host=str(data["host"]),
            username=str(data["username"]),
            password=str(data.get("password", "")),
            local_path=Path(str(data["local_path"])),
            remote_path=str(data.get("remote_path", "/")),
            protocol=RemoteProtocol(data.get("protocol", "ftp")),
            port=int(data.get("port", 0)),  # type: ignore[arg-type]
            sync_method=SyncMethod(data.get("sync_method", "automatic")),
            sync_direction=SyncDirection(data.get("sync_direction", "both")),
            sync_frequency=int(data.get("sync_frequency", 60)),  # type: ignore[arg-type]
            timeout=float(data.get("timeout", 30.0)),  # type: ignore[arg-type]
            recycle=bool(data.get("recycle", True)),
            ignore_patterns=list(data.get("ignore_patterns", [])),  # type: ignore[call-overload]
        )
