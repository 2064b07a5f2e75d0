"""Core module - Account configuration and shared types."""

from ftpsync.core.config import (
    AccountConfig,
    RemoteProtocol,
    SyncDirection,
    SyncMethod,
)
from ftpsync.core.types import SyncState

__all__ = [
    # Config
    "AccountConfig",
    "RemoteProtocol",
    "SyncDirection",
    "SyncMethod",
    # Types
    "SyncState",
]
