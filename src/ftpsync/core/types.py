"""Shared types for ftpsync."""

from __future__ import annotations

from enum import Enum


class SyncState(str, Enum):
    """Activity state of the sync engine as seen by the host."""

    IDLE = "idle"
    SYNCING = "syncing"
    LISTING = "listing"
    OFFLINE = "offline"
