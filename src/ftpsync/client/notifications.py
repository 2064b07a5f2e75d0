"""Cross-platform system notifications for ftpsync.

This module provides:
- send_notification: Desktop notifications through powershell, osascript or notify-send
- summarize / notify_sync_report: The reporting sink of the sync queue
"""

from __future__ import annotations

import logging
import platform
import subprocess
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum, auto
from pathlib import PurePosixPath
from xml.sax.saxutils import escape

from ftpsync.client.sync.types import ChangeAction, SyncReport

logger = logging.getLogger(__name__)

APP_NAME = "ftpsync"

NOTIFY_TIMEOUT_S = 10


class NotificationType(Enum):
    """Type of notification."""

    INFO = auto()
    WARNING = auto()
    ERROR = auto()


@dataclass
class Notification:
    """Represents a notification to display."""

    title: str
    message: str
    type: NotificationType = NotificationType.INFO


def _toast_text(value: str) -> str:
    # XML text inside a single-quoted PowerShell string
    return escape(value).replace("'", "''")


def _powershell_toast(notification: Notification) -> list[str]:
    xml = (
        '<toast><visual><binding template="ToastText02">'
        f'<text id="1">{_toast_text(notification.title)}</text>'
        f'<text id="2">{_toast_text(notification.message)}</text>'
        "</binding></visual></toast>"
    )
    script = (
        "[Windows.UI.Notifications.ToastNotificationManager, Windows.UI.Notifications, "
        "ContentType = WindowsRuntime] | Out-Null\n"
        "$xml = New-Object Windows.Data.Xml.Dom.XmlDocument\n"
        f"$xml.LoadXml('{xml}')\n"
        "$toast = [Windows.UI.Notifications.ToastNotification]::new($xml)\n"
        "[Windows.UI.Notifications.ToastNotificationManager]::"
        f"CreateToastNotifier('{APP_NAME}').Show($toast)"
    )
    return ["powershell", "-NoProfile", "-ExecutionPolicy", "Bypass", "-Command", script]


def _applescript_string(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


def _osascript(notification: Notification) -> list[str]:
    script = (
        f"display notification {_applescript_string(notification.message)} "
        f"with title {_applescript_string(notification.title)}"
    )
    return ["osascript", "-e", script]


def _notify_send(notification: Notification) -> list[str]:
    return [
        "notify-send",
        "--urgency", _URGENCY[notification.type],
        "--app-name", APP_NAME,
        notification.title,
        notification.message,
    ]


_URGENCY = {
    NotificationType.INFO: "low",
    NotificationType.WARNING: "normal",
    NotificationType.ERROR: "critical",
}

# platform.system() -> command line builder
_BACKENDS: dict[str, Callable[[Notification], list[str]]] = {
    "Windows": _powershell_toast,
    "Darwin": _osascript,
    "Linux": _notify_send,
}


def send_notification(notification: Notification) -> bool:
    """Show a desktop notification with the platform's command line tool.

    Returns:
        True if the tool ran successfully.
    """
    system = platform.system()
    build = _BACKENDS.get(system)
    if build is None:
        logger.warning("Notifications not supported on %s", system)
        return False

    args = build(notification)
    try:
        subprocess.run(
            args,
            capture_output=True,
            check=True,
            timeout=NOTIFY_TIMEOUT_S,
            creationflags=getattr(subprocess, "CREATE_NO_WINDOW", 0),
        )
    except FileNotFoundError:
        logger.debug("%s not found", args[0])
        return False
    except (subprocess.SubprocessError, OSError) as e:
        logger.debug("%s notification failed: %s", system, e)
        return False
    return True


def _plural(count: int, noun: str) -> str:
    return f"{count} {noun}" if count == 1 else f"{count} {noun}s"


def summarize(report: SyncReport) -> str | None:
    """Describe a finished cycle in one sentence, or None if nothing synced."""
    files, folders = report.files, report.folders

    if files and folders:
        return f"{_plural(files, 'file')} and {_plural(folders, 'folder')} synced"

    if files + folders == 1:
        item = report.successful[-1]
        if item.action == ChangeAction.RENAMED:
            old = PurePosixPath(item.common_path).name
            new = PurePosixPath(item.new_common_path).name
            return f"{old} was renamed to {new}"
        kind = "Folder" if item.is_folder else "File"
        return f"{kind} {item.item.name} was {item.action.value}"

    if files:
        return f"{_plural(files, 'file')} synced"
    if folders:
        return f"{_plural(folders, 'folder')} synced"
    return None


def notify_sync_report(report: SyncReport) -> bool:
    """Reporting sink: notify the user about a finished cycle.

    Returns:
        True if a notification was sent.
    """
    message = summarize(report)
    if message is None:
        return False  # Don't notify if nothing happened

    return send_notification(Notification(
        title=f"{APP_NAME} - Sync Complete",
        message=message,
        type=NotificationType.WARNING if report.failed else NotificationType.INFO,
    ))


def notify_error(message: str) -> bool:
    """Send an error notification."""
    return send_notification(Notification(
        title=f"{APP_NAME} - Error",
        message=message,
        type=NotificationType.ERROR,
    ))
