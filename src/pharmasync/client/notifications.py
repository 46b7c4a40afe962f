"""Cross-platform system notifications for pharmasync.

This module provides:
- Native OS notifications (Windows toast, macOS notification center, Linux notify-send)
- Helpers for pharmacy notifications, low-stock alerts and sync errors

Notifications are best-effort: every function returns False instead of
raising when the platform cannot show them.
"""

from __future__ import annotations

import logging
import platform
import subprocess
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any

logger = logging.getLogger(__name__)

APP_NAME = "PharmaSync"


class NotificationType(Enum):
    """Type of notification."""

    INFO = auto()
    WARNING = auto()
    ERROR = auto()
    LOW_STOCK = auto()


@dataclass
class Notification:
    """Represents a notification to display."""

    title: str
    message: str
    type: NotificationType = NotificationType.INFO


def _notify_windows(notification: Notification) -> bool:
    """Send notification on Windows using a PowerShell toast."""
    title = notification.title.replace("'", "''")
    message = notification.message.replace("'", "''")
    ps_script = f'''
    [Windows.UI.Notifications.ToastNotificationManager, Windows.UI.Notifications, ContentType = WindowsRuntime] | Out-Null
    $template = [Windows.UI.Notifications.ToastNotificationManager]::GetTemplateContent(
        [Windows.UI.Notifications.ToastTemplateType]::ToastText02)
    $texts = $template.GetElementsByTagName("text")
    $texts.Item(0).AppendChild($template.CreateTextNode('{title}')) | Out-Null
    $texts.Item(1).AppendChild($template.CreateTextNode('{message}')) | Out-Null
    $toast = [Windows.UI.Notifications.ToastNotification]::new($template)
    [Windows.UI.Notifications.ToastNotificationManager]::CreateToastNotifier("{APP_NAME}").Show($toast)
    '''
    try:
        subprocess.run(
            ["powershell", "-ExecutionPolicy", "Bypass", "-Command", ps_script],
            capture_output=True,
            check=True,
            creationflags=getattr(subprocess, "CREATE_NO_WINDOW", 0),
        )
        return True
    except Exception as e:
        logger.debug("Windows notification failed: %s", e)
        return False


def _notify_macos(notification: Notification) -> bool:
    """Send notification on macOS using osascript."""
    try:
        title = notification.title.replace('"', '\\"')
        message = notification.message.replace('"', '\\"')

        script = f'display notification "{message}" with title "{title}"'
        subprocess.run(
            ["osascript", "-e", script],
            capture_output=True,
            check=True,
        )
        return True
    except Exception as e:
        logger.debug("macOS notification failed: %s", e)
        return False


def _notify_linux(notification: Notification) -> bool:
    """Send notification on Linux using notify-send."""
    urgency_map = {
        NotificationType.INFO: "normal",
        NotificationType.WARNING: "normal",
        NotificationType.LOW_STOCK: "normal",
        NotificationType.ERROR: "critical",
    }
    try:
        subprocess.run(
            [
                "notify-send",
                "--urgency", urgency_map.get(notification.type, "normal"),
                "--app-name", APP_NAME,
                notification.title,
                notification.message,
            ],
            capture_output=True,
            check=True,
        )
        return True
    except FileNotFoundError:
        logger.debug("notify-send not found")
        return False
    except Exception as e:
        logger.debug("Linux notification failed: %s", e)
        return False


def send_notification(notification: Notification) -> bool:
    """Send a system notification.

    Args:
        notification: The notification to send.

    Returns:
        True if notification was sent, False if failed or unavailable.
    """
    system = platform.system()

    if system == "Windows":
        return _notify_windows(notification)
    elif system == "Darwin":
        return _notify_macos(notification)
    elif system == "Linux":
        return _notify_linux(notification)
    else:
        logger.warning("Notifications not supported on %s", system)
        return False


def notify_new_notification(record: dict[str, Any]) -> bool:
    """Show a pharmacy notification that just appeared."""
    return send_notification(Notification(
        title=f"{APP_NAME} - {str(record.get('notification_type') or 'info').title()}",
        message=str(record.get("message") or "New notification"),
        type=NotificationType.INFO,
    ))


def notify_low_stock(records: list[dict[str, Any]], name_field: str = "product_name") -> bool:
    """Show a low-stock alert.

    Args:
        records: Stock rows inside the low-stock range.
        name_field: Field holding the product name.

    Returns:
        True if notification was sent. Nothing is sent for an empty list.
    """
    if not records:
        return False

    names = [str(r.get(name_field) or r.get("product_id") or "?") for r in records[:3]]
    message = ", ".join(names)
    if len(records) > 3:
        message += f" and {len(records) - 3} more"

    return send_notification(Notification(
        title=f"{APP_NAME} - Low Stock ({len(records)})",
        message=message,
        type=NotificationType.LOW_STOCK,
    ))


def notify_error(message: str) -> bool:
    """Send an error notification."""
    return send_notification(Notification(
        title=f"{APP_NAME} - Error",
        message=message,
        type=NotificationType.ERROR,
    ))
