"""Manual-review alerts and automated-fix summaries."""

from site_surgeon.notifications.formatting import (
    format_automated_fix,
    format_manual_review,
)
from site_surgeon.notifications.models import (
    Notification,
    NotificationError,
    NotificationKind,
    Notifier,
)
from site_surgeon.notifications.smtp import EmailNotifier

__all__ = [
    "EmailNotifier",
    "Notification",
    "NotificationError",
    "NotificationKind",
    "Notifier",
    "format_automated_fix",
    "format_manual_review",
]
