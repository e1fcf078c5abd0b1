"""
Notifications for Cloud Cost Advisor.

Delivers execution outcomes over e-mail and chat.
"""

from .senders import (
    ChatNotifier,
    EmailNotifier,
    Notification,
    NotificationDispatcher,
    NotificationSender,
    build_dispatcher,
)

__all__ = [
    "ChatNotifier",
    "EmailNotifier",
    "Notification",
    "NotificationDispatcher",
    "NotificationSender",
    "build_dispatcher",
]
