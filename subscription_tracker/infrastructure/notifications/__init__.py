"""
Notifications Infrastructure Module

Delivery backends for renewal reminders.
"""

from subscription_tracker.infrastructure.notifications.email_service import (
    EmailNotificationSender,
    LoggingNotificationSender,
    get_notification_sender,
)

__all__ = ["EmailNotificationSender", "LoggingNotificationSender", "get_notification_sender"]
