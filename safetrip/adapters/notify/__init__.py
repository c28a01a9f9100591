"""
Notification adapters for SafeTrip.

This module contains the outbox-backed dispatcher and the
SMS/email channel senders it delivers through.
"""

from .dispatcher import OutboxNotificationDispatcher, LoggingNotificationDispatcher
from .senders import SmsSender, EmailSender

__all__ = ["OutboxNotificationDispatcher", "LoggingNotificationDispatcher", "SmsSender", "EmailSender"]
