"""
Adapters for SafeTrip hexagonal architecture.

This module contains the concrete implementations of port interfaces
that handle persistence and notification delivery.
"""

from .storage import (
    InMemoryRecordStore, InMemoryAccountDirectory, SQLiteRecordStore, SQLiteOutbox,
)
from .notify import (
    OutboxNotificationDispatcher, LoggingNotificationDispatcher, SmsSender, EmailSender,
)

__all__ = [
    "InMemoryRecordStore", "InMemoryAccountDirectory", "SQLiteRecordStore", "SQLiteOutbox",
    "OutboxNotificationDispatcher", "LoggingNotificationDispatcher", "SmsSender", "EmailSender",
]
