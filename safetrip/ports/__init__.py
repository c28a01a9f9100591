"""
Port interfaces for SafeTrip hexagonal architecture.

This module defines the port interfaces (Protocols) that define
the contracts between the core domain and external collaborators.
"""

from .directory import AccountDirectoryPort
from .records import RecordStorePort
from .notify import NotificationDispatchPort, Channel

__all__ = ["AccountDirectoryPort", "RecordStorePort", "NotificationDispatchPort", "Channel"]
