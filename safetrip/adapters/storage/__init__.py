"""
Storage adapters for SafeTrip hexagonal architecture.

This module contains storage adapters for records and durable
notification delivery: in-memory and SQLite record stores and
the SQLite outbox.
"""

from .memory import InMemoryRecordStore, InMemoryAccountDirectory
from .sqlite_store import SQLiteRecordStore
from .sqlite_outbox import SQLiteOutbox, OutboxItem

__all__ = ["InMemoryRecordStore", "InMemoryAccountDirectory", "SQLiteRecordStore", "SQLiteOutbox", "OutboxItem"]
