"""Event log store implementations."""

from loomchat.chat_runtime.store.base import DuplicateSessionError, EventLogStore, SessionNotFoundError
from loomchat.chat_runtime.store.local import LocalEventLogStore
from loomchat.chat_runtime.store.memory import InMemoryEventLogStore
from loomchat.chat_runtime.store.sql import SqlEventLogStore

__all__ = [
    "DuplicateSessionError",
    "EventLogStore",
    "InMemoryEventLogStore",
    "LocalEventLogStore",
    "SessionNotFoundError",
    "SqlEventLogStore",
]
