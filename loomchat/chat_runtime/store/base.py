"""Event log store interface.

The event log is the ground truth for conversation state: one ordered,
append-only sequence of events per ``SessionKey`` plus a small free-form
state map.  Events are never mutated or deleted individually; a whole log
can only be dropped with ``delete_session``.

Implementations must hand out copies: mutating a returned ``SessionLog`` (its
state map, its events, their inline bytes) never changes stored data.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from loomchat.chat_runtime.models.events import Event
from loomchat.chat_runtime.models.session import SessionKey, SessionLog


class SessionNotFoundError(LookupError):
    """Raised when no event log exists for a session key."""


class DuplicateSessionError(ValueError):
    """Raised when creating a session whose key already exists."""


@runtime_checkable
class EventLogStore(Protocol):
    """Async protocol for reading and appending session event logs."""

    async def create_session(self, key: SessionKey, state: dict[str, Any] | None = None) -> SessionLog:
        """Create an empty log.  Raises ``DuplicateSessionError`` if the key exists."""
        ...

    async def get_session(self, key: SessionKey) -> SessionLog | None:
        """Return the log with all events in append order, or ``None``."""
        ...

    async def list_sessions(self, app_name: str, user_id: str) -> list[SessionLog]:
        """Return every log owned by the user, newest update first."""
        ...

    async def append_event(self, key: SessionKey, event: Event) -> Event:
        """Append one event.  Raises ``SessionNotFoundError`` if the log is missing."""
        ...

    async def update_state(self, key: SessionKey, delta: dict[str, Any]) -> dict[str, Any]:
        """Merge *delta* into the state map and return the new state."""
        ...

    async def delete_session(self, key: SessionKey) -> None:
        """Drop a log and its events.  No-op if not found."""
        ...
