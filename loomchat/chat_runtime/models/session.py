"""Session and history domain models."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from loomchat.chat_runtime.models.enums import DisplayRole
from loomchat.chat_runtime.models.events import Event

# -- Event log ---------------------------------------------------------------


@dataclass(frozen=True)
class SessionKey:
    """Identity of one event log: (application, user, session id)."""

    app_name: str
    user_id: str
    session_id: str

    def with_session(self, session_id: str) -> SessionKey:
        return SessionKey(self.app_name, self.user_id, session_id)


class SessionLog(BaseModel):
    """A session's state map plus its ordered events."""

    app_name: str
    user_id: str
    session_id: str
    state: dict[str, Any] = Field(default_factory=dict)
    events: list[Event] = Field(default_factory=list)
    last_update_time: datetime | None = None

    @property
    def key(self) -> SessionKey:
        return SessionKey(self.app_name, self.user_id, self.session_id)


# -- History -----------------------------------------------------------------


class DisplayMessage(BaseModel):
    """One client-facing message reconstructed from an event."""

    id: str
    timestamp: datetime | None = None
    role: DisplayRole
    content: str = ""
    thought: str | None = None
    images: list[str] = Field(default_factory=list)
    file_names: list[str] = Field(default_factory=list)


class HistoryPage(BaseModel):
    messages: list[DisplayMessage]
    total: int
    limit: int
    offset: int
    has_more: bool


# -- Versioning --------------------------------------------------------------


class ThreadInfo(BaseModel):
    """Resolved thread identity of a session (implicit version 1 when unregistered)."""

    session_id: str
    thread_id: str
    version: int
    parent_session_id: str | None = None
    edited_from_message_id: str | None = None
    title: str | None = None
