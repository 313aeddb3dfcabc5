"""API request / response schemas.

These thin schemas sit between HTTP and the managers.  They are separate
from the domain models in ``events.py`` / ``session.py`` because they serve
a different purpose:

- **Request** schemas validate user input and provide defaults.
- **Response** schemas serialize domain objects or ORM rows (``from_attributes``).

``app_name`` is optional on every request; routers fall back to the
configured default application.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from loomchat.chat_runtime.models.session import DisplayMessage

# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------


class ChatRequest(BaseModel):
    """A message submission streamed back over SSE."""

    user_id: str = Field(min_length=1)
    session_id: str = Field(min_length=1)
    message: str = ""
    images: list[str] = Field(default_factory=list, description="Attachments as base64 data URIs.")
    file_names: list[str] = Field(default_factory=list)
    app_name: str | None = None


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


class SessionCreate(BaseModel):
    user_id: str = Field(min_length=1)
    session_id: str | None = Field(default=None, description="Optional; generated if omitted.")
    app_name: str | None = None


class SessionResponse(BaseModel):
    app_name: str
    user_id: str
    session_id: str
    last_update_time: datetime | None = None


class SessionSummary(BaseModel):
    """One row of the session list."""

    session_id: str
    app_name: str
    user_id: str
    last_update_time: datetime | None = None
    message_count: int
    first_message: str = ""
    title: str | None = None
    thread_id: str | None = None
    version: int | None = None


class SessionHistoryResponse(BaseModel):
    session_id: str
    app_name: str
    user_id: str
    messages: list[DisplayMessage]
    total: int
    limit: int
    offset: int
    has_more: bool


class EditRequest(BaseModel):
    """Fork a session at a user message and resubmit replacement content."""

    user_id: str = Field(min_length=1)
    message_id: str = Field(min_length=1)
    new_content: str = ""
    images: list[str] = Field(default_factory=list)
    file_names: list[str] = Field(default_factory=list)
    app_name: str | None = None


class EditResponse(BaseModel):
    thread_id: str
    new_session_id: str
    version: int
    edited_from_message_id: str


class VersionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    session_id: str
    thread_id: str | None = None
    version: int | None = None
    parent_session_id: str | None = None
    edited_from_message_id: str | None = None
    title: str | None = None
    created_at: datetime | None = None


# ---------------------------------------------------------------------------
# Shares
# ---------------------------------------------------------------------------


class ShareCreate(BaseModel):
    user_id: str = Field(min_length=1)
    session_id: str = Field(min_length=1)
    expiry_days: int | None = Field(default=None, description="1..30; defaults to 7 when omitted or out of range.")
    app_name: str | None = None


class ShareCreated(BaseModel):
    share_id: str
    share_url: str
    expires_at: datetime


class ShareResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    share_id: str
    app_name: str
    user_id: str
    session_id: str
    expires_at: datetime
    accessed_at: datetime | None = None
    created_at: datetime | None = None


class SharedConversationResponse(BaseModel):
    share_id: str
    app_name: str
    session_id: str
    title: str | None = None
    messages: list[DisplayMessage]
    expires_at: datetime
    is_expired: bool
