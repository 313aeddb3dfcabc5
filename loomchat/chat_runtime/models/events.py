"""Event log models.

An ``Event`` is one immutable, authored entry in a session's log.  Its
``content`` is an ordered list of ``Part`` objects; each part carries exactly
one payload: text (optionally flagged as a thought), inline binary data, a
function call, or a function response.

The same ``Event`` type is used for items streamed by the engine: streamed
items may additionally be ``partial`` (an incremental text chunk that is
never persisted).
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from loomchat.chat_runtime.models.enums import Role

USER_AUTHOR = "user"
"""Author name used for events submitted by the end user."""


def new_event_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


class Blob(BaseModel):
    """Inline binary payload (image or document bytes)."""

    model_config = ConfigDict(ser_json_bytes="base64", val_json_bytes="base64")

    mime_type: str | None = None
    data: bytes


class FunctionCall(BaseModel):
    id: str | None = None
    name: str
    args: dict[str, Any] = Field(default_factory=dict)


class FunctionResponse(BaseModel):
    """Result of a tool call.

    Image-producing tools put data URIs under ``response["images"]``.
    """

    id: str | None = None
    name: str
    response: dict[str, Any] = Field(default_factory=dict)

    def images(self) -> list[str]:
        """Image data URIs carried by the response; none unless it reports ``success: true``."""
        images = self.response.get("images")
        if not isinstance(images, list) or self.response.get("success") is not True:
            return []
        return [img for img in images if isinstance(img, str) and img]


class Part(BaseModel):
    text: str | None = None
    thought: bool = False
    inline_data: Blob | None = None
    function_call: FunctionCall | None = None
    function_response: FunctionResponse | None = None


class Content(BaseModel):
    role: str = Role.USER
    parts: list[Part] = Field(default_factory=list)


class Event(BaseModel):
    """One entry in a session's event log."""

    id: str = Field(default_factory=new_event_id)
    timestamp: datetime | None = Field(default_factory=_utcnow)
    author: str
    content: Content | None = None
    partial: bool = False
    turn_complete: bool = False

    @property
    def has_function_response(self) -> bool:
        return self.content is not None and any(p.function_response is not None for p in self.content.parts)

    @property
    def is_user_authored(self) -> bool:
        """True for a message typed by the end user.

        Tool results share the user role but carry a function response and a
        tool author; they are not user-authored.
        """
        return (
            self.content is not None
            and self.content.role == Role.USER
            and self.author == USER_AUTHOR
            and not self.has_function_response
        )

    @property
    def is_agent_authored(self) -> bool:
        """True for output of an agent (model role, no tool result)."""
        return self.content is not None and self.content.role != Role.USER and not self.has_function_response

    def text(self) -> str:
        """Concatenate the non-thought text parts."""
        if self.content is None:
            return ""
        return "".join(p.text for p in self.content.parts if p.text and not p.thought)
