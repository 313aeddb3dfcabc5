"""Shared enumerations used across the chat runtime."""

from __future__ import annotations

from enum import StrEnum

# -- Events ------------------------------------------------------------------


class Role(StrEnum):
    """Content role as produced by the engine."""

    USER = "user"
    MODEL = "model"


class DisplayRole(StrEnum):
    """Normalized role shown to clients (exactly two values)."""

    USER = "user"
    ASSISTANT = "assistant"


# -- Streaming ---------------------------------------------------------------


class FrameEvent(StrEnum):
    """SSE event names of the client-facing stream."""

    DATA = "data"
    HEARTBEAT = "heartbeat"
    ERROR = "error"
    STOP = "stop"


# -- Editing -----------------------------------------------------------------


class EditErrorCode(StrEnum):
    MESSAGE_NOT_FOUND = "message_not_found"
    MESSAGE_NOT_EDITABLE = "message_not_editable"
    INVALID_EDIT_PAYLOAD = "invalid_edit_payload"


# -- Event log backends ------------------------------------------------------


class EventStoreKind(StrEnum):
    SQL = "sql"
    LOCAL = "local"
    MEMORY = "memory"
