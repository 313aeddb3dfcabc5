"""Data models for the chat runtime."""

from loomchat.chat_runtime.models.enums import DisplayRole, EditErrorCode, EventStoreKind, FrameEvent, Role
from loomchat.chat_runtime.models.events import (
    USER_AUTHOR,
    Blob,
    Content,
    Event,
    FunctionCall,
    FunctionResponse,
    Part,
)
from loomchat.chat_runtime.models.session import (
    DisplayMessage,
    HistoryPage,
    SessionKey,
    SessionLog,
    ThreadInfo,
)

__all__ = [
    "USER_AUTHOR",
    "Blob",
    "Content",
    "DisplayMessage",
    "DisplayRole",
    "EditErrorCode",
    "Event",
    "EventStoreKind",
    "FrameEvent",
    "FunctionCall",
    "FunctionResponse",
    "HistoryPage",
    "Part",
    "Role",
    "SessionKey",
    "SessionLog",
    "ThreadInfo",
]
