"""Client-facing stream frames.

Each frame is an SSE event name plus a JSON object:

- ``data``      ``{author, content, is_thought}`` or ``{author, images}``
- ``heartbeat`` ``{timestamp}`` (unix seconds)
- ``error``     ``{error}`` (sanitised)
- ``stop``      ``{status: "done"}``
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from loomchat.chat_runtime.models.enums import FrameEvent


@dataclass(frozen=True)
class Frame:
    event: FrameEvent
    data: dict[str, Any] = field(default_factory=dict)

    def encode(self) -> str:
        return json.dumps(self.data, ensure_ascii=False)


def text_frame(author: str, text: str, *, is_thought: bool = False) -> Frame:
    return Frame(FrameEvent.DATA, {"author": author, "content": text, "is_thought": is_thought})


def images_frame(author: str, images: list[str]) -> Frame:
    return Frame(FrameEvent.DATA, {"author": author, "images": images})


def heartbeat_frame(timestamp: float) -> Frame:
    return Frame(FrameEvent.HEARTBEAT, {"timestamp": int(timestamp)})


def error_frame(message: str) -> Frame:
    return Frame(FrameEvent.ERROR, {"error": message})


def stop_frame() -> Frame:
    return Frame(FrameEvent.STOP, {"status": "done"})
