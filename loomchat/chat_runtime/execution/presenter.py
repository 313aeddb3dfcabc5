"""Stream presenter -- relays one engine run as client-facing frames.

For every item pulled from the engine:

1. Poll for client disconnection; if gone, stop without another frame.
2. An engine failure becomes a single ``error`` frame and ends the stream
   (no ``stop`` after an error).
3. Partial text parts are emitted as ``data`` frames.  Non-partial text is
   the aggregate of chunks already sent and is suppressed.
4. Images inside a function response are emitted as a ``data`` frame
   attributed to the most recent agent author.  Tool results arrive under
   the user role with the tool as author, but belong to the agent that
   called the tool.

A clean end of the engine stream emits exactly one ``stop`` frame.  A
heartbeat timer runs alongside for the life of the relay and is stopped
exactly once on every exit path.
"""

from __future__ import annotations

import logging
from enum import StrEnum
from typing import TYPE_CHECKING

import anyio

from loomchat.chat_runtime.execution.engine import EngineError
from loomchat.chat_runtime.execution.frames import error_frame, images_frame, stop_frame, text_frame
from loomchat.chat_runtime.execution.heartbeat import Heartbeat
from loomchat.chat_runtime.models.events import USER_AUTHOR
from loomchat.chat_runtime.store.base import SessionNotFoundError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable

    from loomchat.chat_runtime.execution.engine import AgentEngine, RunOptions
    from loomchat.chat_runtime.execution.frames import Frame
    from loomchat.chat_runtime.models.events import Content, Event

    Send = Callable[[Frame], Awaitable[None]]
    IsDisconnected = Callable[[], Awaitable[bool]]

logger = logging.getLogger(__name__)

DEFAULT_TOOL_AUTHOR = "model"
SESSION_MISSING_MESSAGE = "Session does not exist or has been deleted, please create a new session."
GENERIC_ERROR_MESSAGE = "The assistant failed to respond. Please try again."


class StreamOutcome(StrEnum):
    COMPLETED = "completed"
    ERRORED = "errored"
    DISCONNECTED = "disconnected"


def describe_error(exc: BaseException) -> str:
    """Client-safe text for an engine failure."""
    if isinstance(exc, SessionNotFoundError):
        return SESSION_MISSING_MESSAGE
    if isinstance(exc, EngineError):
        return str(exc) or GENERIC_ERROR_MESSAGE
    return GENERIC_ERROR_MESSAGE


def frames_for(event: Event, tool_author: str | None) -> list[Frame]:
    """Frames produced by a single engine item (see module docstring)."""
    if event.content is None:
        return []
    frames: list[Frame] = []
    for part in event.content.parts:
        if part.text and event.partial:
            frames.append(text_frame(event.author, part.text, is_thought=part.thought))
        if part.function_response is not None:
            images = part.function_response.images()
            if images:
                frames.append(images_frame(tool_author or DEFAULT_TOOL_AUTHOR, images))
    return frames


class StreamPresenter:
    def __init__(self, engine: AgentEngine, *, heartbeat_interval: float = 30.0) -> None:
        self._engine = engine
        self._heartbeat_interval = heartbeat_interval

    async def run(
        self,
        *,
        user_id: str,
        session_id: str,
        message: Content,
        options: RunOptions,
        send: Send,
        is_disconnected: IsDisconnected,
    ) -> StreamOutcome:
        heartbeat = Heartbeat(send, self._heartbeat_interval)
        async with anyio.create_task_group() as tg:
            tg.start_soon(heartbeat.run)
            try:
                items = self._engine.run(user_id, session_id, message, options)
                outcome = await self._relay(items, session_id, send, is_disconnected)
            finally:
                heartbeat.stop()
        logger.info("Stream for session %s ended: %s", session_id, outcome)
        return outcome

    async def _relay(
        self,
        items: AsyncIterator[Event],
        session_id: str,
        send: Send,
        is_disconnected: IsDisconnected,
    ) -> StreamOutcome:
        tool_author: str | None = None
        try:
            while True:
                failure: Exception | None = None
                try:
                    event = await anext(items)
                except StopAsyncIteration:
                    break
                except Exception as exc:
                    failure = exc

                if await is_disconnected():
                    logger.info("Client disconnected from session %s, stopping relay", session_id)
                    return StreamOutcome.DISCONNECTED

                if failure is not None:
                    logger.error("Engine run failed for session %s", session_id, exc_info=failure)
                    await send(error_frame(describe_error(failure)))
                    return StreamOutcome.ERRORED

                if event.is_agent_authored and event.author != USER_AUTHOR:
                    tool_author = event.author
                for frame in frames_for(event, tool_author):
                    await send(frame)

            await send(stop_frame())
            return StreamOutcome.COMPLETED
        finally:
            aclose = getattr(items, "aclose", None)
            if aclose is not None:
                await aclose()
