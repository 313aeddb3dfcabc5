"""Chat coordinator -- orchestrates one chat submission.

The coordinator manages the lifecycle of a single chat turn:

1. **Prepare**: Validate input, ensure the session log exists
2. **Title**: Detach a background task that names the conversation once
3. **Stream**: Register the stream, relay the engine run through the
   presenter, unregister on every exit path

The caller (API layer) is responsible for:

- Resolving the application name and dependencies
- Turning ``prepare_chat`` failures into HTTP errors *before* streaming
- Providing the transport (``send`` / ``is_disconnected``)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import anyio

from loomchat.chat_runtime.context import ActiveStream
from loomchat.chat_runtime.execution.engine import RunOptions
from loomchat.chat_runtime.execution.frames import error_frame
from loomchat.chat_runtime.execution.presenter import StreamOutcome
from loomchat.chat_runtime.managers.titles import ensure_title
from loomchat.chat_runtime.models.input import build_user_content, describe_for_title
from loomchat.chat_runtime.models.session import SessionKey
from loomchat.chat_runtime.registry import ShuttingDownError

if TYPE_CHECKING:
    import asyncio
    from collections.abc import Awaitable, Callable

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from loomchat.chat_runtime.execution.frames import Frame
    from loomchat.chat_runtime.execution.presenter import StreamPresenter
    from loomchat.chat_runtime.managers.sessions import SessionDirectory
    from loomchat.chat_runtime.managers.titles import TitleGenerator
    from loomchat.chat_runtime.models.api import ChatRequest
    from loomchat.chat_runtime.models.events import Content
    from loomchat.chat_runtime.registry import StreamRegistry

logger = logging.getLogger(__name__)

SHUTTING_DOWN_MESSAGE = "The server is restarting, please retry in a moment."


@dataclass
class ChatTurn:
    """A validated submission whose session log is known to exist."""

    key: SessionKey
    content: Content
    title_source: str


async def prepare_chat(directory: SessionDirectory, request: ChatRequest, app_name: str) -> ChatTurn:
    """Validate the request and ensure its session exists.

    Validation runs first, so an invalid request never creates a session.
    Raises ``InvalidInputError``; store errors propagate.
    """
    content = build_user_content(request.message, request.images, request.file_names)
    key = SessionKey(app_name, request.user_id, request.session_id)
    await directory.ensure(key)
    return ChatTurn(
        key=key,
        content=content,
        title_source=describe_for_title(request.message, len(request.images)),
    )


def schedule_title(
    registry: StreamRegistry,
    session_factory: async_sessionmaker[AsyncSession] | None,
    generator: TitleGenerator | None,
    turn: ChatTurn,
) -> asyncio.Task | None:
    """Detach the title task; it outlives the request that started it."""
    if session_factory is None or generator is None:
        return None
    return registry.spawn(
        ensure_title(session_factory, generator, turn.key.session_id, turn.title_source),
        name=f"title:{turn.key.session_id}",
    )


async def stream_chat(
    *,
    presenter: StreamPresenter,
    registry: StreamRegistry,
    turn: ChatTurn,
    send: Callable[[Frame], Awaitable[None]],
    is_disconnected: Callable[[], Awaitable[bool]],
) -> StreamOutcome:
    """Relay one engine run to the client.

    Write failures on a closed transport mark the stream as gone instead of
    raising, so the presenter stops at its next disconnect poll.
    """
    stream = ActiveStream(app_name=turn.key.app_name, user_id=turn.key.user_id, session_id=turn.key.session_id)
    try:
        registry.register(stream)
    except ShuttingDownError:
        await send(error_frame(SHUTTING_DOWN_MESSAGE))
        return StreamOutcome.ERRORED

    async def _send(frame: Frame) -> None:
        if stream.client_gone:
            return
        try:
            await send(frame)
        except (anyio.BrokenResourceError, anyio.ClosedResourceError):
            logger.info("Stream %s: client transport closed", stream.stream_id)
            stream.client_gone = True

    async def _is_disconnected() -> bool:
        return stream.should_stop or await is_disconnected()

    try:
        return await presenter.run(
            user_id=turn.key.user_id,
            session_id=turn.key.session_id,
            message=turn.content,
            options=RunOptions(app_name=turn.key.app_name),
            send=_send,
            is_disconnected=_is_disconnected,
        )
    finally:
        registry.unregister(stream.stream_id)
