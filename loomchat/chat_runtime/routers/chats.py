"""Chat endpoint: submit a message, receive the reply as server-sent events.

Validation and session setup happen before the response starts, so they
fail as ordinary HTTP errors.  Once streaming, every failure is an ``error``
frame.

Frames travel through a zero-capacity anyio memory stream: the publisher
only continues after sse-starlette has taken the frame for writing, so
nothing is batched behind the client's back.
"""

from __future__ import annotations

from functools import partial
from typing import TYPE_CHECKING

import anyio
from fastapi import APIRouter, HTTPException, Request, status
from loguru import logger
from sse_starlette.sse import EventSourceResponse, ServerSentEvent

from loomchat.chat_runtime.deps import Directory, Engine, Registry, SessionFactory, Settings, Titles
from loomchat.chat_runtime.execution.coordinator import prepare_chat, schedule_title, stream_chat
from loomchat.chat_runtime.execution.presenter import StreamPresenter
from loomchat.chat_runtime.models.api import ChatRequest
from loomchat.chat_runtime.models.input import InvalidInputError

if TYPE_CHECKING:
    from anyio.streams.memory import MemoryObjectSendStream

    from loomchat.chat_runtime.execution.coordinator import ChatTurn
    from loomchat.chat_runtime.execution.frames import Frame
    from loomchat.chat_runtime.registry import StreamRegistry

router = APIRouter(prefix="/chats", tags=["chats"])


def _to_sse(frame: Frame) -> ServerSentEvent:
    return ServerSentEvent(data=frame.encode(), event=frame.event.value)


async def _publish(
    send_stream: MemoryObjectSendStream[ServerSentEvent],
    *,
    request: Request,
    presenter: StreamPresenter,
    registry: StreamRegistry,
    turn: ChatTurn,
) -> None:
    async with send_stream:

        async def send(frame: Frame) -> None:
            await send_stream.send(_to_sse(frame))

        await stream_chat(
            presenter=presenter,
            registry=registry,
            turn=turn,
            send=send,
            is_disconnected=request.is_disconnected,
        )


@router.post("/stream")
async def handle_chat_stream(
    body: ChatRequest,
    request: Request,
    directory: Directory,
    engine: Engine,
    registry: Registry,
    titles: Titles,
    session_factory: SessionFactory,
    settings: Settings,
) -> EventSourceResponse:
    """Stream the assistant's reply to one user message."""
    if registry.is_shutting_down:
        raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, detail="Server is shutting down.")

    app_name = body.app_name or settings.app_name
    try:
        turn = await prepare_chat(directory, body, app_name)
    except InvalidInputError as exc:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail=str(exc)) from None
    except Exception:
        logger.exception("Failed to prepare session {} for user {}", body.session_id, body.user_id)
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to prepare session.") from None

    schedule_title(registry, session_factory, titles, turn)

    presenter = StreamPresenter(engine, heartbeat_interval=settings.heartbeat_interval)
    send_stream, recv_stream = anyio.create_memory_object_stream[ServerSentEvent](0)
    publisher = partial(_publish, send_stream, request=request, presenter=presenter, registry=registry, turn=turn)
    return EventSourceResponse(recv_stream, data_sender_callable=publisher)
