"""Tests for the streaming chat endpoint."""

from __future__ import annotations

import base64
import json

import anyio
from fakes import APP, USER, FakeEngine, FakeTitleGenerator, model_event, tool_result_event
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from loomchat.chat_runtime.app import app
from loomchat.chat_runtime.execution.engine import EngineError
from loomchat.chat_runtime.managers import versions
from loomchat.chat_runtime.models.session import SessionKey
from loomchat.chat_runtime.registry import StreamRegistry
from loomchat.chat_runtime.store.memory import InMemoryEventLogStore

KEY = SessionKey(APP, USER, "s1")


def parse_sse(body: str) -> list[tuple[str, dict]]:
    """Split an SSE body into ``(event, data)`` pairs; comment lines are ignored."""
    frames = []
    for block in body.replace("\r\n", "\n").split("\n\n"):
        event, data = "message", []
        for line in block.split("\n"):
            if not line or line.startswith(":"):
                continue
            field, _, value = line.partition(":")
            value = value.removeprefix(" ")
            if field == "event":
                event = value
            elif field == "data":
                data.append(value)
        if data:
            frames.append((event, json.loads("\n".join(data))))
    return frames


async def _chat(client: AsyncClient, **body) -> list[tuple[str, dict]]:
    payload = {"user_id": USER, "session_id": "s1", **body}
    resp = await client.post("/api/chats/stream", json=payload)
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/event-stream")
    return parse_sse(resp.text)


async def _background_done(registry: StreamRegistry) -> None:
    with anyio.fail_after(2):
        while registry.background_count:
            await anyio.sleep(0.01)


# ---------------------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------------------


async def test_stream_relays_partials_then_stop(
    client: AsyncClient,
    engine: FakeEngine,
    memory_store: InMemoryEventLogStore,
) -> None:
    engine.script = [
        model_event("Hel", partial=True),
        model_event("lo", partial=True),
        model_event("Hello"),
    ]

    frames = await _chat(client, message="hi there")

    assert frames == [
        ("data", {"author": "assistant", "content": "Hel", "is_thought": False}),
        ("data", {"author": "assistant", "content": "lo", "is_thought": False}),
        ("stop", {"status": "done"}),
    ]
    log = await memory_store.get_session(KEY)
    assert [e.text() for e in log.events] == ["hi there", "Hello"]
    assert engine.calls[0][3].app_name == APP


async def test_stream_creates_session_on_first_message(client: AsyncClient, memory_store) -> None:
    assert await memory_store.get_session(KEY) is None
    await _chat(client, message="hi")
    assert await memory_store.get_session(KEY) is not None


async def test_stream_tool_images(client: AsyncClient, engine: FakeEngine) -> None:
    engine.script = [
        model_event("Drawing...", author="painter", partial=True),
        tool_result_event(["data:image/png;base64,AAAA"]),
    ]

    frames = await _chat(client, message="draw a cat")
    assert frames[1] == ("data", {"author": "painter", "images": ["data:image/png;base64,AAAA"]})
    assert frames[-1][0] == "stop"


async def test_stream_engine_error(client: AsyncClient, engine: FakeEngine) -> None:
    engine.script = [model_event("Hi", partial=True), EngineError("Quota exceeded, try tomorrow.")]

    frames = await _chat(client, message="hi")
    assert frames == [
        ("data", {"author": "assistant", "content": "Hi", "is_thought": False}),
        ("error", {"error": "Quota exceeded, try tomorrow."}),
    ]


async def test_stream_internal_error_is_sanitised(client: AsyncClient, engine: FakeEngine) -> None:
    engine.script = [RuntimeError("connection string postgres://admin:pw@db")]

    frames = await _chat(client, message="hi")
    assert len(frames) == 1
    event, data = frames[0]
    assert event == "error"
    assert "postgres" not in data["error"]


async def test_stream_unregisters(client: AsyncClient, registry: StreamRegistry) -> None:
    await _chat(client, message="hi")
    assert registry.active_count == 0


# ---------------------------------------------------------------------------
# Rejections before streaming
# ---------------------------------------------------------------------------


async def test_empty_message_rejected(client: AsyncClient, memory_store: InMemoryEventLogStore) -> None:
    resp = await client.post("/api/chats/stream", json={"user_id": USER, "session_id": "s1", "message": " "})
    assert resp.status_code == 400
    assert await memory_store.get_session(KEY) is None


async def test_too_many_images_rejected(client: AsyncClient, memory_store: InMemoryEventLogStore) -> None:
    image = "data:image/png;base64," + base64.b64encode(b"png").decode()
    resp = await client.post(
        "/api/chats/stream",
        json={"user_id": USER, "session_id": "s1", "message": "x", "images": [image] * 5},
    )
    assert resp.status_code == 400
    assert "Too many files" in resp.json()["detail"]
    assert await memory_store.get_session(KEY) is None


async def test_missing_fields_rejected(client: AsyncClient) -> None:
    resp = await client.post("/api/chats/stream", json={"user_id": USER, "message": "hi"})
    assert resp.status_code == 422


async def test_shutting_down_rejected(client: AsyncClient, registry: StreamRegistry) -> None:
    registry.begin_shutdown()
    resp = await client.post("/api/chats/stream", json={"user_id": USER, "session_id": "s1", "message": "hi"})
    assert resp.status_code == 503


async def test_engine_not_configured(client: AsyncClient) -> None:
    app.state.engine = None
    resp = await client.post("/api/chats/stream", json={"user_id": USER, "session_id": "s1", "message": "hi"})
    assert resp.status_code == 503


# ---------------------------------------------------------------------------
# Title task
# ---------------------------------------------------------------------------


async def test_title_generated_once(
    client: AsyncClient,
    registry: StreamRegistry,
    title_generator: FakeTitleGenerator,
    db_session: AsyncSession,
) -> None:
    await _chat(client, message="Plan a trip to Lisbon")
    await _background_done(registry)
    assert await versions.get_title(db_session, "s1") == "A Title"

    await _chat(client, message="and Porto?")
    await _background_done(registry)
    assert title_generator.prompts == ["Plan a trip to Lisbon"]


async def test_title_for_files_only_message(
    client: AsyncClient,
    registry: StreamRegistry,
    title_generator: FakeTitleGenerator,
) -> None:
    image = "data:image/png;base64," + base64.b64encode(b"png").decode()
    await _chat(client, images=[image, image])
    await _background_done(registry)
    assert title_generator.prompts == ["User sent 2 files"]
