"""Unit tests for the stream presenter (engine items -> client frames)."""

from __future__ import annotations

import anyio
import pytest
from fakes import FakeEngine, model_event, tool_result_event, user_event

from loomchat.chat_runtime.execution.engine import EngineError, RunOptions
from loomchat.chat_runtime.execution.frames import Frame
from loomchat.chat_runtime.execution.presenter import (
    GENERIC_ERROR_MESSAGE,
    SESSION_MISSING_MESSAGE,
    StreamOutcome,
    StreamPresenter,
    describe_error,
    frames_for,
)
from loomchat.chat_runtime.models.enums import FrameEvent
from loomchat.chat_runtime.models.events import Content
from loomchat.chat_runtime.store.base import SessionNotFoundError


class _Recorder:
    def __init__(self, disconnect_after: int | None = None) -> None:
        self.frames: list[Frame] = []
        self.polls = 0
        self._disconnect_after = disconnect_after

    async def send(self, frame: Frame) -> None:
        self.frames.append(frame)

    async def is_disconnected(self) -> bool:
        self.polls += 1
        return self._disconnect_after is not None and self.polls > self._disconnect_after

    @property
    def events(self) -> list[FrameEvent]:
        return [f.event for f in self.frames]


async def _present(engine: FakeEngine, recorder: _Recorder, *, heartbeat_interval: float = 30.0) -> StreamOutcome:
    presenter = StreamPresenter(engine, heartbeat_interval=heartbeat_interval)
    return await presenter.run(
        user_id="u1",
        session_id="s1",
        message=Content(),
        options=RunOptions(app_name="app"),
        send=recorder.send,
        is_disconnected=recorder.is_disconnected,
    )


# ---------------------------------------------------------------------------
# Frame mapping
# ---------------------------------------------------------------------------


def test_only_partial_text_is_emitted() -> None:
    assert frames_for(model_event("Hel", partial=True), None)[0].data == {
        "author": "assistant",
        "content": "Hel",
        "is_thought": False,
    }
    assert frames_for(model_event("Hello", partial=False), None) == []


def test_thought_flag_is_forwarded() -> None:
    (frame,) = frames_for(model_event("hmm", partial=True, thought=True), None)
    assert frame.data["is_thought"] is True


def test_tool_images_attributed_to_tool_author() -> None:
    (frame,) = frames_for(tool_result_event(["data:image/png;base64,AAAA"]), "painter")
    assert frame.data == {"author": "painter", "images": ["data:image/png;base64,AAAA"]}


def test_tool_images_need_reported_success() -> None:
    failed = tool_result_event(["data:image/png;base64,AAAA"], success=False)
    unreported = tool_result_event(["data:image/png;base64,AAAA"])
    unreported.content.parts[0].function_response.response.pop("success")

    assert frames_for(failed, "painter") == []
    assert frames_for(unreported, "painter") == []


def test_tool_images_default_author() -> None:
    (frame,) = frames_for(tool_result_event(["data:image/png;base64,AAAA"]), None)
    assert frame.data["author"] == "model"


def test_describe_error() -> None:
    assert describe_error(SessionNotFoundError("s1")) == SESSION_MISSING_MESSAGE
    assert describe_error(EngineError("Quota exceeded")) == "Quota exceeded"
    assert describe_error(RuntimeError("db password is hunter2")) == GENERIC_ERROR_MESSAGE


# ---------------------------------------------------------------------------
# Relay
# ---------------------------------------------------------------------------


async def test_partials_then_stop_and_final_duplicate_suppressed() -> None:
    engine = FakeEngine(
        script=[
            model_event("Hel", partial=True),
            model_event("lo", partial=True),
            model_event("Hello", partial=False),
        ]
    )
    recorder = _Recorder()

    assert await _present(engine, recorder) == StreamOutcome.COMPLETED
    assert recorder.events == [FrameEvent.DATA, FrameEvent.DATA, FrameEvent.STOP]
    assert [f.data.get("content") for f in recorder.frames[:2]] == ["Hel", "lo"]
    assert recorder.frames[-1].data == {"status": "done"}


async def test_tool_images_follow_last_agent_author() -> None:
    engine = FakeEngine(
        script=[
            model_event("drawing", author="painter", partial=True),
            tool_result_event(["data:image/png;base64,AAAA"]),
        ]
    )
    recorder = _Recorder()

    await _present(engine, recorder)
    assert recorder.frames[1].data == {"author": "painter", "images": ["data:image/png;base64,AAAA"]}


async def test_user_echo_does_not_change_tool_author() -> None:
    engine = FakeEngine(
        script=[
            model_event("a", author="painter", partial=True),
            user_event("echo"),
            tool_result_event(["data:image/png;base64,AAAA"]),
        ]
    )
    recorder = _Recorder()

    await _present(engine, recorder)
    images = [f for f in recorder.frames if "images" in f.data]
    assert images[0].data["author"] == "painter"


async def test_empty_stream_sends_only_stop() -> None:
    recorder = _Recorder()
    assert await _present(FakeEngine(), recorder) == StreamOutcome.COMPLETED
    assert recorder.events == [FrameEvent.STOP]


@pytest.mark.parametrize(
    ("error", "message"),
    [
        (EngineError("Quota exceeded"), "Quota exceeded"),
        (SessionNotFoundError("s1"), SESSION_MISSING_MESSAGE),
        (KeyError("internal"), GENERIC_ERROR_MESSAGE),
    ],
)
async def test_engine_error_ends_stream_without_stop(error: Exception, message: str) -> None:
    engine = FakeEngine(script=[model_event("partial", partial=True), error, model_event("never", partial=True)])
    recorder = _Recorder()

    assert await _present(engine, recorder) == StreamOutcome.ERRORED
    assert recorder.events == [FrameEvent.DATA, FrameEvent.ERROR]
    assert recorder.frames[-1].data == {"error": message}
    assert engine.closed is True


async def test_disconnect_stops_without_further_frames() -> None:
    engine = FakeEngine(script=[model_event(str(i), partial=True) for i in range(5)])
    recorder = _Recorder(disconnect_after=2)

    assert await _present(engine, recorder) == StreamOutcome.DISCONNECTED
    assert recorder.events == [FrameEvent.DATA, FrameEvent.DATA]
    assert engine.closed is True


async def test_disconnect_wins_over_pending_error() -> None:
    engine = FakeEngine(script=[EngineError("boom")])
    recorder = _Recorder(disconnect_after=0)

    assert await _present(engine, recorder) == StreamOutcome.DISCONNECTED
    assert recorder.frames == []


class _SlowEngine:
    """Yields one chunk, waits, then another."""

    def __init__(self, pause: float) -> None:
        self._pause = pause

    async def run(self, user_id, session_id, message, options):
        yield model_event("a", partial=True)
        await anyio.sleep(self._pause)
        yield model_event("b", partial=True)


async def test_heartbeats_during_slow_engine_and_none_after() -> None:
    recorder = _Recorder()
    presenter = StreamPresenter(_SlowEngine(0.35), heartbeat_interval=0.1)
    outcome = await presenter.run(
        user_id="u1",
        session_id="s1",
        message=Content(),
        options=RunOptions(app_name="app"),
        send=recorder.send,
        is_disconnected=recorder.is_disconnected,
    )

    assert outcome == StreamOutcome.COMPLETED
    assert FrameEvent.HEARTBEAT in recorder.events
    assert recorder.events[-1] == FrameEvent.STOP

    count = len(recorder.frames)
    await anyio.sleep(0.25)
    assert len(recorder.frames) == count


class _LateEngine:
    """Thinks for a while before its first chunk."""

    def __init__(self, delay: float) -> None:
        self._delay = delay

    async def run(self, user_id, session_id, message, options):
        await anyio.sleep(self._delay)
        yield model_event("late", partial=True)


async def test_heartbeat_precedes_slow_first_chunk() -> None:
    recorder = _Recorder()
    presenter = StreamPresenter(_LateEngine(0.35), heartbeat_interval=0.1)
    outcome = await presenter.run(
        user_id="u1",
        session_id="s1",
        message=Content(),
        options=RunOptions(app_name="app"),
        send=recorder.send,
        is_disconnected=recorder.is_disconnected,
    )

    assert outcome == StreamOutcome.COMPLETED
    assert recorder.events[0] == FrameEvent.HEARTBEAT
    first_data = recorder.events.index(FrameEvent.DATA)
    assert all(e == FrameEvent.HEARTBEAT for e in recorder.events[:first_data])
    assert recorder.events[-1] == FrameEvent.STOP
