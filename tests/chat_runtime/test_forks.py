"""Tests for forking a session at a user message."""

from __future__ import annotations

import pytest
from fakes import model_event, tool_result_event, user_event
from sqlalchemy.ext.asyncio import AsyncSession

from loomchat.chat_runtime.managers import versions
from loomchat.chat_runtime.managers.forks import (
    EditResult,
    ForkReplayError,
    ForkResult,
    clone_event,
    edit_message,
    fork_session,
    split_at,
)
from loomchat.chat_runtime.models.events import Event
from loomchat.chat_runtime.models.session import SessionKey
from loomchat.chat_runtime.store.base import SessionNotFoundError
from loomchat.chat_runtime.store.memory import InMemoryEventLogStore

SOURCE = SessionKey("app", "alice", "src")


@pytest.fixture
async def seeded() -> tuple[InMemoryEventLogStore, list[Event]]:
    """Source log: user, model, user, model."""
    store = InMemoryEventLogStore()
    await store.create_session(SOURCE, state={"lang": "en", "nested": {"k": 1}})
    events = [user_event("first"), model_event("reply one"), user_event("second"), model_event("reply two")]
    for event in events:
        await store.append_event(SOURCE, event)
    return store, events


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def test_clone_event_gets_new_id_and_timestamp() -> None:
    original = user_event("hi", timestamp=None)
    clone = clone_event(original)
    assert clone.id != original.id
    assert clone.timestamp is not None
    assert clone.content == original.content
    assert clone.content is not original.content


def test_split_at() -> None:
    events = [user_event("a"), user_event("b"), user_event("c")]
    prefix, cut = split_at(events, events[2].id)
    assert prefix == events[:2]
    assert cut is events[2]
    assert split_at(events, "missing") == (events, None)


# ---------------------------------------------------------------------------
# fork_session
# ---------------------------------------------------------------------------


async def test_fork_copies_prefix(seeded) -> None:
    store, events = seeded
    result = await fork_session(store, SOURCE, events[2].id, new_session_id="fork")

    assert result == ForkResult(found=True, editable=True, new_session_id="fork")
    fork = await store.get_session(SOURCE.with_session("fork"))
    assert [e.text() for e in fork.events] == ["first", "reply one"]
    assert {e.id for e in fork.events}.isdisjoint(e.id for e in events)
    assert fork.state == {"lang": "en", "nested": {"k": 1}}


async def test_fork_leaves_source_untouched(seeded) -> None:
    store, events = seeded
    before = await store.get_session(SOURCE)
    await fork_session(store, SOURCE, events[2].id)
    after = await store.get_session(SOURCE)
    assert after.events == before.events
    assert after.state == before.state


async def test_fork_at_first_message_is_empty(seeded) -> None:
    store, events = seeded
    result = await fork_session(store, SOURCE, events[0].id, new_session_id="fork")
    fork = await store.get_session(SOURCE.with_session("fork"))
    assert result.editable is True
    assert fork.events == []


async def test_fork_generates_session_id(seeded) -> None:
    store, events = seeded
    result = await fork_session(store, SOURCE, events[2].id)
    assert result.new_session_id.startswith("session-")


async def test_fork_unknown_message(seeded) -> None:
    store, _ = seeded
    result = await fork_session(store, SOURCE, "nope")
    assert result == ForkResult(found=False, editable=False)
    assert len(await store.list_sessions("app", "alice")) == 1


async def test_fork_at_model_message_not_editable(seeded) -> None:
    store, events = seeded
    result = await fork_session(store, SOURCE, events[1].id)
    assert result == ForkResult(found=True, editable=False)
    assert len(await store.list_sessions("app", "alice")) == 1


async def test_fork_at_tool_result_not_editable(seeded) -> None:
    store, _ = seeded
    tool_result = tool_result_event(["data:image/png;base64,AAAA"])
    await store.append_event(SOURCE, tool_result)

    result = await fork_session(store, SOURCE, tool_result.id)
    assert result == ForkResult(found=True, editable=False)
    assert len(await store.list_sessions("app", "alice")) == 1


def test_only_end_user_messages_are_user_authored() -> None:
    assert user_event("hi").is_user_authored is True
    assert tool_result_event([]).is_user_authored is False
    assert model_event("hello").is_user_authored is False


async def test_fork_missing_source() -> None:
    with pytest.raises(SessionNotFoundError):
        await fork_session(InMemoryEventLogStore(), SOURCE, "x")


class _FailingStore(InMemoryEventLogStore):
    """Fails the second append into any session other than the source."""

    def __init__(self) -> None:
        super().__init__()
        self.fork_appends = 0

    async def append_event(self, key: SessionKey, event: Event) -> Event:
        if key != SOURCE:
            self.fork_appends += 1
            if self.fork_appends == 2:
                msg = "disk full"
                raise OSError(msg)
        return await super().append_event(key, event)


async def test_partial_replay_is_reported_and_left_in_place() -> None:
    store = _FailingStore()
    await store.create_session(SOURCE)
    events = [user_event("a"), model_event("b"), user_event("c")]
    for event in events:
        await store.append_event(SOURCE, event)

    with pytest.raises(ForkReplayError) as exc_info:
        await fork_session(store, SOURCE, events[2].id, new_session_id="fork")

    assert exc_info.value.copied == 1
    assert exc_info.value.total == 2
    partial = await store.get_session(SOURCE.with_session("fork"))
    assert len(partial.events) == 1


# ---------------------------------------------------------------------------
# edit_message (fork + registry)
# ---------------------------------------------------------------------------


async def test_edit_records_next_version(seeded, db_session: AsyncSession) -> None:
    store, events = seeded
    result = await edit_message(db_session, store, SOURCE, events[2].id)

    assert isinstance(result, EditResult)
    assert result.thread_id == "src"
    assert result.version == 2
    assert result.edited_from_message_id == events[2].id

    info = await versions.describe(db_session, result.new_session_id)
    assert info.parent_session_id == "src"
    assert info.version == 2


async def test_edit_of_a_fork_continues_the_thread(seeded, db_session: AsyncSession) -> None:
    store, events = seeded
    first = await edit_message(db_session, store, SOURCE, events[2].id)

    fork_key = SOURCE.with_session(first.new_session_id)
    await store.append_event(fork_key, user_event("second, rephrased"))
    fork = await store.get_session(fork_key)

    second = await edit_message(db_session, store, fork_key, fork.events[-1].id)
    assert second.thread_id == "src"
    assert second.version == 3


async def test_edit_not_editable_returns_fork_result(seeded, db_session: AsyncSession) -> None:
    store, events = seeded
    result = await edit_message(db_session, store, SOURCE, events[1].id)
    assert result == ForkResult(found=True, editable=False)
    assert await versions.list_versions(db_session, "src") == []
