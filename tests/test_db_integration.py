"""Integration tests against a real PostgreSQL (testcontainers).

Verifies the schema, the JSONB variant, and the SQL event log store on the
production backend.
"""

from __future__ import annotations

import pytest
from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from loomchat.chat_runtime.db.engine import create_session_factory
from loomchat.chat_runtime.db.tables import SessionMeta
from loomchat.chat_runtime.managers import versions
from loomchat.chat_runtime.models.events import Content, Event, Part
from loomchat.chat_runtime.models.session import SessionKey
from loomchat.chat_runtime.store.sql import SqlEventLogStore

pytestmark = pytest.mark.integration


async def test_tables_created(pg_session: AsyncSession):
    result = await pg_session.execute(
        text("SELECT table_name FROM information_schema.tables WHERE table_schema = 'public' ORDER BY table_name")
    )
    tables = {row[0] for row in result}
    assert {"sessions", "session_events", "session_meta", "shared_conversations"} <= tables


async def test_savepoint_rollback_isolation(pg_session: AsyncSession):
    """Rows inserted in a test should not persist to the next test."""
    await versions.set_title(pg_session, "itest-1", "Title")
    assert await versions.get_title(pg_session, "itest-1") == "Title"


async def test_savepoint_rollback_clean_state(pg_session: AsyncSession):
    result = await pg_session.execute(select(SessionMeta).where(SessionMeta.session_id == "itest-1"))
    assert result.scalar_one_or_none() is None, "Savepoint rollback did not clean up previous test's data"


async def test_sql_store_roundtrip(pg_engine: AsyncEngine):
    store = SqlEventLogStore(create_session_factory(pg_engine))
    key = SessionKey("itest", "alice", "pg-s1")
    try:
        await store.create_session(key, state={"nested": {"a": [1, 2]}})
        event = Event(author="user", content=Content(parts=[Part(text="héllo")]))
        await store.append_event(key, event)

        loaded = await store.get_session(key)
        assert loaded.state == {"nested": {"a": [1, 2]}}
        assert [e.id for e in loaded.events] == [event.id]
        assert loaded.events[0].text() == "héllo"
        assert loaded.last_update_time.tzinfo is not None
    finally:
        await store.delete_session(key)
