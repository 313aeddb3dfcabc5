"""Shared fixtures for chat-runtime tests."""

from __future__ import annotations

from collections.abc import AsyncIterator

import pytest
from fakes import APP, FakeEngine, FakeTitleGenerator
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sse_starlette.sse import AppStatus

from loomchat.chat_runtime.app import app
from loomchat.chat_runtime.deps import get_db
from loomchat.chat_runtime.managers.sessions import SessionDirectory
from loomchat.chat_runtime.registry import StreamRegistry
from loomchat.chat_runtime.settings import LoomSettings, get_settings
from loomchat.chat_runtime.store.memory import InMemoryEventLogStore
from loomchat.chat_runtime.store.sql import SqlEventLogStore


@pytest.fixture
def memory_store() -> InMemoryEventLogStore:
    return InMemoryEventLogStore()


@pytest.fixture
def sql_store(session_factory: async_sessionmaker[AsyncSession]) -> SqlEventLogStore:
    return SqlEventLogStore(session_factory)


@pytest.fixture
def engine(memory_store: InMemoryEventLogStore) -> FakeEngine:
    return FakeEngine(store=memory_store)


@pytest.fixture
def title_generator() -> FakeTitleGenerator:
    return FakeTitleGenerator()


@pytest.fixture
def registry() -> StreamRegistry:
    return StreamRegistry()


@pytest.fixture
def settings() -> LoomSettings:
    return LoomSettings(app_name=APP, heartbeat_interval=30.0)


@pytest.fixture
async def client(
    db_session: AsyncSession,
    session_factory: async_sessionmaker[AsyncSession],
    memory_store: InMemoryEventLogStore,
    engine: FakeEngine,
    title_generator: FakeTitleGenerator,
    registry: StreamRegistry,
    settings: LoomSettings,
) -> AsyncIterator[AsyncClient]:
    """Async HTTP client wired to the app with test collaborators.

    The app lifespan does NOT run under ``ASGITransport``, so state fields are
    pre-set here.
    """

    async def _override_get_db() -> AsyncIterator[AsyncSession]:
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_settings] = lambda: settings

    app.state.db_engine = None
    app.state.db_session_factory = session_factory
    app.state.session_directory = SessionDirectory(memory_store)
    app.state.engine = engine
    app.state.title_generator = title_generator
    app.state.registry = registry

    # sse-starlette keeps its exit event on the class; it must not leak
    # across event loops.
    AppStatus.should_exit_event = None

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    await registry.cancel_background()
