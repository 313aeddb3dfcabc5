"""FastAPI dependency injection for DB sessions and runtime singletons.

Usage in route handlers::

    @router.get("/list")
    async def list_sessions(db: DbSession, directory: Directory, settings: Settings) -> ...:
        ...

Everything except settings lives on ``app.state`` (populated by the
lifespan, or directly by tests).  Dependencies raise HTTP 503 if the backing
service was not configured.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from loomchat.chat_runtime.execution.engine import AgentEngine
from loomchat.chat_runtime.managers.sessions import SessionDirectory
from loomchat.chat_runtime.managers.titles import TitleGenerator
from loomchat.chat_runtime.registry import StreamRegistry
from loomchat.chat_runtime.settings import LoomSettings, get_settings


async def get_db(request: Request) -> AsyncIterator[AsyncSession]:
    """Yield an async SQLAlchemy session, closing it after the request.

    The caller (manager) is responsible for calling ``session.commit()``
    on success.  If the handler raises, the session is simply closed and the
    implicit transaction is rolled back.
    """
    session_factory = request.app.state.db_session_factory
    if session_factory is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database not configured (LOOM_DATABASE_URL is unset).",
        )
    session: AsyncSession = session_factory()
    try:
        yield session
    finally:
        await session.close()


def get_session_factory(request: Request) -> async_sessionmaker[AsyncSession] | None:
    """Factory for work that outlives the request (background title task)."""
    return request.app.state.db_session_factory


def get_directory(request: Request) -> SessionDirectory:
    directory: SessionDirectory | None = request.app.state.session_directory
    if directory is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Event log store not initialised.",
        )
    return directory


def get_engine(request: Request) -> AgentEngine:
    engine: AgentEngine | None = request.app.state.engine
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Agent engine not configured (LOOM_MODEL is unset).",
        )
    return engine


def get_title_generator(request: Request) -> TitleGenerator | None:
    return request.app.state.title_generator


def get_registry(request: Request) -> StreamRegistry:
    return request.app.state.registry


# -- Annotated type aliases for concise route signatures ---------------------

DbSession = Annotated[AsyncSession, Depends(get_db)]
"""Annotated dependency: async SQLAlchemy session (auto-closed after request)."""

SessionFactory = Annotated[async_sessionmaker[AsyncSession] | None, Depends(get_session_factory)]

Directory = Annotated[SessionDirectory, Depends(get_directory)]
"""Annotated dependency: session directory over the configured event log store."""

Engine = Annotated[AgentEngine, Depends(get_engine)]

Titles = Annotated[TitleGenerator | None, Depends(get_title_generator)]

Registry = Annotated[StreamRegistry, Depends(get_registry)]

Settings = Annotated[LoomSettings, Depends(get_settings)]
