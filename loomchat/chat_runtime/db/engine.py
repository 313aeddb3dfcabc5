"""Async SQLAlchemy engine and session factory.

PostgreSQL goes through psycopg3 (``postgresql+psycopg://``); local
development and the unit tests use SQLite through aiosqlite
(``sqlite+aiosqlite://``).
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from loomchat.chat_runtime.db.tables import Base


def _is_memory_sqlite(database_url: str) -> bool:
    return database_url.endswith("://") or ":memory:" in database_url


def create_engine(database_url: str, **kwargs: object) -> AsyncEngine:
    """Create an async SQLAlchemy engine with backend-appropriate pool settings.

    For server databases the pool is tuned for a small service:

    - **pool_size=5**: baseline connections kept open.
    - **max_overflow=10**: burst capacity above pool_size.
    - **pool_pre_ping=True**: test connections before checkout to handle
      server-side disconnects.
    - **pool_recycle=3600**: recycle connections after 1 hour.

    SQLite gets no pool tuning; an in-memory SQLite database is pinned to a
    single shared connection (``StaticPool``) so every session sees the
    same data.  All defaults can be overridden via *kwargs*.
    """
    defaults: dict[str, object] = {"echo": False}
    if database_url.startswith("sqlite"):
        if _is_memory_sqlite(database_url):
            defaults["poolclass"] = StaticPool
            defaults["connect_args"] = {"check_same_thread": False}
    else:
        defaults.update(
            {
                "pool_size": 5,
                "max_overflow": 10,
                "pool_pre_ping": True,
                "pool_recycle": 3600,
            }
        )
    defaults.update(kwargs)
    return create_async_engine(database_url, **defaults)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create an async session factory bound to *engine*.

    ``expire_on_commit=False`` so that ORM instances remain usable after
    commit without triggering lazy loads (implicit IO is forbidden in async).
    """
    return async_sessionmaker(engine, expire_on_commit=False)


async def create_tables(engine: AsyncEngine) -> None:
    """Create every table declared on ``Base.metadata`` that does not exist yet."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_tables(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
