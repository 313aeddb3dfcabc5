"""SQLAlchemy ORM models.

These are the single source of truth for the database schema; tables are
created with ``Base.metadata.create_all`` (see ``db.engine.create_tables``).

Two independently keyed families live here and are reconciled only by
``session_id``:

- ``sessions`` + ``session_events``: the event log (owned by the SQL store).
- ``session_meta``: thread / version / title side-table (owned by the
  versioning registry).  Deleting one never touches the other.

Uses SQLAlchemy 2.0 declarative style with ``Mapped`` type annotations.
JSON columns use JSONB on PostgreSQL and plain JSON elsewhere.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import JSON, DateTime, Index, Integer, Text, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Timezone-aware timestamp type for all datetime columns.
TimestampTZ = DateTime(timezone=True)

JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    return datetime.now(tz=UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops the offset on read)."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


class Base(DeclarativeBase):
    """Declarative base with naming convention for constraints."""

    pass


# Apply naming convention to the metadata for deterministic constraint names.
Base.metadata.naming_convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


# -- Event log -----------------------------------------------------------------


class Session(Base):
    __tablename__ = "sessions"
    __table_args__ = (Index("ix_sessions_owner", "app_name", "user_id"),)

    app_name: Mapped[str] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(primary_key=True)
    session_id: Mapped[str] = mapped_column(primary_key=True)
    state: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(TimestampTZ, default=utcnow, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(TimestampTZ, default=utcnow, server_default=func.now())


class SessionEvent(Base):
    __tablename__ = "session_events"
    __table_args__ = (
        UniqueConstraint("event_id", name="uq_session_events_event_id"),
        Index("ix_session_events_session", "app_name", "user_id", "session_id", "seq"),
    )

    # Monotonic surrogate key; append order == seq order.
    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[str]
    app_name: Mapped[str]
    user_id: Mapped[str]
    session_id: Mapped[str]
    author: Mapped[str]
    timestamp: Mapped[datetime | None] = mapped_column(TimestampTZ)
    partial: Mapped[bool] = mapped_column(default=False, server_default="false")
    turn_complete: Mapped[bool] = mapped_column(default=False, server_default="false")
    content: Mapped[str | None] = mapped_column(Text)
    """``Content`` serialised with ``model_dump_json`` (inline bytes as base64)."""


# -- Versioning registry -------------------------------------------------------


class SessionMeta(Base):
    __tablename__ = "session_meta"
    __table_args__ = (Index("ix_session_meta_thread_id", "thread_id"),)

    session_id: Mapped[str] = mapped_column(primary_key=True)
    thread_id: Mapped[str | None]
    version: Mapped[int | None]
    parent_session_id: Mapped[str | None]
    edited_from_message_id: Mapped[str | None]
    title: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(TimestampTZ, default=utcnow, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        TimestampTZ, default=utcnow, server_default=func.now(), onupdate=utcnow
    )


# -- Shares --------------------------------------------------------------------


class SharedConversation(Base):
    __tablename__ = "shared_conversations"
    __table_args__ = (Index("ix_shared_conversations_user_id", "user_id"),)

    share_id: Mapped[str] = mapped_column(primary_key=True)
    app_name: Mapped[str]
    user_id: Mapped[str]
    session_id: Mapped[str]
    expires_at: Mapped[datetime] = mapped_column(TimestampTZ)
    accessed_at: Mapped[datetime | None] = mapped_column(TimestampTZ)
    created_at: Mapped[datetime] = mapped_column(TimestampTZ, default=utcnow, server_default=func.now())
