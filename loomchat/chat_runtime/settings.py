"""Service configuration loaded from LOOM_* environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict

from loomchat.chat_runtime.models.enums import EventStoreKind


class LoomSettings(BaseSettings):
    """Loomchat Chat Runtime settings.

    All fields are read from environment variables with the ``LOOM_`` prefix.
    For example, ``LOOM_LOG_LEVEL=DEBUG`` maps to ``log_level``.

    LLM provider keys (OPENAI_API_KEY, ANTHROPIC_API_KEY, ...) are **not**
    managed here -- they are read directly by pydantic-ai's model providers.
    """

    model_config = SettingsConfigDict(
        env_prefix="LOOM_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # -- Logging ---------------------------------------------------------------
    log_level: str = "INFO"

    # -- Infrastructure --------------------------------------------------------
    database_url: str = "sqlite+aiosqlite:///./loomchat.db"
    """SQLAlchemy async URL.  Use ``postgresql+psycopg://...`` in production."""

    auto_create_tables: bool = True
    """Create missing tables at startup (there is no migration tooling)."""

    # -- Event log -------------------------------------------------------------
    event_store: EventStoreKind = EventStoreKind.SQL

    data_root: str = "./data"
    """Root directory for the ``local`` event store."""

    app_name: str = "assistant"
    """Application name used when a request does not name one."""

    # -- Agent -----------------------------------------------------------------
    model: str | None = None
    """pydantic-ai model string, e.g. ``openai:gpt-4o``.  Chat is disabled when unset."""

    title_model: str | None = None
    """Model used for conversation titles.  Falls back to ``model``."""

    system_prompt: str | None = None
    agent_name: str = "assistant"

    # -- Streaming -------------------------------------------------------------
    heartbeat_interval: float = 30.0

    # -- History ---------------------------------------------------------------
    history_default_limit: int = 50
    history_max_limit: int = 100

    # -- Shares ----------------------------------------------------------------
    share_default_expiry_days: int = 7
    share_max_expiry_days: int = 30

    # -- Server ----------------------------------------------------------------
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8000
    graceful_shutdown_timeout: int = 300
    """Seconds to wait for live chat streams to finish during shutdown.

    After this timeout, remaining streams are force-interrupted.
    Note: uvicorn's ``--timeout-graceful-shutdown`` must be >= this value
    for the wait to be effective.
    """

    # -- Helpers ---------------------------------------------------------------

    def resolve_title_model(self) -> str | None:
        return self.title_model or self.model


def get_settings() -> LoomSettings:
    """Return a cached settings instance.

    Reads from environment variables and ``.env`` on first call, then returns
    the same object.  Call ``_get_settings_cached.cache_clear()`` in tests to
    force a re-read after overriding env vars.
    """
    return _get_settings_cached()


def _get_settings_cached() -> LoomSettings:
    """Inner function wrapped by lru_cache (allows type-safe cache_clear)."""
    return LoomSettings()


# Apply lru_cache at runtime so the function is only called once.
from functools import lru_cache  # noqa: E402

_get_settings_cached = lru_cache(maxsize=1)(_get_settings_cached)
