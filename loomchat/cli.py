import click


@click.group()
def main() -> None:
    """Loomchat - Streaming chat backend with branching conversations."""


@main.command()
@click.option("--host", default=None, help="Bind host (default: from LOOM_HOST or 0.0.0.0).")
@click.option("--port", default=None, type=int, help="Bind port (default: from LOOM_PORT or 8000).")
@click.option("--reload", is_flag=True, default=False, help="Enable auto-reload for development.")
def serve(host: str | None, port: int | None, reload: bool) -> None:
    """Start the Chat Runtime server."""
    import uvicorn

    from loomchat.chat_runtime.settings import LoomSettings

    settings = LoomSettings()

    uvicorn.run(
        "loomchat.chat_runtime.app:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
        log_level="warning",  # uvicorn's own logging is intercepted by loguru
        # Drain timeout plus a buffer for post-drain cleanup (SSE signal,
        # background task cancellation, DB dispose).
        timeout_graceful_shutdown=settings.graceful_shutdown_timeout + 60,
    )


# ---------------------------------------------------------------------------
# Database management
# ---------------------------------------------------------------------------


def _run_on_engine(action) -> None:
    import asyncio

    from loomchat.chat_runtime.db.engine import create_engine
    from loomchat.chat_runtime.log import setup_logging
    from loomchat.chat_runtime.settings import LoomSettings

    settings = LoomSettings()
    setup_logging(settings.log_level)

    async def _run() -> None:
        engine = create_engine(settings.database_url)
        try:
            await action(engine)
        finally:
            await engine.dispose()

    asyncio.run(_run())


@main.group()
def db() -> None:
    """Database management commands."""


@db.command()
def init() -> None:
    """Create any missing tables."""
    from loomchat.chat_runtime.db.engine import create_tables

    _run_on_engine(create_tables)
    click.echo("Database tables created.")


@db.command()
@click.confirmation_option(prompt="Drop every loomchat table?")
def drop() -> None:
    """Drop all tables.  Conversations stored in the database are lost."""
    from loomchat.chat_runtime.db.engine import drop_tables

    _run_on_engine(drop_tables)
    click.echo("Database tables dropped.")


if __name__ == "__main__":
    main()
