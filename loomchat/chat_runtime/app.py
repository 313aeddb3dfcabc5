from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.routing import APIRouter
from loguru import logger
from sse_starlette.sse import AppStatus

from loomchat.chat_runtime.db.engine import create_engine, create_session_factory, create_tables
from loomchat.chat_runtime.execution.runtime import PydanticAIEngine, PydanticAITitleGenerator
from loomchat.chat_runtime.log import setup_logging
from loomchat.chat_runtime.managers.sessions import SessionDirectory
from loomchat.chat_runtime.models.enums import EventStoreKind
from loomchat.chat_runtime.registry import StreamRegistry
from loomchat.chat_runtime.settings import LoomSettings, get_settings
from loomchat.chat_runtime.store import (
    EventLogStore,
    InMemoryEventLogStore,
    LocalEventLogStore,
    SqlEventLogStore,
)

# ---------------------------------------------------------------------------
# Shared singletons initialised during lifespan
# ---------------------------------------------------------------------------
registry = StreamRegistry()


def _create_event_store(settings: LoomSettings, session_factory) -> EventLogStore:
    """Create the event log backend based on configuration."""
    if settings.event_store == EventStoreKind.LOCAL:
        return LocalEventLogStore(settings.data_root)
    if settings.event_store == EventStoreKind.MEMORY:
        logger.warning("In-memory event store: conversations are lost on restart")
        return InMemoryEventLogStore()
    return SqlEventLogStore(session_factory)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    # -- Startup ---------------------------------------------------------------
    settings = get_settings()
    setup_logging(settings.log_level)

    logger.info("Chat Runtime starting (host={}, port={})", settings.host, settings.port)
    logger.info("Event store: {} (default app={})", settings.event_store, settings.app_name)

    # -- Initialise state fields (always present, possibly None) ----------------
    _app.state.db_engine = None
    _app.state.db_session_factory = None
    _app.state.session_directory = None
    _app.state.engine = None
    _app.state.title_generator = None
    _app.state.registry = registry

    # -- Database --------------------------------------------------------------
    engine = create_engine(settings.database_url)
    _app.state.db_engine = engine
    _app.state.db_session_factory = create_session_factory(engine)
    if settings.auto_create_tables:
        await create_tables(engine)
    logger.info("Database: connected ({})", engine.url.get_backend_name())

    # -- Event log -------------------------------------------------------------
    store = _create_event_store(settings, _app.state.db_session_factory)
    _app.state.session_directory = SessionDirectory(store)

    # -- Agent -----------------------------------------------------------------
    if settings.model:
        _app.state.engine = PydanticAIEngine(
            store,
            settings.model,
            agent_name=settings.agent_name,
            system_prompt=settings.system_prompt,
        )
        logger.info("Agent engine: {}", settings.model)
    else:
        logger.warning("LOOM_MODEL not set -- chat streaming disabled")

    title_model = settings.resolve_title_model()
    if title_model:
        _app.state.title_generator = PydanticAITitleGenerator(title_model)

    # -- SSE -------------------------------------------------------------------
    # Let SSE streams complete naturally on shutdown instead of being
    # terminated immediately.
    AppStatus.disable_automatic_graceful_drain()

    yield

    # -- Shutdown --------------------------------------------------------------
    logger.info("Chat Runtime shutting down (active_streams={})", registry.active_count)

    # 1. Stop accepting new streams.
    registry.begin_shutdown()

    # 2. Wait for active streams to complete naturally.
    if registry.active_count > 0:
        timeout = settings.graceful_shutdown_timeout
        logger.info("Waiting for {} active streams to finish (timeout={}s)...", registry.active_count, timeout)
        drained = await registry.wait_until_drained(timeout=timeout)
        if not drained:
            interrupted = registry.interrupt_all()
            logger.warning("Force-interrupted {} streams after timeout", interrupted)
            await registry.wait_until_drained(timeout=5.0)

    # 3. Signal SSE streams to close.  Must happen AFTER the drain so that
    #    every stream can deliver its terminal frame.
    AppStatus.should_exit = True
    logger.info("SSE: signalled streams to close")

    # 4. Titles are best effort; do not hold shutdown for them.
    await registry.cancel_background()

    if _app.state.db_engine is not None:
        await _app.state.db_engine.dispose()
        logger.info("Database: disposed")


app = FastAPI(title="Loomchat Chat Runtime", lifespan=lifespan)

# ---------------------------------------------------------------------------
# API router -- all backend endpoints live under /api
# ---------------------------------------------------------------------------
api = APIRouter(prefix="/api")


@api.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


from loomchat.chat_runtime.routers.chats import router as chats_router  # noqa: E402
from loomchat.chat_runtime.routers.sessions import router as sessions_router  # noqa: E402
from loomchat.chat_runtime.routers.shares import router as shares_router  # noqa: E402

api.include_router(chats_router)
api.include_router(sessions_router)
api.include_router(shares_router)

app.include_router(api)
