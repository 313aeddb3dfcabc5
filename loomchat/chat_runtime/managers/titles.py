"""Conversation titles, generated once per session in the background.

``ensure_title`` is idempotent: an existing title short-circuits, otherwise
one title is generated and written.  Two concurrent first messages may both
generate a title; the later write wins.

The task runs detached from the request (see ``StreamRegistry.spawn``), so
it opens its own DB session from the factory and never raises.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

from loguru import logger

from loomchat.chat_runtime.managers import versions

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

MAX_TITLE_LENGTH = 100
_STRIP_CHARS = " \t\r\n\"'`*#“”‘’「」"


@runtime_checkable
class TitleGenerator(Protocol):
    async def generate(self, first_message: str) -> str:
        """Return a short title for a conversation opening with *first_message*."""
        ...


def clean_title(raw: str) -> str:
    """First non-empty line without quotes or markdown decoration, capped in length."""
    line = next((ln for ln in raw.splitlines() if ln.strip()), "")
    return line.strip(_STRIP_CHARS)[:MAX_TITLE_LENGTH].strip()


async def ensure_title(
    session_factory: async_sessionmaker[AsyncSession],
    generator: TitleGenerator,
    session_id: str,
    first_message: str,
) -> str | None:
    """Generate and persist a title unless the session already has one.

    Returns the title now stored, or ``None`` when generation failed.
    """
    try:
        async with session_factory() as db:
            existing = await versions.get_title(db, session_id)
        if existing:
            return existing

        title = clean_title(await generator.generate(first_message))
        if not title:
            logger.warning("Title generation returned nothing for session {}", session_id)
            return None

        async with session_factory() as db:
            await versions.set_title(db, session_id, title)
    except Exception:
        logger.exception("Title generation failed for session {}", session_id)
        return None

    logger.info("Title set for session {}: {}", session_id, title)
    return title
