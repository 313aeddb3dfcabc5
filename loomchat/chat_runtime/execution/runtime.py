"""pydantic-ai adapters for the engine and title collaborators.

``PydanticAIEngine`` implements the ``AgentEngine`` protocol on top of a
pydantic-ai ``Agent``:

1. Load the session log (missing -> ``SessionNotFoundError``).
2. Append the user's message to the log.
3. Replay prior user / model turns as pydantic-ai message history.
4. Stream text deltas as partial events, then append and yield the final
   aggregated (non-partial) event.

``PydanticAITitleGenerator`` implements ``TitleGenerator`` with a one-shot
agent run over the title prompt.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from pydantic_ai import Agent, RunContext
from pydantic_ai.messages import (
    BinaryContent,
    ModelMessage,
    ModelRequest,
    ModelResponse,
    TextPart,
    UserContent,
    UserPromptPart,
)

from loomchat.chat_runtime.execution.engine import EngineError
from loomchat.chat_runtime.execution.prompt import render_system_prompt, render_title_prompt
from loomchat.chat_runtime.models.enums import Role
from loomchat.chat_runtime.models.events import USER_AUTHOR, Content, Event, Part
from loomchat.chat_runtime.models.session import SessionKey
from loomchat.chat_runtime.store.base import SessionNotFoundError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from pydantic_ai.models import Model

    from loomchat.chat_runtime.execution.engine import RunOptions
    from loomchat.chat_runtime.store.base import EventLogStore

logger = logging.getLogger(__name__)


@dataclass
class PromptVars:
    app_name: str
    user_id: str
    session_id: str


# ---------------------------------------------------------------------------
# Content mapping
# ---------------------------------------------------------------------------


def to_user_content(content: Content) -> list[UserContent]:
    """Map user parts to pydantic-ai prompt content (text + binary)."""
    items: list[UserContent] = []
    for part in content.parts:
        if part.text and not part.thought:
            items.append(part.text)
        if part.inline_data is not None:
            mime = part.inline_data.mime_type or "application/octet-stream"
            items.append(BinaryContent(data=part.inline_data.data, media_type=mime))
    return items


def to_user_prompt(content: Content) -> str | list[UserContent]:
    items = to_user_content(content)
    if all(isinstance(item, str) for item in items):
        return "".join(items)  # type: ignore[arg-type]
    return items


def to_model_messages(events: list[Event]) -> list[ModelMessage]:
    """Replay stored turns as message history.

    Partial chunks, thoughts and tool traffic are not replayed; only what the
    user said and what the model answered.
    """
    messages: list[ModelMessage] = []
    for event in events:
        if event.content is None or event.partial:
            continue
        if any(p.function_call or p.function_response for p in event.content.parts):
            continue
        if event.content.role == Role.USER:
            items = to_user_content(event.content)
            if items:
                messages.append(ModelRequest(parts=[UserPromptPart(content=items)]))
        else:
            text = event.text()
            if text:
                messages.append(ModelResponse(parts=[TextPart(content=text)]))
    return messages


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class PydanticAIEngine:
    """``AgentEngine`` backed by a pydantic-ai agent."""

    def __init__(
        self,
        store: EventLogStore,
        model: Model | str,
        *,
        agent_name: str = "assistant",
        system_prompt: str | None = None,
    ) -> None:
        self._store = store
        self._agent_name = agent_name
        self._agent = Agent(model, name=agent_name, deps_type=PromptVars, defer_model_check=True)

        if system_prompt:

            @self._agent.instructions
            def _instructions(ctx: RunContext[PromptVars]) -> str:
                return render_system_prompt(
                    system_prompt,
                    app_name=ctx.deps.app_name,
                    user_id=ctx.deps.user_id,
                    session_id=ctx.deps.session_id,
                )

    def _model_event(self, text: str, *, partial: bool) -> Event:
        return Event(
            author=self._agent_name,
            partial=partial,
            turn_complete=not partial,
            content=Content(role=Role.MODEL, parts=[Part(text=text)]),
        )

    async def run(
        self,
        user_id: str,
        session_id: str,
        message: Content,
        options: RunOptions,
    ) -> AsyncIterator[Event]:
        key = SessionKey(options.app_name, user_id, session_id)
        session = await self._store.get_session(key)
        if session is None:
            raise SessionNotFoundError(session_id)

        history = to_model_messages(session.events)
        await self._store.append_event(key, Event(author=USER_AUTHOR, content=message))

        chunks: list[str] = []
        deps = PromptVars(app_name=options.app_name, user_id=user_id, session_id=session_id)
        try:
            async with self._agent.run_stream(
                to_user_prompt(message),
                message_history=history or None,
                deps=deps,
            ) as result:
                async for delta in result.stream_text(delta=True, debounce_by=None):
                    if not delta:
                        continue
                    chunks.append(delta)
                    yield self._model_event(delta, partial=True)
        except Exception as exc:
            logger.exception("Model call failed for session %s", session_id)
            msg = "The model request failed. Please try again later."
            raise EngineError(msg) from exc

        final = self._model_event("".join(chunks), partial=False)
        await self._store.append_event(key, final)
        logger.info("Turn completed for session %s (%d chunks)", session_id, len(chunks))
        yield final


# ---------------------------------------------------------------------------
# Titles
# ---------------------------------------------------------------------------


class PydanticAITitleGenerator:
    """``TitleGenerator`` backed by a one-shot pydantic-ai run."""

    def __init__(self, model: Model | str) -> None:
        self._agent = Agent(model, name="title", defer_model_check=True)

    async def generate(self, first_message: str) -> str:
        result = await self._agent.run(render_title_prompt(first_message))
        return str(result.output)
