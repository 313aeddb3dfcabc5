"""History paginator -- display messages reconstructed from an event log.

Each event is reduced to at most one ``DisplayMessage``:

- text parts concatenate into ``content``; thought parts into ``thought``
- inline image / PDF data and ``function_response.response["images"]``
  become data-URI ``images``
- the role is ``user`` only for user content; everything else, including
  tool results (which the engine reports under the user role), is
  ``assistant``
- events that reduce to nothing are skipped, as is a user message that
  repeats the user message right before it (a client retry)

Pages are taken newest-first: offset 0 is the most recent ``limit`` messages.
"""

from __future__ import annotations

from loomchat.chat_runtime.models.enums import DisplayRole, Role
from loomchat.chat_runtime.models.events import Event
from loomchat.chat_runtime.models.input import PDF_MIME, extract_file_names, to_data_uri
from loomchat.chat_runtime.models.session import DisplayMessage, HistoryPage

DEFAULT_LIMIT = 50
MAX_LIMIT = 100


DEFAULT_IMAGE_MIME = "image/png"


def _is_renderable_mime(mime: str) -> bool:
    return mime.startswith("image/") or mime == PDF_MIME


def to_display_message(event: Event) -> DisplayMessage | None:
    """Reduce one event to a display message, or ``None`` if it has nothing to show."""
    if event.content is None:
        return None

    role = DisplayRole.USER if event.content.role == Role.USER else DisplayRole.ASSISTANT
    text: list[str] = []
    thought: list[str] = []
    images: list[str] = []

    for part in event.content.parts:
        if part.text:
            (thought if part.thought else text).append(part.text)
        if part.inline_data is not None and part.inline_data.data:
            mime = (part.inline_data.mime_type or "").strip() or DEFAULT_IMAGE_MIME
            if _is_renderable_mime(mime):
                images.append(to_data_uri(part.inline_data.data, mime))
        if part.function_response is not None:
            role = DisplayRole.ASSISTANT
            images.extend(part.function_response.images())

    content, file_names = extract_file_names("".join(text))
    thought_text = "".join(thought)
    if not content and not thought_text and not images:
        return None

    return DisplayMessage(
        id=event.id,
        timestamp=event.timestamp,
        role=role,
        content=content,
        thought=thought_text or None,
        images=images,
        file_names=file_names,
    )


def _is_retry_of(message: DisplayMessage, previous: DisplayMessage | None) -> bool:
    return (
        previous is not None
        and message.role == DisplayRole.USER
        and previous.role == DisplayRole.USER
        and message.content == previous.content
        and message.thought == previous.thought
        and message.images == previous.images
        and message.file_names == previous.file_names
    )


def build_display_messages(events: list[Event]) -> list[DisplayMessage]:
    """Walk the log once, oldest first."""
    messages: list[DisplayMessage] = []
    for event in events:
        message = to_display_message(event)
        if message is None:
            continue
        if _is_retry_of(message, messages[-1] if messages else None):
            continue
        messages.append(message)
    return messages


def clamp_window(
    limit: int | None,
    offset: int | None,
    *,
    default_limit: int = DEFAULT_LIMIT,
    max_limit: int = MAX_LIMIT,
) -> tuple[int, int]:
    """Normalise request parameters: non-positive limit -> default, cap at max, offset >= 0."""
    if limit is None or limit <= 0:
        limit = default_limit
    limit = min(limit, max_limit)
    offset = max(offset or 0, 0)
    return limit, offset


def paginate(messages: list[DisplayMessage], limit: int, offset: int) -> HistoryPage:
    """Newest-first window over *messages* (which are oldest-first).

    ``limit`` and ``offset`` must already be clamped (see ``clamp_window``).
    """
    total = len(messages)
    end = total - offset
    start = max(end - limit, 0)
    if offset >= total or start >= end:
        return HistoryPage(messages=[], total=total, limit=limit, offset=offset, has_more=False)
    return HistoryPage(
        messages=messages[start:end],
        total=total,
        limit=limit,
        offset=offset,
        has_more=start > 0,
    )


def page_events(
    events: list[Event],
    limit: int | None = None,
    offset: int | None = None,
    *,
    default_limit: int = DEFAULT_LIMIT,
    max_limit: int = MAX_LIMIT,
) -> HistoryPage:
    limit, offset = clamp_window(limit, offset, default_limit=default_limit, max_limit=max_limit)
    return paginate(build_display_messages(events), limit, offset)
