"""Prompt rendering with Jinja2 template support.

Two prompts are rendered here:

- the agent's system prompt (``LOOM_SYSTEM_PROMPT``), which may contain
  Jinja2 syntax;
- the title prompt used to name a conversation after its first message.

Template variables available to the system prompt:

- ``app_name``   : str -- application the session belongs to
- ``user_id``    : str -- end user
- ``session_id`` : str -- current session
- ``date``       : str -- current date (YYYY-MM-DD)

Example template::

    You are the {{ app_name }} assistant. Today is {{ date }}.
"""

from __future__ import annotations

from datetime import UTC, datetime

import jinja2

_env = jinja2.Environment(autoescape=False, keep_trailing_newline=False)  # noqa: S701

TITLE_PROMPT_TEMPLATE = _env.from_string(
    'Generate a concise title for this conversation based on the user\'s message: "{{ message }}".\n'
    "Rules:\n"
    "1. Use the same language as the user's message.\n"
    "2. Do NOT use any Markdown formatting (no bold, no italics).\n"
    "3. Do NOT use quotes in the title.\n"
    "4. Output only the title text."
)


def render_title_prompt(first_message: str) -> str:
    return TITLE_PROMPT_TEMPLATE.render(message=first_message.strip())


def render_system_prompt(
    raw: str,
    *,
    app_name: str,
    user_id: str,
    session_id: str,
    extra_vars: dict[str, object] | None = None,
) -> str:
    """Render the system prompt template with session-derived variables.

    If the template contains no Jinja2 syntax, the original string is
    returned unchanged.
    """
    if "{{" not in raw and "{%" not in raw:
        return raw

    template_vars: dict[str, object] = {
        "app_name": app_name,
        "user_id": user_id,
        "session_id": session_id,
        "date": datetime.now(tz=UTC).strftime("%Y-%m-%d"),
    }
    if extra_vars:
        template_vars.update(extra_vars)

    return _env.from_string(raw).render(**template_vars)
