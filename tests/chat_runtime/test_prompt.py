"""Unit tests for system / title prompt rendering."""

from __future__ import annotations

import re

from loomchat.chat_runtime.execution.prompt import render_system_prompt, render_title_prompt


def _render(raw: str, **extra) -> str:
    return render_system_prompt(raw, app_name="travel", user_id="alice", session_id="s1", extra_vars=extra or None)


def test_plain_string_passthrough() -> None:
    assert _render("You are a helpful assistant.") == "You are a helpful assistant."


def test_template_variables() -> None:
    assert _render("{{ app_name }} assistant for {{ user_id }} ({{ session_id }})") == "travel assistant for alice (s1)"


def test_template_date() -> None:
    assert re.fullmatch(r"Today is \d{4}-\d{2}-\d{2}\.", _render("Today is {{ date }}."))


def test_template_conditional() -> None:
    template = "Hi.{% if user_id == 'alice' %} Welcome back.{% endif %}"
    assert _render(template) == "Hi. Welcome back."


def test_extra_vars_override() -> None:
    assert _render("{{ app_name }}", app_name="other") == "other"


def test_title_prompt_contains_message_and_rules() -> None:
    prompt = render_title_prompt("  ¿Dónde comer en Madrid?  ")
    assert '"¿Dónde comer en Madrid?"' in prompt
    assert "same language" in prompt
    assert "Output only the title" in prompt
