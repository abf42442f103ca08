"""Tests for the command system prompt."""

from markpilot.ai.prompts import FALLBACK_REPLY, build_system_prompt
from markpilot.ai.tools.definitions import DEFAULT_TOOLS, FIND_AND_REPLACE_ALL


def test_prompt_embeds_document_and_word_count():
    prompt = build_system_prompt("Hello brave world")

    assert "(3 words, rendered text)" in prompt
    assert "Hello brave world" in prompt
    assert "**Currently Selected Text**: None" in prompt


def test_prompt_quotes_selection():
    prompt = build_system_prompt("Hello brave world", selected_text="brave")

    assert '**Currently Selected Text**: "brave"' in prompt


def test_prompt_lists_only_enabled_tools():
    default_prompt = build_system_prompt("text", tools=DEFAULT_TOOLS)
    extended = build_system_prompt("text", tools=[*DEFAULT_TOOLS, FIND_AND_REPLACE_ALL])

    assert "**replaceText**" in default_prompt
    assert "**insertText**" in default_prompt
    assert "**findAndReplaceAll**" not in default_prompt
    assert "**findAndReplaceAll**" in extended


def test_explicit_word_count_wins():
    prompt = build_system_prompt("one two", word_count=42)

    assert "(42 words" in prompt


def test_fallback_reply_is_conversational():
    assert FALLBACK_REPLY.endswith("?")
