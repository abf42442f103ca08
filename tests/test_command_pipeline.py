"""Tests for the command pipeline state machine and tool dispatch."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Iterable, Mapping

import httpx
import openai
import pytest

from markpilot.ai.client import ChatCompletionResult, ParsedToolCall
from markpilot.ai.errors import ErrorCategory
from markpilot.ai.intent import Intent
from markpilot.ai.pipeline import CommandPipeline, PipelineState
from markpilot.ai.prompts import FALLBACK_REPLY
from markpilot.chat.message_model import Conversation
from markpilot.documents.ranges import Span
from markpilot.editor.document_model import Document
from markpilot.editor.editor_state import EditorState
from markpilot.editor.selection_gateway import Selection, SelectionTracker


class _ScriptedClient:
    """Returns (or raises) the queued outcomes in order and records each request."""

    def __init__(self, *outcomes: Any) -> None:
        self._outcomes = list(outcomes)
        self.calls: list[dict[str, Any]] = []

    async def complete_chat(
        self,
        messages: Iterable[Mapping[str, Any]],
        *,
        tools: Any = None,
        tool_choice: Any = None,
    ) -> ChatCompletionResult:
        self.calls.append({"messages": list(messages), "tools": tools, "tool_choice": tool_choice})
        outcome = self._outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class _BlockingClient:
    """Waits until released; records whether its request was cancelled."""

    def __init__(self, result: ChatCompletionResult | None = None) -> None:
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        self.cancelled = False
        self.calls = 0
        self._result = result or ChatCompletionResult(text="late reply")

    async def complete_chat(self, messages: Any, *, tools: Any = None, tool_choice: Any = None) -> ChatCompletionResult:
        self.calls += 1
        self.started.set()
        try:
            await self.release.wait()
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        return self._result


def _tool_reply(name: str, arguments: Mapping[str, Any] | str) -> ChatCompletionResult:
    raw = arguments if isinstance(arguments, str) else json.dumps(arguments)
    return ChatCompletionResult(tool_calls=[ParsedToolCall(name=name, arguments=raw)], finish_reason="tool_calls")


@pytest.fixture
def editor() -> EditorState:
    return EditorState(Document.from_inline_text("Hello world"), document_id="doc-1")


# ---------------------------------------------------------------------------
# Replies without tool calls
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_text_reply_is_appended_as_assistant_turn(editor: EditorState) -> None:
    client = _ScriptedClient(ChatCompletionResult(text="Try a shorter opening."))
    pipeline = CommandPipeline(editor, lambda: client)

    result = await pipeline.submit("What could be better?")

    assert result is not None
    assert result.intent is Intent.DISCUSSION
    assert not result.applied
    assert [(m.role, m.content) for m in pipeline.conversation] == [
        ("user", "What could be better?"),
        ("assistant", "Try a shorter opening."),
    ]
    assert pipeline.state is PipelineState.IDLE


@pytest.mark.asyncio
async def test_empty_reply_uses_fallback(editor: EditorState) -> None:
    pipeline = CommandPipeline(editor, lambda: _ScriptedClient(ChatCompletionResult(text="  ")))

    await pipeline.submit("hmm")

    assert pipeline.conversation.last is not None
    assert pipeline.conversation.last.content == FALLBACK_REPLY


@pytest.mark.asyncio
async def test_blank_prompt_is_ignored(editor: EditorState) -> None:
    client = _ScriptedClient()
    pipeline = CommandPipeline(editor, lambda: client)

    assert await pipeline.submit("   ") is None
    assert len(pipeline.conversation) == 0
    assert client.calls == []


# ---------------------------------------------------------------------------
# Request payload
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_request_includes_document_selection_history_and_tools() -> None:
    editor = EditorState(Document.from_inline_text("The quick brown fox"), document_id="doc-1")
    tracker = SelectionTracker(editor)
    tracker.set_persisted(4, 9)
    client = _ScriptedClient(ChatCompletionResult(text="first"), ChatCompletionResult(text="second"))
    pipeline = CommandPipeline(editor, lambda: client, tracker=tracker)

    await pipeline.submit("What does this mean?")
    await pipeline.submit("And this?")

    first, second = client.calls
    system = first["messages"][0]
    assert system["role"] == "system"
    assert "The quick brown fox" in system["content"]
    assert '**Currently Selected Text**: "quick"' in system["content"]
    assert [tool["function"]["name"] for tool in first["tools"]] == ["replaceText", "insertText"]
    assert first["tool_choice"] == "auto"
    assert [(m["role"], m["content"]) for m in second["messages"][1:]] == [
        ("user", "What does this mean?"),
        ("assistant", "first"),
        ("user", "And this?"),
    ]


@pytest.mark.asyncio
async def test_explicit_selection_and_conversation_override_defaults(editor: EditorState) -> None:
    client = _ScriptedClient(ChatCompletionResult(text="ok"))
    pipeline = CommandPipeline(editor, lambda: client)
    tracker = SelectionTracker(editor)
    tracker.set_persisted(6, 11)
    other = Conversation("doc-1")

    await pipeline.submit("Explain this", persisted_selection=tracker.persisted, conversation=other)

    assert '**Currently Selected Text**: "world"' in client.calls[0]["messages"][0]["content"]
    assert len(other) == 2
    assert len(pipeline.conversation) == 0


# ---------------------------------------------------------------------------
# Tool calls
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_replace_text_tool_call_edits_document(editor: EditorState) -> None:
    client = _ScriptedClient(_tool_reply("replaceText", {"searchText": "world", "newText": "there"}))
    pipeline = CommandPipeline(editor, lambda: client)

    result = await pipeline.submit("Change world to there")

    assert result is not None and result.applied
    assert result.intent is Intent.EDIT
    assert result.tool == "replaceText"
    assert editor.plain_text() == "Hello there"
    last = pipeline.conversation.last
    assert last is not None and last.tool_type == "replace" and not last.is_error


@pytest.mark.asyncio
async def test_replace_target_not_found_reports_and_leaves_document(editor: EditorState) -> None:
    client = _ScriptedClient(_tool_reply("replaceText", {"searchText": "moon", "newText": "sun"}))
    pipeline = CommandPipeline(editor, lambda: client)

    result = await pipeline.submit("Replace moon with sun")

    assert result is not None and result.error is ErrorCategory.NOT_FOUND
    assert editor.plain_text() == "Hello world"
    last = pipeline.conversation.last
    assert last is not None and last.is_error
    assert last.content == ErrorCategory.NOT_FOUND.message


@pytest.mark.asyncio
async def test_malformed_tool_arguments_report_parse_failure(editor: EditorState) -> None:
    client = _ScriptedClient(_tool_reply("insertText", "{not json"))
    pipeline = CommandPipeline(editor, lambda: client)

    result = await pipeline.submit("Add a line")

    assert result is not None and result.error is ErrorCategory.MALFORMED_ARGUMENTS
    assert pipeline.conversation.last is not None
    assert pipeline.conversation.last.content == "Failed to parse AI response. Please try again."
    assert editor.version_id == 1


@pytest.mark.asyncio
async def test_insert_tool_call_after_anchor() -> None:
    editor = EditorState(Document.from_paragraphs(["Intro", "Conclusion"]), document_id="doc-1")
    client = _ScriptedClient(
        _tool_reply(
            "insertText",
            {"position": {"type": "relative", "anchor": "Conclusion", "placement": "after"}, "content": " Fin."},
        )
    )
    pipeline = CommandPipeline(editor, lambda: client)

    result = await pipeline.submit("Add a closing word")

    assert result is not None and result.applied
    assert editor.plain_text() == "Intro\n\nConclusion Fin."
    assert pipeline.conversation.last is not None
    assert pipeline.conversation.last.tool_type == "insert"


@pytest.mark.asyncio
async def test_out_of_range_edit_is_reported(editor: EditorState) -> None:
    client = _ScriptedClient(_tool_reply("replaceText", {"from": 6, "to": 99, "newText": "x"}))
    pipeline = CommandPipeline(editor, lambda: client)

    result = await pipeline.submit("Replace the end")

    assert result is not None and result.error is ErrorCategory.OUT_OF_BOUNDS
    assert result.execution is not None and not result.execution.applied
    assert editor.plain_text() == "Hello world"


@pytest.mark.asyncio
async def test_rephrase_rewrites_tracked_selection(editor: EditorState) -> None:
    tracker = SelectionTracker(editor)
    tracker.set_persisted(6, 11)
    client = _ScriptedClient(_tool_reply("rephraseText", {"newText": "there", "style": "simpler"}))
    pipeline = CommandPipeline(
        editor, lambda: client, tracker=tracker, tools=["replaceText", "insertText", "rephraseText"]
    )

    result = await pipeline.submit("Make this simpler")

    assert result is not None and result.applied
    assert result.tool == "rephraseText"
    assert editor.plain_text() == "Hello there"
    assert [tool["function"]["name"] for tool in client.calls[0]["tools"]][-1] == "rephraseText"
    last = pipeline.conversation.last
    assert last is not None and last.tool_type == "replace"
    assert last.content == "Rephrased the selected text."


@pytest.mark.asyncio
async def test_rephrase_uses_selection_passed_to_submit(editor: EditorState) -> None:
    client = _ScriptedClient(_tool_reply("rephraseText", {"newText": "Greetings"}))
    pipeline = CommandPipeline(editor, lambda: client, tools=["rephraseText"])
    selection = Selection.from_span(editor.doc, Span(0, 5))

    result = await pipeline.submit("Rewrite this", persisted_selection=selection)

    assert result is not None and result.applied
    assert editor.plain_text() == "Greetings world"


@pytest.mark.asyncio
async def test_rephrase_without_selection_reports_not_found(editor: EditorState) -> None:
    client = _ScriptedClient(_tool_reply("rephraseText", {"newText": "Greetings"}))
    pipeline = CommandPipeline(editor, lambda: client, tools=["rephraseText"])

    result = await pipeline.submit("Rewrite this")

    assert result is not None and result.error is ErrorCategory.NOT_FOUND
    assert editor.plain_text() == "Hello world"
    assert pipeline.conversation.last is not None
    assert pipeline.conversation.last.content == ErrorCategory.NOT_FOUND.message


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_missing_client_reports_unauthorized(editor: EditorState) -> None:
    pipeline = CommandPipeline(editor, lambda: None)

    result = await pipeline.submit("Fix the typo")

    assert result is not None and result.error is ErrorCategory.UNAUTHORIZED
    assert pipeline.conversation.last is not None
    assert pipeline.conversation.last.content == ErrorCategory.UNAUTHORIZED.message
    assert pipeline.is_idle


@pytest.mark.asyncio
async def test_service_errors_are_categorized(editor: EditorState) -> None:
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    error = openai.RateLimitError("slow down", response=httpx.Response(429, request=request), body=None)
    pipeline = CommandPipeline(editor, lambda: _ScriptedClient(error))

    result = await pipeline.submit("Fix the typo")

    assert result is not None and result.error is ErrorCategory.RATE_LIMITED
    assert pipeline.conversation.last is not None
    assert pipeline.conversation.last.content == "Rate limit exceeded. Please try again in a moment."
    assert pipeline.state is PipelineState.IDLE


@pytest.mark.asyncio
async def test_timeout_reports_timeout_without_mutation(editor: EditorState) -> None:
    client = _BlockingClient(_tool_reply("replaceText", {"searchText": "world", "newText": "there"}))
    pipeline = CommandPipeline(editor, lambda: client, request_timeout=0.05)

    result = await pipeline.submit("Change world")

    assert result is not None and result.error is ErrorCategory.TIMEOUT
    assert client.cancelled
    assert editor.plain_text() == "Hello world"
    assert [m.role for m in pipeline.conversation] == ["user", "assistant"]
    assert pipeline.conversation.last is not None
    assert pipeline.conversation.last.content == ErrorCategory.TIMEOUT.message
    assert pipeline.is_idle


# ---------------------------------------------------------------------------
# Concurrency and cancellation
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_submit_while_sending_is_a_no_op(editor: EditorState) -> None:
    client = _BlockingClient()
    pipeline = CommandPipeline(editor, lambda: client)

    first = asyncio.create_task(pipeline.submit("First question?"))
    await client.started.wait()

    assert pipeline.is_sending
    assert await pipeline.submit("Second question?") is None
    assert [m.content for m in pipeline.conversation] == ["First question?"]

    client.release.set()
    result = await first
    assert result is not None and result.error is None
    assert [m.role for m in pipeline.conversation] == ["user", "assistant"]


@pytest.mark.asyncio
async def test_cancel_keeps_user_turn_and_adds_no_reply(editor: EditorState) -> None:
    client = _BlockingClient(_tool_reply("replaceText", {"searchText": "world", "newText": "there"}))
    pipeline = CommandPipeline(editor, lambda: client)

    task = asyncio.create_task(pipeline.submit("Change world"))
    await client.started.wait()

    assert pipeline.cancel() is True
    result = await task

    assert result is not None and result.cancelled
    assert client.cancelled
    assert [m.role for m in pipeline.conversation] == ["user"]
    assert editor.plain_text() == "Hello world"
    assert pipeline.state is PipelineState.CANCELLED
    assert pipeline.is_idle
    assert pipeline.in_flight is None


@pytest.mark.asyncio
async def test_cancel_without_request_returns_false(editor: EditorState) -> None:
    pipeline = CommandPipeline(editor, lambda: None)

    assert pipeline.cancel() is False


@pytest.mark.asyncio
async def test_pipeline_accepts_new_prompt_after_cancel(editor: EditorState) -> None:
    blocking = _BlockingClient()
    scripted = _ScriptedClient(ChatCompletionResult(text="fresh"))
    clients = [blocking, scripted]
    pipeline = CommandPipeline(editor, lambda: clients[0])

    task = asyncio.create_task(pipeline.submit("First?"))
    await blocking.started.wait()
    pipeline.cancel()
    await task
    clients.pop(0)

    result = await pipeline.submit("Second?")

    assert result is not None and not result.cancelled
    assert pipeline.state is PipelineState.IDLE
    assert [m.content for m in pipeline.conversation] == ["First?", "Second?", "fresh"]


@pytest.mark.asyncio
async def test_response_after_document_switch_is_dropped(editor: EditorState) -> None:
    client = _BlockingClient(_tool_reply("replaceText", {"searchText": "world", "newText": "there"}))
    pipeline = CommandPipeline(editor, lambda: client)

    task = asyncio.create_task(pipeline.submit("Change world"))
    await client.started.wait()
    editor.load(Document.from_inline_text("Another world"), document_id="doc-2")
    client.release.set()
    result = await task

    assert result is not None and result.cancelled
    assert editor.plain_text() == "Another world"
    assert len(pipeline.conversation) == 0
    assert pipeline.conversation.document_id == "doc-2"


@pytest.mark.asyncio
async def test_closed_pipeline_no_longer_tracks_document_switches(editor: EditorState) -> None:
    pipeline = CommandPipeline(editor, lambda: _ScriptedClient(ChatCompletionResult(text="ok")))
    await pipeline.submit("Hello?")
    pipeline.close()

    editor.load(Document.from_inline_text("New"), document_id="doc-2")

    assert len(pipeline.conversation) == 2


@pytest.mark.asyncio
async def test_cancelled_request_unwinding_late_keeps_newer_request_in_flight(editor: EditorState) -> None:
    client = _BlockingClient()
    pipeline = CommandPipeline(editor, lambda: client)

    first = asyncio.create_task(pipeline.submit("First?"))
    await client.started.wait()
    assert pipeline.cancel() is True
    second = asyncio.create_task(pipeline.submit("Second?"))
    first_result = await first
    await asyncio.sleep(0.01)

    assert first_result is not None and first_result.cancelled
    assert pipeline.is_sending
    assert pipeline.in_flight is not None and pipeline.in_flight.prompt == "Second?"
    assert await pipeline.submit("Third?") is None
    assert client.calls == 2

    client.release.set()
    result = await second

    assert result is not None and not result.cancelled
    assert pipeline.state is PipelineState.IDLE
    assert pipeline.in_flight is None
    assert [m.content for m in pipeline.conversation] == ["First?", "Second?", "late reply"]
