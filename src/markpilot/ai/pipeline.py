"""Command pipeline turning a natural-language prompt into a document edit.

The pipeline owns at most one in-flight language-model request. Its state
moves ``IDLE -> SENDING -> (IDLE | CANCELLED)``; a submit while ``SENDING`` is
ignored rather than queued, and ``cancel()`` aborts the outstanding request
without adding an assistant turn.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Sequence

from ..chat.message_model import Conversation, Message, ToolType
from ..editor.editor_state import DOCUMENT_SWITCH_META, EditorState
from ..editor.selection_gateway import Selection, SelectionTracker
from ..editor.transaction import Transaction
from .client import ChatClient, ChatCompletionResult
from .errors import CommandError, ErrorCategory, MalformedArgumentsError, classify_exception
from .intent import Intent, classify_intent
from .prompts import FALLBACK_REPLY, build_system_prompt
from .text_search import resolve
from .tools.definitions import (
    DEFAULT_TOOLS,
    FIND_AND_REPLACE_ALL,
    INSERT_TEXT,
    REPHRASE_TEXT,
    REPLACE_TEXT,
    RephraseTextRequest,
    ReplaceTextRequest,
    SearchReplaceRequest,
    parse_tool_call,
    tool_schemas,
)
from .tools.executor import ExecutionResult, ToolExecutor

LOGGER = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 30.0

ClientProvider = Callable[[], "ChatClient | None"]

_TOOL_TYPES: Dict[str, ToolType] = {
    REPLACE_TEXT: "replace",
    INSERT_TEXT: "insert",
    FIND_AND_REPLACE_ALL: "replace_all",
    REPHRASE_TEXT: "replace",
}


class PipelineState(str, Enum):
    IDLE = "idle"
    SENDING = "sending"
    CANCELLED = "cancelled"


@dataclass(slots=True)
class InFlightRequest:
    """Handle on the single outstanding request."""

    request_id: str
    prompt: str
    task: asyncio.Future[ChatCompletionResult] | None = None
    cancel_requested: bool = False


@dataclass(slots=True)
class CommandResult:
    """What happened to one submitted prompt."""

    prompt: str
    intent: Intent
    applied: bool = False
    cancelled: bool = False
    error: ErrorCategory | None = None
    tool: str | None = None
    message: Message | None = None
    execution: ExecutionResult | None = None


class CommandPipeline:
    """Classify, send, parse and execute one command at a time.

    Args:
        editor: Document collaborator the tool calls are applied to.
        client_provider: Returns the chat client to use, or ``None`` when no
            credentials are configured.
        conversation: History that user and assistant turns are appended to.
        tracker: Supplies the persisted selection when the caller does not
            pass one to :meth:`submit`.
        request_timeout: Seconds to wait for the model before giving up.
        tools: Tool names offered to the model.
    """

    def __init__(
        self,
        editor: EditorState,
        client_provider: ClientProvider,
        *,
        conversation: Conversation | None = None,
        tracker: SelectionTracker | None = None,
        executor: ToolExecutor | None = None,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        tools: Sequence[str] = DEFAULT_TOOLS,
    ) -> None:
        self._editor = editor
        self._get_client = client_provider
        self._conversation = conversation or Conversation(editor.document_id)
        self._conversation.bind_document(editor.document_id)
        self._tracker = tracker
        if executor is None:
            persisted = (lambda: tracker.persisted_span) if tracker is not None else None
            executor = ToolExecutor(editor, persisted_provider=persisted)
        self._executor = executor
        self._timeout = request_timeout
        self._tools = tuple(tools)
        self._state = PipelineState.IDLE
        self._in_flight: InFlightRequest | None = None
        self._unsubscribe = editor.subscribe(self._on_transaction)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def is_sending(self) -> bool:
        return self._state is PipelineState.SENDING

    @property
    def is_idle(self) -> bool:
        return self._state is not PipelineState.SENDING

    @property
    def conversation(self) -> Conversation:
        return self._conversation

    @property
    def in_flight(self) -> InFlightRequest | None:
        return self._in_flight

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def submit(
        self,
        prompt: str,
        persisted_selection: Selection | None = None,
        conversation: Conversation | None = None,
    ) -> CommandResult | None:
        """Send ``prompt`` and apply the returned tool call, if any.

        Returns ``None`` when the call is ignored (blank prompt or a request
        already in flight); otherwise a :class:`CommandResult`. Failures are
        reported as assistant messages and never raised.
        """

        text = (prompt or "").strip()
        if not text:
            LOGGER.debug("Ignoring blank prompt")
            return None
        if self.is_sending:
            LOGGER.debug("Ignoring submit while a request is in flight")
            return None

        history = conversation if conversation is not None else self._conversation
        intent = classify_intent(text)
        prior_turns = history.as_context()
        request = InFlightRequest(request_id=f"cmd-{uuid.uuid4().hex[:8]}", prompt=text)
        self._state = PipelineState.SENDING
        self._in_flight = request
        history.add_user(text, intent=intent.value)
        document_id = self._editor.document_id
        selection = persisted_selection
        if selection is None and self._tracker is not None:
            selection = self._tracker.context_selection()

        LOGGER.debug("Submitting %s (intent=%s, prompt_length=%d)", request.request_id, intent.value, len(text))
        try:
            response = await self._request(request, text, prior_turns, selection)
        except asyncio.CancelledError:
            if not request.cancel_requested:
                self._finish(request, PipelineState.IDLE)
                raise
            LOGGER.debug("Request %s cancelled", request.request_id)
            self._finish(request, PipelineState.CANCELLED)
            return CommandResult(prompt=text, intent=intent, cancelled=True, error=ErrorCategory.CANCELLED)
        except Exception as exc:
            category = classify_exception(exc)
            LOGGER.warning("Request %s failed (%s): %s", request.request_id, category.value, exc)
            message = history.add_assistant(category.message, is_error=True)
            self._finish(request, PipelineState.IDLE)
            return CommandResult(prompt=text, intent=intent, error=category, message=message)

        if request.cancel_requested:
            LOGGER.debug("Discarding response for cancelled request %s", request.request_id)
            self._finish(request, PipelineState.CANCELLED)
            return CommandResult(prompt=text, intent=intent, cancelled=True, error=ErrorCategory.CANCELLED)
        if self._editor.document_id != document_id:
            LOGGER.info("Dropping response for %s; active document changed", request.request_id)
            self._finish(request, PipelineState.CANCELLED)
            return CommandResult(prompt=text, intent=intent, cancelled=True, error=ErrorCategory.CANCELLED)

        try:
            return self._handle_response(text, intent, response, history, persisted_selection)
        finally:
            self._finish(request, PipelineState.IDLE)

    def cancel(self) -> bool:
        """Abort the in-flight request. Returns ``False`` when nothing is sending."""

        request = self._in_flight
        if not self.is_sending or request is None:
            LOGGER.debug("cancel() called with no request in flight")
            return False
        request.cancel_requested = True
        if request.task is not None and not request.task.done():
            request.task.cancel()
        self._state = PipelineState.CANCELLED
        LOGGER.debug("Cancelling %s", request.request_id)
        return True

    def close(self) -> None:
        self._unsubscribe()

    # ------------------------------------------------------------------
    # Internal Helpers
    # ------------------------------------------------------------------

    async def _request(
        self,
        request: InFlightRequest,
        prompt: str,
        prior_turns: Sequence[Mapping[str, str]],
        selection: Selection | None,
    ) -> ChatCompletionResult:
        client = self._get_client()
        if client is None:
            raise CommandError(ErrorCategory.UNAUTHORIZED, "No API key configured")
        messages = self._build_messages(prompt, prior_turns, selection)
        request.task = asyncio.ensure_future(
            client.complete_chat(messages, tools=tool_schemas(self._tools), tool_choice="auto")
        )
        return await asyncio.wait_for(request.task, timeout=self._timeout)

    def _build_messages(
        self,
        prompt: str,
        prior_turns: Sequence[Mapping[str, str]],
        selection: Selection | None,
    ) -> List[Dict[str, Any]]:
        doc = self._editor.doc
        selected_text = selection.text if selection is not None and not selection.is_empty else None
        system = build_system_prompt(
            doc.plain_text(),
            word_count=doc.word_count(),
            selected_text=selected_text,
            tools=self._tools,
        )
        messages: List[Dict[str, Any]] = [{"role": "system", "content": system}]
        messages.extend({"role": turn["role"], "content": turn["content"]} for turn in prior_turns)
        messages.append({"role": "user", "content": prompt})
        return messages

    def _handle_response(
        self,
        prompt: str,
        intent: Intent,
        response: ChatCompletionResult,
        history: Conversation,
        selection: Selection | None = None,
    ) -> CommandResult:
        tool_call = response.tool_call
        if tool_call is None:
            reply = (response.text or "").strip() or FALLBACK_REPLY
            message = history.add_assistant(reply)
            return CommandResult(prompt=prompt, intent=intent, message=message)

        tool_type = _TOOL_TYPES.get(tool_call.name)
        try:
            parsed = parse_tool_call(tool_call.name, tool_call.arguments)
        except MalformedArgumentsError as exc:
            LOGGER.info("Malformed %s arguments: %s", tool_call.name, exc.detail)
            return self._fail(prompt, intent, history, ErrorCategory.MALFORMED_ARGUMENTS, tool_call.name)

        if isinstance(parsed, SearchReplaceRequest):
            span = resolve(self._editor.doc, parsed.search_text)
            if span is None:
                LOGGER.info("replaceText target not found: %r", parsed.search_text)
                return self._fail(prompt, intent, history, ErrorCategory.NOT_FOUND, tool_call.name)
            parsed = ReplaceTextRequest(span.start, span.end, parsed.new_text)
        if isinstance(parsed, RephraseTextRequest) and parsed.span is None and selection is not None:
            parsed = replace(parsed, span=selection.span)

        result = self._executor.execute_detailed(parsed)
        if not result.applied:
            category = result.error or ErrorCategory.UNKNOWN
            outcome = self._fail(prompt, intent, history, category, tool_call.name)
            outcome.execution = result
            return outcome
        message = history.add_assistant(_success_message(tool_call.name, result), tool_type=tool_type)
        return CommandResult(
            prompt=prompt,
            intent=intent,
            applied=True,
            tool=tool_call.name,
            message=message,
            execution=result,
        )

    def _fail(
        self,
        prompt: str,
        intent: Intent,
        history: Conversation,
        category: ErrorCategory,
        tool: str | None,
    ) -> CommandResult:
        message = history.add_assistant(category.message, is_error=True)
        return CommandResult(prompt=prompt, intent=intent, error=category, tool=tool, message=message)

    def _finish(self, request: InFlightRequest, state: PipelineState) -> None:
        # a request cancelled and superseded by a newer submit must not touch its successor
        if self._in_flight is not request:
            return
        self._in_flight = None
        if self._state is PipelineState.SENDING or state is PipelineState.CANCELLED:
            self._state = state

    def _on_transaction(self, tr: Transaction, editor: EditorState) -> None:
        if tr.get_meta(DOCUMENT_SWITCH_META):
            self._conversation.bind_document(editor.document_id)


def _success_message(tool: str, result: ExecutionResult) -> str:
    if tool == INSERT_TEXT:
        return "Inserted the new content into the document."
    if tool == REPHRASE_TEXT:
        return "Rephrased the selected text."
    if tool == FIND_AND_REPLACE_ALL:
        noun = "occurrence" if result.replacements == 1 else "occurrences"
        return f"Replaced {result.replacements} {noun}."
    return "Replaced the text in the document."


__all__ = [
    "CommandPipeline",
    "CommandResult",
    "DEFAULT_REQUEST_TIMEOUT",
    "InFlightRequest",
    "PipelineState",
]
