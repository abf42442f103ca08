"""Apply validated tool requests to the editor as atomic transactions."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from ...documents.ranges import Span
from ...editor.document_model import Fragment
from ...editor.editor_state import EditorState
from ...editor.markdown import markdown_to_fragment
from ...editor.transaction import Transaction
from ..errors import ErrorCategory, MalformedArgumentsError
from ..text_search import resolve
from .definitions import (
    FIND_AND_REPLACE_ALL,
    INSERT_TEXT,
    REPHRASE_TEXT,
    REPLACE_TEXT,
    AbsolutePosition,
    FindReplaceRequest,
    InsertTextRequest,
    PositionStrategy,
    RelativePosition,
    RephraseTextRequest,
    ReplaceTextRequest,
    SearchReplaceRequest,
    ToolCall,
    ToolRequest,
    parse_tool_call,
)
from .find_replace import find_all_matches, replace_all_matches

LOGGER = logging.getLogger(__name__)

ContentConverter = Callable[[str], Fragment]
SelectionProvider = Callable[[], Span]
PersistedProvider = Callable[[], Span | None]


@dataclass(slots=True, frozen=True)
class ExecutionResult:
    """Outcome of a single tool execution.

    ``span`` covers the inserted content after the change; ``replacements``
    counts edits made by find-and-replace-all.
    """

    applied: bool
    tool: str
    error: ErrorCategory | None = None
    detail: str = ""
    span: Span | None = None
    replacements: int = 0

    @property
    def message(self) -> str:
        return self.error.message if self.error is not None else ""

    @classmethod
    def rejected(cls, tool: str, error: ErrorCategory, detail: str = "") -> ExecutionResult:
        return cls(applied=False, tool=tool, error=error, detail=detail)


class ToolExecutor:
    """Runs replace, insert, rephrase and find-replace requests against an :class:`EditorState`.

    Validation happens entirely before the transaction is dispatched, so a
    rejected call leaves the document untouched. Nothing here raises for bad
    input; rejections come back as :class:`ExecutionResult` values.
    """

    def __init__(
        self,
        editor: EditorState,
        *,
        converter: ContentConverter = markdown_to_fragment,
        selection_provider: SelectionProvider | None = None,
        persisted_provider: PersistedProvider | None = None,
    ) -> None:
        self._editor = editor
        self._convert = converter
        self._selection_provider = selection_provider
        self._persisted_provider = persisted_provider

    @property
    def editor(self) -> EditorState:
        return self._editor

    def execute(self, call: ToolCall | ToolRequest) -> bool:
        return self.execute_detailed(call).applied

    def execute_detailed(self, call: ToolCall | ToolRequest) -> ExecutionResult:
        if isinstance(call, ToolCall):
            try:
                request = parse_tool_call(call)
            except MalformedArgumentsError as exc:
                LOGGER.info("Rejected %s call: %s", call.tool, exc.detail)
                return ExecutionResult.rejected(call.tool, ErrorCategory.MALFORMED_ARGUMENTS, exc.detail)
        else:
            request = call

        if isinstance(request, ReplaceTextRequest):
            return self._replace_range(request)
        if isinstance(request, SearchReplaceRequest):
            return self._replace_search(request)
        if isinstance(request, InsertTextRequest):
            return self._insert(request)
        if isinstance(request, FindReplaceRequest):
            return self._find_replace(request)
        if isinstance(request, RephraseTextRequest):
            return self._rephrase(request)
        return ExecutionResult.rejected(type(request).__name__, ErrorCategory.MALFORMED_ARGUMENTS, "Unsupported request")

    # ------------------------------------------------------------------
    # replaceText
    # ------------------------------------------------------------------
    def _replace_range(self, request: ReplaceTextRequest) -> ExecutionResult:
        size = self._editor.size
        start, end = request.start, request.end
        if start < 0 or end < start or end > size:
            detail = f"Range ({start}, {end}) is invalid for document of size {size}"
            LOGGER.info("Rejected replaceText: %s", detail)
            return ExecutionResult.rejected(REPLACE_TEXT, ErrorCategory.OUT_OF_BOUNDS, detail)
        tr = self._editor.transaction()
        if request.new_text:
            tr.replace(start, end, Fragment.text(request.new_text))
        else:
            tr.delete(start, end)
        return self._commit(REPLACE_TEXT, tr, start, end)

    def _replace_search(self, request: SearchReplaceRequest) -> ExecutionResult:
        span = resolve(self._editor.doc, request.search_text)
        if span is None:
            return ExecutionResult.rejected(REPLACE_TEXT, ErrorCategory.NOT_FOUND, request.search_text)
        return self._replace_range(ReplaceTextRequest(span.start, span.end, request.new_text))

    # ------------------------------------------------------------------
    # rephraseText
    # ------------------------------------------------------------------
    def _rephrase(self, request: RephraseTextRequest) -> ExecutionResult:
        span = request.span if request.span is not None else self._rephrase_target()
        if span.is_empty:
            LOGGER.info("Rejected rephraseText: no text is selected")
            return ExecutionResult.rejected(REPHRASE_TEXT, ErrorCategory.NOT_FOUND, "No text is selected")
        size = self._editor.size
        if not span.fits(size):
            detail = f"Selection {span.to_tuple()} is outside document of size {size}"
            return ExecutionResult.rejected(REPHRASE_TEXT, ErrorCategory.OUT_OF_BOUNDS, detail)
        tr = self._editor.transaction().replace(span.start, span.end, Fragment.text(request.new_text))
        return self._commit(REPHRASE_TEXT, tr, span.start, span.end)

    def _rephrase_target(self) -> Span:
        if self._persisted_provider is not None:
            persisted = self._persisted_provider()
            if persisted is not None:
                return persisted
        return self._selection_provider() if self._selection_provider else self._editor.selection

    # ------------------------------------------------------------------
    # insertText
    # ------------------------------------------------------------------
    def resolve_position(self, position: PositionStrategy) -> int | None:
        """Translate an insert position strategy into a document position."""

        doc = self._editor.doc
        if isinstance(position, AbsolutePosition):
            return doc.content_start if position.location == "start" else doc.content_end
        if isinstance(position, RelativePosition):
            anchor = resolve(doc, position.anchor)
            if anchor is None:
                return None
            return anchor.end if position.placement == "after" else anchor.start
        selection = self._selection_provider() if self._selection_provider else self._editor.selection
        return selection.end

    def _insert(self, request: InsertTextRequest) -> ExecutionResult:
        position = self.resolve_position(request.position)
        if position is None:
            anchor = getattr(request.position, "anchor", "")
            LOGGER.info("Rejected insertText: anchor %r not found", anchor)
            return ExecutionResult.rejected(INSERT_TEXT, ErrorCategory.NOT_FOUND, anchor)
        size = self._editor.size
        if not 0 <= position <= size:
            detail = f"Position {position} is outside document of size {size}"
            return ExecutionResult.rejected(INSERT_TEXT, ErrorCategory.OUT_OF_BOUNDS, detail)
        if not request.content:
            return ExecutionResult.rejected(INSERT_TEXT, ErrorCategory.MALFORMED_ARGUMENTS, "content is empty")
        fragment = self._to_fragment(request.content)
        tr = self._editor.transaction().insert(position, fragment)
        return self._commit(INSERT_TEXT, tr, position, position)

    def _to_fragment(self, content: str) -> Fragment:
        try:
            fragment = self._convert(content)
        except Exception:
            LOGGER.warning("Markdown conversion failed; inserting raw text", exc_info=True)
            return Fragment.text(content)
        if fragment.is_empty:
            return Fragment.text(content)
        return fragment

    # ------------------------------------------------------------------
    # findAndReplaceAll
    # ------------------------------------------------------------------
    def _find_replace(self, request: FindReplaceRequest) -> ExecutionResult:
        matches = find_all_matches(
            self._editor.doc,
            request.pattern,
            match_case=request.match_case,
            whole_word=request.whole_word,
        )
        if not matches:
            return ExecutionResult.rejected(FIND_AND_REPLACE_ALL, ErrorCategory.NOT_FOUND, request.pattern)
        tr = self._editor.transaction()
        count = replace_all_matches(tr, matches, request.replacement, keep_case=request.preserve_case)
        result = self._commit(FIND_AND_REPLACE_ALL, tr, matches[0].start, matches[-1].end)
        if not result.applied:
            return result
        return ExecutionResult(applied=True, tool=FIND_AND_REPLACE_ALL, span=result.span, replacements=count)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _commit(self, tool: str, tr: Transaction, start: int, end: int) -> ExecutionResult:
        try:
            self._editor.dispatch(tr)
        except ValueError as exc:
            LOGGER.warning("Dispatch of %s failed: %s", tool, exc)
            return ExecutionResult.rejected(tool, ErrorCategory.OUT_OF_BOUNDS, str(exc))
        mapped = Span(tr.mapping.map(start, -1), max(tr.mapping.map(start, -1), tr.mapping.map(end, 1)))
        LOGGER.debug("Applied %s at %s", tool, mapped.to_tuple())
        return ExecutionResult(applied=True, tool=tool, span=mapped)


__all__ = ["ExecutionResult", "ToolExecutor"]
