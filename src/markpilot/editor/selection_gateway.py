"""Live and persisted selection tracking for AI context."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from ..documents.ranges import Span
from .document_model import Document
from .editor_state import DOCUMENT_SWITCH_META, EditorState
from .transaction import Mapping, Transaction

LOGGER = logging.getLogger(__name__)

PERSISTED_SELECTION_META = "persisted_selection"
HIGHLIGHT_CLASS = "persisted-selection-highlight"


@dataclass(slots=True, frozen=True)
class Selection:
    """Read-only view of a selected range and the text it covers."""

    text: str
    start: int
    end: int
    is_empty: bool
    word_count: int

    @property
    def span(self) -> Span:
        return Span(self.start, self.end)

    @classmethod
    def from_span(cls, doc: Document, span: Span) -> Selection:
        text = doc.text_between(span.start, span.end)
        return cls(
            text=text,
            start=span.start,
            end=span.end,
            is_empty=span.is_empty,
            word_count=len(text.split()),
        )

    @classmethod
    def empty(cls, position: int = 0) -> Selection:
        return cls(text="", start=position, end=position, is_empty=True, word_count=0)


@dataclass(slots=True, frozen=True)
class SetPersistedSelection:
    """Transaction meta command replacing the persisted selection."""

    start: int | None
    end: int | None


@dataclass(slots=True, frozen=True)
class Decoration:
    """Presentation-only highlight over a document range."""

    span: Span
    css_class: str = HIGHLIGHT_CLASS

    @classmethod
    def inline(cls, start: int, end: int, doc_size: int) -> Decoration:
        span = Span(start, end)
        if span.is_empty or not span.fits(doc_size):
            raise ValueError(f"Decoration ({start}, {end}) is outside document of size {doc_size}")
        return cls(span)


def reduce_persisted(
    current: Span | None,
    mapping: Mapping | None,
    command: SetPersistedSelection | None,
    doc_size: int,
    *,
    doc_changed: bool = True,
) -> Span | None:
    """Compute the next persisted span.

    An explicit ``command`` wins over remapping. Without one, the span is
    carried through ``mapping`` when the document changed and kept as-is
    otherwise. Invalid or collapsed results become ``None``.
    """

    if command is not None:
        if command.start is None or command.end is None:
            return None
        try:
            return Decoration.inline(command.start, command.end, doc_size).span
        except (TypeError, ValueError) as exc:
            LOGGER.debug("Ignoring persisted selection (%s, %s): %s", command.start, command.end, exc)
            return None
    if current is None:
        return None
    if not doc_changed or mapping is None:
        return current
    start = mapping.map(current.start, 1)
    end = mapping.map(current.end, -1)
    try:
        return Decoration.inline(start, end, doc_size).span
    except ValueError:
        LOGGER.debug("Persisted selection collapsed while mapping (%s, %s)", start, end)
        return None


def reduce_transaction(current: Span | None, tr: Transaction) -> Span | None:
    """Apply :func:`reduce_persisted` using the pieces carried by ``tr``."""

    if tr.get_meta(DOCUMENT_SWITCH_META):
        return None
    command = tr.get_meta(PERSISTED_SELECTION_META)
    if command is not None and not isinstance(command, SetPersistedSelection):
        LOGGER.debug("Unexpected persisted selection meta %r", command)
        return None
    return reduce_persisted(
        current,
        tr.mapping,
        command,
        tr.doc.size,
        doc_changed=tr.doc_changed,
    )


class SelectionTracker:
    """Keeps the live and persisted selections in step with an editor.

    The live selection mirrors the editor cursor after every transaction. The
    persisted selection is set explicitly (for example when the user pins text
    as AI context) and survives focus changes and edits by being remapped
    through each transaction.
    """

    def __init__(self, editor: EditorState) -> None:
        self._editor = editor
        self._persisted: Span | None = None
        self._live = Selection.from_span(editor.doc, editor.selection)
        self._unsubscribe: Callable[[], None] | None = editor.subscribe(self._on_transaction)

    @property
    def live(self) -> Selection:
        return self._live

    @property
    def persisted_span(self) -> Span | None:
        return self._persisted

    @property
    def persisted(self) -> Selection | None:
        if self._persisted is None:
            return None
        return Selection.from_span(self._editor.doc, self._persisted)

    def context_selection(self) -> Selection:
        """Return the persisted selection, or an empty one when none is set."""

        persisted = self.persisted
        if persisted is not None:
            return persisted
        return Selection.empty(self._editor.selection.end)

    def set_persisted(self, start: int | None, end: int | None) -> None:
        """Pin ``[start, end)`` as the persisted selection; ``None`` clears it."""

        try:
            tr = self._editor.transaction()
            tr.set_meta(PERSISTED_SELECTION_META, SetPersistedSelection(start, end))
            self._editor.dispatch(tr)
        except Exception:
            LOGGER.warning("Unable to set persisted selection (%s, %s)", start, end, exc_info=True)
            self._persisted = None

    def persist_live(self) -> None:
        self.set_persisted(self._live.start, self._live.end)

    def clear_persisted(self) -> None:
        self.set_persisted(None, None)

    def highlight(self) -> tuple[Decoration, ...]:
        if self._persisted is None:
            return ()
        try:
            return (Decoration.inline(self._persisted.start, self._persisted.end, self._editor.size),)
        except ValueError:
            return ()

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _on_transaction(self, tr: Transaction, editor: EditorState) -> None:
        self._live = Selection.from_span(editor.doc, editor.selection)
        try:
            self._persisted = reduce_transaction(self._persisted, tr)
        except Exception:
            LOGGER.warning("Persisted selection update failed; clearing highlight", exc_info=True)
            self._persisted = None


__all__ = [
    "Decoration",
    "HIGHLIGHT_CLASS",
    "PERSISTED_SELECTION_META",
    "Selection",
    "SelectionTracker",
    "SetPersistedSelection",
    "reduce_persisted",
    "reduce_transaction",
]
