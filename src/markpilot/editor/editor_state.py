"""Mutable editor state wrapping the immutable document tree."""

from __future__ import annotations

import hashlib
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict

from ..documents.ranges import Span
from ..utils.events import ListenerList
from .document_model import Document, Fragment
from .transaction import Transaction

LOGGER = logging.getLogger(__name__)

DOCUMENT_SWITCH_META = "document_switch"

TransactionListener = Callable[[Transaction, "EditorState"], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _hash_text(text: str) -> str:
    return hashlib.sha1(text.encode("utf-8")).hexdigest()


class EditorState:
    """Single source of truth for the open document and its cursor.

    Every change goes through :meth:`dispatch`, which applies the transaction
    and then notifies listeners synchronously, so derived state (such as the
    persisted selection) is updated before control returns to the caller.
    """

    def __init__(
        self,
        doc: Document | None = None,
        *,
        document_id: str | None = None,
        selection: Span | None = None,
    ) -> None:
        self._doc = doc or Document()
        self._selection = self._clamp(selection or Span.caret(self._doc.content_start))
        self.document_id = document_id or uuid.uuid4().hex
        self.version_id = 1
        self.content_hash = _hash_text(self._doc.plain_text())
        self.dirty = False
        self.updated_at = _utcnow()
        self._listeners: ListenerList[[Transaction, EditorState]] = ListenerList("editor transactions")

    @property
    def doc(self) -> Document:
        return self._doc

    @property
    def size(self) -> int:
        return self._doc.size

    @property
    def selection(self) -> Span:
        return self._selection

    def plain_text(self) -> str:
        return self._doc.plain_text()

    def text_between(self, start: int, end: int) -> str:
        return self._doc.text_between(start, end)

    def subscribe(self, listener: TransactionListener) -> Callable[[], None]:
        return self._listeners.subscribe(listener)

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------
    def transaction(self) -> Transaction:
        return Transaction(self._doc, selection=self._selection)

    def dispatch(self, tr: Transaction) -> None:
        """Apply ``tr`` and notify listeners."""

        if tr.before is not self._doc:
            raise ValueError("Transaction was built against a stale document")
        changed = tr.doc_changed
        self._doc = tr.doc
        if tr.selection_set and tr.selection is not None:
            self._selection = self._clamp(tr.selection)
        elif tr.mapping:
            start = tr.mapping.map(self._selection.start, 1)
            end = tr.mapping.map(self._selection.end, -1)
            self._selection = self._clamp(Span(min(start, end), max(start, end)))
        if changed:
            self.version_id += 1
            self.content_hash = _hash_text(self._doc.plain_text())
            self.dirty = True
            self.updated_at = _utcnow()
            LOGGER.debug(
                "Dispatched transaction on %s: version=%s size=%s steps=%s",
                self.document_id,
                self.version_id,
                self._doc.size,
                len(tr.mapping.maps),
            )
        self._listeners.notify(tr, self)

    def replace(self, start: int, end: int, fragment: Fragment) -> None:
        self.dispatch(self.transaction().replace(start, end, fragment))

    def insert(self, position: int, fragment: Fragment) -> None:
        self.dispatch(self.transaction().insert(position, fragment))

    def set_selection(self, start: int, end: int | None = None) -> None:
        end = start if end is None else end
        self.dispatch(self.transaction().set_selection(Span(min(start, end), max(start, end))))

    def load(self, doc: Document, *, document_id: str | None = None) -> None:
        """Swap in a different document, as when the user opens another file."""

        tr = self.transaction().replace_document(doc)
        tr.set_selection(Span.caret(doc.content_start))
        tr.set_meta(DOCUMENT_SWITCH_META, True)
        self.document_id = document_id or uuid.uuid4().hex
        self.dispatch(tr)
        self.version_id = 1
        self.content_hash = _hash_text(doc.plain_text())
        self.dirty = False

    def snapshot(self) -> Dict[str, Any]:
        """Return a serializable view consumed by prompts and logging."""

        return {
            "document_id": self.document_id,
            "version_id": self.version_id,
            "content_hash": self.content_hash,
            "size": self._doc.size,
            "selection": self._selection.to_dict(),
            "dirty": self.dirty,
        }

    def _clamp(self, span: Span) -> Span:
        size = self._doc.size
        start = max(0, min(span.start, size))
        end = max(start, min(span.end, size))
        return Span(start, end)


__all__ = ["DOCUMENT_SWITCH_META", "EditorState", "TransactionListener"]
