"""Document transactions and the position mapping they carry.

A :class:`Transaction` accumulates replace steps against an immutable
:class:`~markpilot.editor.document_model.Document`. Every step records a
:class:`StepMap` so positions taken before the transaction can be translated
into the coordinate space after it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, NamedTuple

from ..documents.ranges import Span
from .document_model import Document, Fragment


class MapResult(NamedTuple):
    position: int
    deleted: bool


@dataclass(slots=True, frozen=True)
class StepMap:
    """Position map for a single replacement of ``old_size`` by ``new_size``."""

    start: int
    old_size: int
    new_size: int

    def map_result(self, position: int, assoc: int = 1) -> MapResult:
        start = self.start
        end = start + self.old_size
        if position < start:
            return MapResult(position, False)
        if position > end:
            return MapResult(position + self.new_size - self.old_size, False)
        if not self.old_size:
            side = assoc
        elif position == start:
            side = -1
        elif position == end:
            side = 1
        else:
            side = assoc
        mapped = start + (0 if side < 0 else self.new_size)
        deleted = position != (start if assoc < 0 else end)
        return MapResult(mapped, deleted)

    def map(self, position: int, assoc: int = 1) -> int:
        return self.map_result(position, assoc).position


@dataclass(slots=True)
class Mapping:
    """Ordered chain of step maps."""

    maps: list[StepMap] = field(default_factory=list)

    def append(self, step_map: StepMap) -> None:
        self.maps.append(step_map)

    def map_result(self, position: int, assoc: int = 1) -> MapResult:
        deleted = False
        for step_map in self.maps:
            result = step_map.map_result(position, assoc)
            position = result.position
            deleted = deleted or result.deleted
        return MapResult(position, deleted)

    def map(self, position: int, assoc: int = 1) -> int:
        return self.map_result(position, assoc).position

    def __bool__(self) -> bool:
        return bool(self.maps)


class Transaction:
    """Builder for an atomic document change.

    Nothing reaches the editor until the transaction is dispatched, so a
    transaction abandoned halfway (for example after a validation error)
    leaves the document untouched.
    """

    def __init__(self, before: Document, *, selection: Span | None = None) -> None:
        self.before = before
        self.doc = before
        self.mapping = Mapping()
        self.selection: Span | None = selection
        self.selection_set = False
        self._meta: dict[str, Any] = {}

    @property
    def doc_changed(self) -> bool:
        return bool(self.mapping) and self.doc != self.before

    def replace(self, start: int, end: int, fragment: Fragment) -> Transaction:
        """Replace ``[start, end)`` in the current document with ``fragment``."""

        before_size = self.doc.size
        updated, applied = self.doc.replace(start, end, fragment)
        new_size = max(0, updated.size - before_size + applied.length)
        self.mapping.append(StepMap(applied.start, applied.length, new_size))
        self.doc = updated
        return self

    def insert(self, position: int, fragment: Fragment) -> Transaction:
        return self.replace(position, position, fragment)

    def delete(self, start: int, end: int) -> Transaction:
        return self.replace(start, end, Fragment())

    def replace_document(self, doc: Document) -> Transaction:
        """Replace the whole document; every old position maps to an edge."""

        self.mapping.append(StepMap(0, self.doc.size, doc.size))
        self.doc = doc
        return self

    def set_selection(self, span: Span) -> Transaction:
        self.selection = span
        self.selection_set = True
        return self

    def set_meta(self, key: str, value: Any) -> Transaction:
        self._meta[key] = value
        return self

    def get_meta(self, key: str, default: Any = None) -> Any:
        return self._meta.get(key, default)

    @property
    def meta(self) -> dict[str, Any]:
        return dict(self._meta)


__all__ = ["MapResult", "Mapping", "StepMap", "Transaction"]
