"""Structured helpers for representing document spans."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Iterator


@dataclass(slots=True, frozen=True)
class Span(Sequence[int]):
    """Half-open ``[start, end)`` range in document-position coordinates."""

    start: int
    end: int

    def __post_init__(self) -> None:
        start = self._coerce_index(self.start, "start")
        end = self._coerce_index(self.end, "end")
        if start < 0 or end < 0:
            raise ValueError("Span offsets must be non-negative")
        if end < start:
            raise ValueError(f"Span end ({end}) precedes start ({start})")
        object.__setattr__(self, "start", start)
        object.__setattr__(self, "end", end)

    @staticmethod
    def _coerce_index(value: Any, label: str) -> int:
        if isinstance(value, bool):
            raise ValueError(f"Span {label} must be an integer")
        try:
            coerced = int(value)
        except (TypeError, ValueError, OverflowError) as exc:
            raise ValueError(f"Span {label} must be an integer") from exc
        if not isinstance(value, str) and coerced != value:
            raise ValueError(f"Span {label} must be an integer, got {value!r}")
        return coerced

    def __len__(self) -> int:
        return 2

    def __getitem__(self, index: int | slice) -> int | tuple[int, ...]:
        if isinstance(index, slice):
            return self.to_tuple()[index]
        if index == 0:
            return self.start
        if index == 1:
            return self.end
        raise IndexError("Span index out of range")

    def __iter__(self) -> Iterator[int]:
        yield self.start
        yield self.end

    @property
    def length(self) -> int:
        """Return the width of the span."""

        return self.end - self.start

    @property
    def is_empty(self) -> bool:
        """Return ``True`` when the span collapses to a caret."""

        return self.start == self.end

    def contains(self, position: int) -> bool:
        return self.start <= position < self.end

    def fits(self, size: int) -> bool:
        """Return ``True`` when the span lies inside ``[0, size]``."""

        return 0 <= self.start <= self.end <= size

    def to_tuple(self) -> tuple[int, int]:
        return (self.start, self.end)

    def to_dict(self) -> dict[str, int]:
        """Return the wire representation used in tool arguments."""

        return {"from": self.start, "to": self.end}

    @classmethod
    def from_value(cls, value: Any) -> Span:
        """Coerce ``value`` into a :class:`Span`.

        Accepts another span, a ``{"from", "to"}`` or ``{"start", "end"}``
        mapping, or a two-item sequence.
        """

        if isinstance(value, Span):
            return value
        if isinstance(value, Mapping):
            start = value.get("from", value.get("start"))
            end = value.get("to", value.get("end"))
            if start is None or end is None:
                raise ValueError("Span mappings require from/to keys")
            return cls(start, end)
        if isinstance(value, Sequence) and not isinstance(value, (str, bytes)):
            seq = list(value)
            if len(seq) != 2:
                raise ValueError("Span sequences must have exactly two entries")
            return cls(seq[0], seq[1])
        raise TypeError("Unsupported Span input")

    @classmethod
    def caret(cls, position: int) -> Span:
        return cls(position, position)


__all__ = ["Span"]
