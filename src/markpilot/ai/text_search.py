"""Resolve natural-language target strings to document spans.

The AI refers to document text by quoting it, and the quote rarely matches the
stored text byte for byte: markdown escapes are missing, whitespace differs, or
accents are typed differently. Matching therefore runs a short list of
increasingly forgiving strategies and stops at the first hit.
"""

from __future__ import annotations

import logging
import unicodedata
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, List, Sequence, Tuple

from ..documents.ranges import Span
from ..editor.document_model import Document

LOGGER = logging.getLogger(__name__)

ESCAPABLE_CHARACTERS = frozenset(".*_#[]()")


class SearchStrategy(str, Enum):
    EXACT = "exact"
    ESCAPE_NORMALIZED = "escape_normalized"
    UNICODE_NORMALIZED = "unicode_normalized"


@dataclass(slots=True, frozen=True)
class TextMatch:
    """Match expressed in plain-text offsets of the original haystack."""

    start: int
    end: int
    strategy: SearchStrategy


# Normalized text paired with, for every character, the offset of the
# haystack character it came from.
_Normalized = Tuple[str, List[int]]
_Normalizer = Callable[[str], _Normalized]


def _lowercase(text: str) -> _Normalized:
    chars: list[str] = []
    origins: list[int] = []
    for index, char in enumerate(text):
        for lowered in char.lower():
            chars.append(lowered)
            origins.append(index)
    return "".join(chars), origins


def _strip_escapes(text: str) -> _Normalized:
    chars: list[str] = []
    origins: list[int] = []
    index = 0
    length = len(text)
    while index < length:
        char = text[index]
        if char == "\\" and index + 1 < length and text[index + 1] in ESCAPABLE_CHARACTERS:
            chars.append(text[index + 1])
            origins.append(index + 1)
            index += 2
            continue
        if char.isspace():
            if not chars or chars[-1] != " ":
                chars.append(" ")
                origins.append(index)
            index += 1
            continue
        chars.append(char)
        origins.append(index)
        index += 1
    return "".join(chars), origins


def _compose(text: str, first: _Normalizer, second: Callable[[str], Iterable[str]]) -> _Normalized:
    base, base_origins = first(text)
    chars: list[str] = []
    origins: list[int] = []
    for char, origin in zip(base, base_origins):
        for produced in second(char):
            chars.append(produced)
            origins.append(origin)
    return "".join(chars), origins


def _lower_chars(char: str) -> Iterable[str]:
    return char.lower()


def _fold_chars(char: str) -> Iterable[str]:
    decomposed = unicodedata.normalize("NFD", char)
    for part in decomposed.casefold():
        if not unicodedata.combining(part):
            yield part


def _escape_normalized(text: str) -> _Normalized:
    return _compose(text, _strip_escapes, _lower_chars)


def _unicode_normalized(text: str) -> _Normalized:
    return _compose(text, _strip_escapes, _fold_chars)


STRATEGIES: Sequence[Tuple[SearchStrategy, _Normalizer]] = (
    (SearchStrategy.EXACT, _lowercase),
    (SearchStrategy.ESCAPE_NORMALIZED, _escape_normalized),
    (SearchStrategy.UNICODE_NORMALIZED, _unicode_normalized),
)


def find_text(
    plain_text: str,
    target: str,
    *,
    strategies: Sequence[SearchStrategy] | None = None,
) -> TextMatch | None:
    """Locate ``target`` inside ``plain_text``.

    Args:
        plain_text: Haystack, usually ``Document.plain_text()``.
        target: Text quoted by the caller.
        strategies: Restrict matching to these strategies (defaults to all,
            in order).

    Returns:
        The first match found, or ``None`` when every strategy fails or the
        target is blank.
    """

    if not plain_text or not target or not target.strip():
        return None
    allowed = set(strategies) if strategies is not None else None
    for strategy, normalize in STRATEGIES:
        if allowed is not None and strategy not in allowed:
            continue
        haystack, origins = normalize(plain_text)
        needle, _ = normalize(target)
        needle = needle.strip() if strategy is not SearchStrategy.EXACT else needle
        if not needle:
            continue
        index = haystack.find(needle)
        if index < 0:
            continue
        start = origins[index]
        end = origins[index + len(needle) - 1] + 1
        LOGGER.debug("Resolved target via %s strategy at [%s, %s)", strategy.value, start, end)
        return TextMatch(start, end, strategy)
    return None


def resolve(
    document: Document,
    target: str,
    *,
    strategies: Sequence[SearchStrategy] | None = None,
) -> Span | None:
    """Resolve ``target`` to a span in ``document``'s position space.

    The plain-text match is translated by walking the document's text leaves
    on every call, so the span is valid for multi-block documents as well.
    """

    try:
        match = find_text(document.plain_text(), target, strategies=strategies)
    except Exception:  # pragma: no cover - resolver must never raise
        LOGGER.exception("Text resolution failed for target %r", target)
        return None
    if match is None:
        return None
    start = document.offset_to_position(match.start)
    end = document.offset_to_position(match.end, end=True)
    if end < start:
        end = start
    return Span(start, end)


__all__ = ["SearchStrategy", "TextMatch", "find_text", "resolve"]
