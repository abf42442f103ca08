"""Find-and-replace-all over the text leaves of a document."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Sequence

from ...editor.document_model import Document, Fragment
from ...editor.transaction import Transaction

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_REPLACEMENTS = 1000


@dataclass(slots=True, frozen=True)
class FindMatch:
    """Single match in document positions."""

    start: int
    end: int
    text: str
    marks: tuple[str, ...] = ()


def build_pattern(search: str, *, match_case: bool = False, whole_word: bool = False) -> re.Pattern[str]:
    """Compile ``search`` as a literal pattern."""

    body = re.escape(search)
    if whole_word:
        body = rf"\b{body}\b"
    return re.compile(body, 0 if match_case else re.IGNORECASE)


def find_all_matches(
    document: Document,
    search: str,
    *,
    match_case: bool = False,
    whole_word: bool = False,
) -> list[FindMatch]:
    """Return every occurrence of ``search`` in document order.

    Matching runs per text leaf, so an occurrence split across differently
    formatted runs is not reported.
    """

    if not search:
        return []
    pattern = build_pattern(search, match_case=match_case, whole_word=whole_word)
    matches: list[FindMatch] = []
    for leaf, position in document.text_leaves():
        for match in pattern.finditer(leaf.text):
            if match.end() == match.start():
                continue
            matches.append(FindMatch(position + match.start(), position + match.end(), match.group(0), leaf.marks))
    return matches


def preserve_case(original: str, replacement: str) -> str:
    """Shape ``replacement`` after the capitalisation of ``original``.

    ``USER`` -> ``CUSTOMER``, ``user`` -> ``customer``, ``User`` -> ``Customer``.
    Mixed case falls back to lower case.
    """

    if not original or not replacement:
        return replacement
    if original == original.upper() and original != original.lower():
        return replacement.upper()
    if original == original.lower():
        return replacement.lower()
    if original[0] == original[0].upper():
        return replacement[0].upper() + replacement[1:].lower()
    return replacement.lower()


def replace_all_matches(
    tr: Transaction,
    matches: Sequence[FindMatch],
    replacement: str,
    *,
    keep_case: bool = True,
    max_replacements: int = DEFAULT_MAX_REPLACEMENTS,
) -> int:
    """Queue replacements for ``matches`` on ``tr`` and return how many.

    Matches are applied from the end of the document backwards so earlier
    positions stay valid without remapping.
    """

    ordered = sorted(matches[:max_replacements], key=lambda item: item.start, reverse=True)
    for match in ordered:
        text = preserve_case(match.text, replacement) if keep_case else replacement
        if text:
            tr.replace(match.start, match.end, Fragment.text(text, marks=match.marks))
        else:
            tr.delete(match.start, match.end)
    if len(matches) > max_replacements:
        LOGGER.warning("Capped find/replace at %s of %s matches", max_replacements, len(matches))
    return len(ordered)


__all__ = [
    "DEFAULT_MAX_REPLACEMENTS",
    "FindMatch",
    "build_pattern",
    "find_all_matches",
    "preserve_case",
    "replace_all_matches",
]
