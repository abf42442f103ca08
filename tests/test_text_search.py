"""Tests for resolving quoted targets to document spans."""

from __future__ import annotations

import pytest

from markpilot.editor.document_model import Document
from markpilot.editor.markdown import document_from_markdown
from markpilot.ai.text_search import SearchStrategy, find_text, resolve


@pytest.mark.parametrize(
    "target",
    ["quick brown", "The", "lazy dog.", "QUICK BROWN FOX"],
)
def test_exact_strategy_finds_verbatim_substrings(target: str) -> None:
    doc = Document.from_inline_text("The quick brown fox jumps over the lazy dog.")

    span = resolve(doc, target)

    assert span is not None
    assert doc.text_between(span.start, span.end).lower() == target.lower()


def test_exact_match_reports_strategy() -> None:
    match = find_text("Hello world", "world")

    assert match is not None
    assert (match.start, match.end, match.strategy) == (6, 11, SearchStrategy.EXACT)


def test_escape_strategy_matches_markdown_escapes() -> None:
    match = find_text("## 1\\. First step", "1. First step")

    assert match is not None
    assert match.strategy is SearchStrategy.ESCAPE_NORMALIZED
    assert (match.start, match.end) == (3, 17)


def test_escape_strategy_collapses_whitespace() -> None:
    match = find_text("alpha\n   beta gamma", "alpha beta")

    assert match is not None
    assert match.strategy is SearchStrategy.ESCAPE_NORMALIZED
    assert (match.start, match.end) == (0, 13)


def test_accented_target_matches_exactly() -> None:
    doc = Document.from_paragraphs(["Café culture is thriving."])

    for target in ("Café culture", "café culture"):
        match = find_text(doc.plain_text(), target)
        assert match is not None
        assert match.strategy is SearchStrategy.EXACT


def test_unaccented_target_matches_through_unicode_strategy() -> None:
    doc = Document.from_paragraphs(["Café culture is thriving."])

    match = find_text(doc.plain_text(), "cafe culture")
    span = resolve(doc, "cafe culture")

    assert match is not None
    assert match.strategy is SearchStrategy.UNICODE_NORMALIZED
    assert span is not None
    assert doc.text_between(span.start, span.end) == "Café culture"


def test_decomposed_accents_map_back_to_original_offsets() -> None:
    text = "Café au lait"

    match = find_text(text, "cafe au")

    assert match is not None
    assert text[match.start : match.end] == "Café au"


def test_resolve_translates_offsets_in_multi_block_document() -> None:
    doc = document_from_markdown("# Title\n\nIntro paragraph.\n\n## Conclusion\n\nThe end.")

    span = resolve(doc, "Conclusion")

    assert span is not None
    assert doc.text_between(span.start, span.end) == "Conclusion"
    assert span.start != doc.plain_text().index("Conclusion")


@pytest.mark.parametrize("target", ["", "   ", "missing words"])
def test_resolve_returns_none_when_nothing_matches(target: str) -> None:
    doc = Document.from_inline_text("Hello world")

    assert resolve(doc, target) is None


def test_resolve_can_be_restricted_to_exact_strategy() -> None:
    doc = Document.from_inline_text("Café culture")

    assert resolve(doc, "cafe culture", strategies=[SearchStrategy.EXACT]) is None
    assert resolve(doc, "cafe culture") is not None


@pytest.mark.parametrize("target", ["\n\nConclusion", "Intro\n\n", "o\n\nC", "Intro\n\nConclusion"])
def test_targets_spanning_block_separators_cover_the_blank_line(target: str) -> None:
    doc = Document.from_paragraphs(["Intro", "Conclusion"])

    span = resolve(doc, target)

    assert span is not None
    assert doc.text_between(span.start, span.end) == target
