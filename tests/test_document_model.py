"""Tests for the document tree and its position space."""

from __future__ import annotations

import pytest

from markpilot.editor.document_model import Block, Document, Fragment, TextLeaf


def test_inline_document_positions_equal_offsets() -> None:
    doc = Document.from_inline_text("Hello world")

    assert doc.size == 11
    assert doc.content_start == 0
    assert doc.content_end == 11
    assert doc.offset_to_position(6) == 6
    assert doc.text_between(6, 11) == "world"


def test_block_document_adds_two_positions_per_block() -> None:
    doc = Document.from_paragraphs(["Intro", "Conclusion"])

    assert doc.size == (5 + 2) + (10 + 2)
    assert doc.plain_text() == "Intro\n\nConclusion"
    assert doc.content_start == 1
    assert doc.content_end == doc.size - 1


def test_offset_to_position_walks_blocks() -> None:
    doc = Document.from_paragraphs(["Intro", "Conclusion"])
    offset = doc.plain_text().index("Conclusion")

    start = doc.offset_to_position(offset)
    end = doc.offset_to_position(offset + len("Conclusion"), end=True)

    assert (start, end) == (8, 18)
    assert doc.text_between(start, end) == "Conclusion"


def test_end_offset_on_block_boundary_stays_in_previous_block() -> None:
    doc = Document.from_paragraphs(["Intro", "Conclusion"])

    assert doc.offset_to_position(5, end=True) == 6
    assert doc.offset_to_position(7) == 8


def test_separator_offsets_map_onto_block_boundaries() -> None:
    doc = Document.from_paragraphs(["Intro", "Conclusion"])

    assert doc.offset_to_position(5) == 6
    assert doc.offset_to_position(7, end=True) == 8
    assert doc.text_between(6, 18) == "\n\nConclusion"
    assert doc.text_between(1, 8) == "Intro\n\n"


def _separator_midpoints(paragraphs: list[str]) -> set[int]:
    midpoints: set[int] = set()
    offset = 0
    for index, text in enumerate(paragraphs):
        if index:
            midpoints.add(offset + 1)
            offset += 2
        offset += len(text)
    return midpoints


@pytest.mark.parametrize(
    "paragraphs",
    [
        ["Intro", "Conclusion"],
        ["A", "", "B"],
        ["", "Middle", ""],
        ["One", "Two", "Three"],
    ],
)
def test_every_substring_maps_to_a_span_covering_it(paragraphs: list[str]) -> None:
    doc = Document.from_paragraphs(paragraphs)
    text = doc.plain_text()
    midpoints = _separator_midpoints(paragraphs)
    offsets = [offset for offset in range(len(text) + 1) if offset not in midpoints]

    for start in offsets:
        for end in offsets:
            if end <= start:
                continue
            span = (doc.offset_to_position(start), doc.offset_to_position(end, end=True))
            assert doc.text_between(*span) == text[start:end], (start, end, span)


def test_text_between_joins_blocks_with_blank_line() -> None:
    doc = Document.from_paragraphs(["Intro", "Conclusion"])

    assert doc.text_between(0, doc.size) == "Intro\n\nConclusion"


def test_replace_inline_text_inside_paragraph() -> None:
    doc = Document.from_paragraphs(["Hello world"])

    updated, applied = doc.replace(7, 12, Fragment.text("there"))

    assert updated.plain_text() == "Hello there"
    assert applied.to_tuple() == (7, 12)
    assert len(updated.blocks) == 1


def test_replace_keeps_marks_of_untouched_leaves() -> None:
    doc = Document(children=(Block(children=(TextLeaf("bold", ("strong",)), TextLeaf(" tail"))),))

    updated, _ = doc.replace(6, 10, Fragment.text("TAIL"))

    leaves = updated.blocks[0].children
    assert leaves[0] == TextLeaf("bold", ("strong",))
    assert leaves[1].text == " TAIL"


def test_block_fragment_at_block_end_is_inserted_after_block() -> None:
    doc = Document.from_paragraphs(["Intro", "Conclusion"])
    fragment = Fragment(blocks=(Block.paragraph("Appendix"),))

    updated, applied = doc.replace(18, 18, fragment)

    assert [block.text_content for block in updated.blocks] == ["Intro", "Conclusion", "Appendix"]
    assert applied.to_tuple() == (19, 19)


def test_block_fragment_inside_paragraph_splits_it() -> None:
    doc = Document.from_paragraphs(["Hello world"])
    fragment = Fragment(blocks=(Block(type="heading", children=(TextLeaf("Title"),), attrs={"level": 2}),))

    updated, _ = doc.replace(7, 7, fragment)

    assert [block.type for block in updated.blocks] == ["paragraph", "heading", "paragraph"]
    assert updated.plain_text() == "Hello \n\nTitle\n\nworld"


def test_replace_outside_document_raises() -> None:
    doc = Document.from_inline_text("abc")

    with pytest.raises(ValueError):
        doc.replace(2, 5, Fragment.text("x"))


def test_fragment_rejects_mixed_content() -> None:
    with pytest.raises(ValueError):
        Fragment(blocks=(Block.paragraph("a"),), leaves=(TextLeaf("b"),))


def test_unknown_block_type_is_rejected() -> None:
    with pytest.raises(ValueError):
        Block(type="table")


def test_from_plain_text_splits_on_blank_lines() -> None:
    doc = Document.from_plain_text("one\n\ntwo\r\n\r\nthree")

    assert [block.text_content for block in doc.blocks] == ["one", "two", "three"]
    assert doc.word_count() == 3
