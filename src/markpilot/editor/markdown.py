"""Markdown to rich-content conversion backed by ``markdown-it-py``."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence

from markdown_it import MarkdownIt
from markdown_it.token import Token

from .document_model import Block, Document, Fragment, TextLeaf

LOGGER = logging.getLogger(__name__)

_CONTAINER_BLOCKS = {
    "list_item_open": "list_item",
    "blockquote_open": "blockquote",
}
_INLINE_MARKS = {
    "strong_open": "strong",
    "em_open": "em",
    "link_open": "link",
}

_PARSER: Optional[MarkdownIt] = None


class MarkdownConversionError(ValueError):
    """Raised when markdown cannot be turned into document content."""


def _build_parser() -> MarkdownIt:
    global _PARSER
    if _PARSER is None:
        _PARSER = MarkdownIt("commonmark", {"html": False})
    return _PARSER


def markdown_to_fragment(text: str) -> Fragment:
    """Convert ``text`` into a fragment ready for insertion.

    Content that parses to a single paragraph is returned as an inline
    fragment, so it can be dropped into the middle of an existing paragraph
    without splitting it. Surrounding spaces of the raw text are kept in that
    case since the parser strips them.
    """

    if not isinstance(text, str):
        raise MarkdownConversionError(f"Expected markdown text, got {type(text).__name__}")
    if not text.strip():
        return Fragment.text(text)
    try:
        tokens = _build_parser().parse(text)
    except Exception as exc:  # pragma: no cover - markdown-it rarely raises
        raise MarkdownConversionError(str(exc)) from exc
    blocks = _blocks_from_tokens(tokens)
    if not blocks:
        raise MarkdownConversionError("Markdown produced no content")
    if len(blocks) == 1 and blocks[0].type == "paragraph":
        leaves = list(blocks[0].children)
        leading = text[: len(text) - len(text.lstrip(" \t"))]
        trailing = text[len(text.rstrip(" \t")) :]
        if leading:
            leaves.insert(0, TextLeaf(leading))
        if trailing:
            leaves.append(TextLeaf(trailing))
        return Fragment(leaves=tuple(leaves))
    return Fragment(blocks=tuple(blocks))


def document_from_markdown(text: str) -> Document:
    """Parse a whole markdown file into a block document."""

    if not (text or "").strip():
        return Document.from_paragraphs([""])
    blocks = _blocks_from_tokens(_build_parser().parse(text))
    return Document(children=tuple(blocks) or (Block.paragraph(),))


def _blocks_from_tokens(tokens: Sequence[Token]) -> List[Block]:
    blocks: List[Block] = []
    containers: List[str] = []
    pending: Optional[Dict[str, Any]] = None
    for token in tokens:
        if token.type in _CONTAINER_BLOCKS:
            containers.append(_CONTAINER_BLOCKS[token.type])
        elif token.type in {"list_item_close", "blockquote_close"}:
            if containers:
                containers.pop()
        elif token.type == "heading_open":
            pending = {"type": "heading", "attrs": {"level": int(token.tag[1:])}}
        elif token.type == "paragraph_open":
            block_type = containers[-1] if containers else "paragraph"
            pending = {"type": block_type, "attrs": {}}
        elif token.type == "inline" and pending is not None:
            blocks.append(Block(type=pending["type"], children=tuple(_inline_leaves(token.children or ())), attrs=pending["attrs"]))
            pending = None
        elif token.type in {"fence", "code_block"}:
            attrs = {"language": token.info.strip()} if token.info.strip() else {}
            content = token.content.rstrip("\n")
            children = (TextLeaf(content, ("code",)),) if content else ()
            blocks.append(Block(type="code_block", children=children, attrs=attrs))
        elif token.type == "hr":
            LOGGER.debug("Dropping thematic break while converting markdown")
    return blocks


def _inline_leaves(children: Iterable[Token]) -> List[TextLeaf]:
    leaves: List[TextLeaf] = []
    active: List[str] = []

    def _emit(text: str, extra: tuple[str, ...] = ()) -> None:
        if not text:
            return
        marks = tuple(sorted(set(active) | set(extra)))
        if leaves and leaves[-1].marks == marks:
            leaves[-1] = TextLeaf(leaves[-1].text + text, marks)
        else:
            leaves.append(TextLeaf(text, marks))

    for child in children:
        kind = child.type
        if kind in _INLINE_MARKS:
            active.append(_INLINE_MARKS[kind])
        elif kind.endswith("_close") and kind.replace("_close", "_open") in _INLINE_MARKS:
            mark = _INLINE_MARKS[kind.replace("_close", "_open")]
            if mark in active:
                active.remove(mark)
        elif kind == "code_inline":
            _emit(child.content, ("code",))
        elif kind == "softbreak":
            _emit(" ")
        elif kind == "hardbreak":
            _emit("\n")
        else:
            _emit(child.content)
    return leaves


__all__ = ["MarkdownConversionError", "document_from_markdown", "markdown_to_fragment"]
