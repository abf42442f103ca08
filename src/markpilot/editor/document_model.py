"""Immutable rich-text document tree and its position space.

Positions follow the ProseMirror convention: every character of a text leaf
occupies one position and every block contributes one extra position for its
opening boundary and one for its closing boundary. A document whose root holds
text leaves directly has no boundaries, so positions equal plain-text offsets.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Iterable, Iterator, Mapping, NamedTuple, Sequence

from ..documents.ranges import Span

BLOCK_SEPARATOR = "\n\n"
BLOCK_TYPES: tuple[str, ...] = ("paragraph", "heading", "list_item", "blockquote", "code_block")
MARK_TYPES: tuple[str, ...] = ("strong", "em", "code", "link")

_OPEN = "open"
_CLOSE = "close"
_CHAR = "char"


@dataclass(slots=True, frozen=True)
class TextLeaf:
    """Run of characters sharing the same marks."""

    text: str
    marks: tuple[str, ...] = ()

    @property
    def node_size(self) -> int:
        return len(self.text)


@dataclass(slots=True, frozen=True)
class Block:
    """Textblock holding inline leaves (paragraph, heading, ...)."""

    type: str = "paragraph"
    children: tuple[TextLeaf, ...] = ()
    attrs: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.type not in BLOCK_TYPES:
            raise ValueError(f"Unknown block type '{self.type}'")
        object.__setattr__(self, "children", tuple(self.children))
        object.__setattr__(self, "attrs", MappingProxyType(dict(self.attrs)))

    @property
    def text_content(self) -> str:
        return "".join(leaf.text for leaf in self.children)

    @property
    def content_size(self) -> int:
        return sum(leaf.node_size for leaf in self.children)

    @property
    def node_size(self) -> int:
        return self.content_size + 2

    def with_children(self, children: Iterable[TextLeaf]) -> Block:
        return Block(type=self.type, children=tuple(children), attrs=dict(self.attrs))

    @classmethod
    def paragraph(cls, text: str = "", *, marks: tuple[str, ...] = ()) -> Block:
        children = (TextLeaf(text, marks),) if text else ()
        return cls(type="paragraph", children=children)


class _Token(NamedTuple):
    kind: str
    char: str = ""
    marks: tuple[str, ...] = ()
    block: Block | None = None


@dataclass(slots=True, frozen=True)
class Fragment:
    """Content slice inserted into a document.

    A fragment is either inline (a run of leaves) or a sequence of blocks.
    """

    blocks: tuple[Block, ...] = ()
    leaves: tuple[TextLeaf, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "blocks", tuple(self.blocks))
        object.__setattr__(self, "leaves", tuple(leaf for leaf in self.leaves if leaf.text))
        if self.blocks and self.leaves:
            raise ValueError("A fragment holds either blocks or inline leaves, not both")

    @property
    def is_inline(self) -> bool:
        return not self.blocks

    @property
    def is_empty(self) -> bool:
        return not self.blocks and not self.leaves

    def plain_text(self) -> str:
        if self.blocks:
            return BLOCK_SEPARATOR.join(block.text_content for block in self.blocks)
        return "".join(leaf.text for leaf in self.leaves)

    @classmethod
    def text(cls, text: str, *, marks: tuple[str, ...] = ()) -> Fragment:
        """Return an inline fragment holding ``text`` verbatim."""

        return cls(leaves=(TextLeaf(text or "", marks),))


@dataclass(slots=True, frozen=True)
class Document:
    """Root node of the document tree."""

    children: tuple[Block | TextLeaf, ...] = ()
    inline: bool = False

    def __post_init__(self) -> None:
        children = tuple(self.children)
        expected = TextLeaf if self.inline else Block
        for child in children:
            if not isinstance(child, expected):
                kind = "inline" if self.inline else "block"
                raise TypeError(f"{kind} documents only accept {expected.__name__} children")
        object.__setattr__(self, "children", children)

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------
    @classmethod
    def from_inline_text(cls, text: str) -> Document:
        """Return a document whose root holds ``text`` without block boundaries."""

        return cls(children=(TextLeaf(text),) if text else (), inline=True)

    @classmethod
    def from_paragraphs(cls, paragraphs: Sequence[str]) -> Document:
        return cls(children=tuple(Block.paragraph(text) for text in paragraphs))

    @classmethod
    def from_plain_text(cls, text: str) -> Document:
        """Split ``text`` on blank lines into paragraphs."""

        normalized = (text or "").replace("\r\n", "\n")
        parts = [part.strip("\n") for part in normalized.split(BLOCK_SEPARATOR)]
        parts = [part for part in parts if part]
        return cls.from_paragraphs(parts or [""])

    # ------------------------------------------------------------------
    # Sizes and boundaries
    # ------------------------------------------------------------------
    @property
    def size(self) -> int:
        """Size of the root content (``doc.content.size``)."""

        return sum(child.node_size for child in self.children)

    @property
    def blocks(self) -> tuple[Block, ...]:
        return () if self.inline else tuple(self.children)  # type: ignore[arg-type]

    @property
    def content_start(self) -> int:
        """First position that can hold inline content."""

        if self.inline or not self.children:
            return 0
        return 1

    @property
    def content_end(self) -> int:
        """Last position that can hold inline content."""

        if self.inline:
            return self.size
        if not self.children:
            return 0
        return self.size - 1

    # ------------------------------------------------------------------
    # Text views
    # ------------------------------------------------------------------
    def plain_text(self) -> str:
        if self.inline:
            return "".join(leaf.text for leaf in self.children)  # type: ignore[union-attr]
        return BLOCK_SEPARATOR.join(block.text_content for block in self.blocks)

    def word_count(self) -> int:
        return len(self.plain_text().split())

    def text_leaves(self) -> Iterator[tuple[TextLeaf, int]]:
        """Yield each text leaf with the position of its first character."""

        if self.inline:
            cursor = 0
            for leaf in self.children:
                yield leaf, cursor  # type: ignore[misc]
                cursor += leaf.node_size
            return
        cursor = 0
        for block in self.blocks:
            inner = cursor + 1
            for leaf in block.children:
                yield leaf, inner
                inner += leaf.node_size
            cursor += block.node_size

    def offset_to_position(self, offset: int, *, end: bool = False) -> int:
        """Translate a plain-text offset into a document position.

        ``end`` selects the exclusive-end reading of ``offset`` so that an
        offset sitting on a leaf boundary resolves to the end of the leaf
        before it rather than the start of the next one.

        Offsets inside a block separator map onto the block boundaries: a
        start lands on the closing boundary of the block before the
        separator and an end lands past the opening boundary of the block
        after it, so :meth:`text_between` yields the blank line back.
        """

        if self.inline:
            return min(max(offset, 0), self.size)
        offset = max(offset, 0)
        cursor = 0
        position = 0
        for index, block in enumerate(self.blocks):
            if index:
                gap_end = cursor + len(BLOCK_SEPARATOR)
                if end and cursor < offset <= gap_end:
                    return position + 1
                if not end and offset < gap_end:
                    return position - 1
                cursor = gap_end
            length = block.content_size
            if end and offset <= cursor + length:
                return position + 1 + (offset - cursor)
            if not end and offset < cursor + length:
                return position + 1 + (offset - cursor)
            cursor += length
            position += block.node_size
        return self.content_end

    def text_between(self, start: int, end: int) -> str:
        """Return the plain text covered by ``[start, end)``."""

        start = max(0, start)
        end = min(self.size, end)
        if end <= start:
            return ""
        pieces: list[list[str]] = [[]]
        started = False
        for token in self._tokens()[start:end]:
            if token.kind == _CHAR:
                pieces[-1].append(token.char)
                started = True
            elif token.kind == _OPEN:
                if started:
                    pieces.append([])
            else:
                started = True
        return BLOCK_SEPARATOR.join("".join(piece) for piece in pieces)

    # ------------------------------------------------------------------
    # Mutation (returns new documents)
    # ------------------------------------------------------------------
    def replace(self, start: int, end: int, fragment: Fragment) -> tuple[Document, Span]:
        """Return a copy with ``[start, end)`` replaced by ``fragment``.

        The second item is the span actually replaced, which differs from the
        request when block content is inserted at a block's edge and is moved
        out of that block instead of splitting it.
        """

        size = self.size
        if not (0 <= start <= end <= size):
            raise ValueError(f"Replace range ({start}, {end}) outside document of size {size}")
        tokens = self._tokens()
        if self.inline:
            inserted = _inline_tokens(fragment.leaves or (TextLeaf(fragment.plain_text()),))
        elif fragment.is_inline:
            inserted = _inline_tokens(fragment.leaves)
            if inserted and _depth_at(tokens, start) == 0:
                inserted = [_Token(_OPEN, block=Block()), *inserted, _Token(_CLOSE)]
        else:
            block_tokens = [token for block in fragment.blocks for token in _block_tokens(block)]
            if _depth_at(tokens, start) == 0:
                inserted = block_tokens
            elif start == end and tokens[start - 1].kind == _OPEN:
                start = end = start - 1
                inserted = block_tokens
            elif start == end and start < len(tokens) and tokens[start].kind == _CLOSE:
                start = end = start + 1
                inserted = block_tokens
            else:
                tail_block = _enclosing_block(tokens, end) or Block()
                inserted = [_Token(_CLOSE), *block_tokens, _Token(_OPEN, block=tail_block)]
        merged = tokens[:start] + inserted + tokens[end:]
        return Document._from_tokens(merged, inline=self.inline), Span(start, end)

    def _tokens(self) -> list[_Token]:
        tokens: list[_Token] = []
        if self.inline:
            tokens.extend(_inline_tokens(self.children))  # type: ignore[arg-type]
            return tokens
        for block in self.blocks:
            tokens.extend(_block_tokens(block))
        return tokens

    @classmethod
    def _from_tokens(cls, tokens: Sequence[_Token], *, inline: bool) -> Document:
        if inline:
            return cls(children=tuple(_group_leaves(t for t in tokens if t.kind == _CHAR)), inline=True)
        blocks: list[Block] = []
        current: Block | None = None
        buffer: list[_Token] = []

        def _finish() -> None:
            assert current is not None
            blocks.append(current.with_children(_group_leaves(buffer)))
            buffer.clear()

        for token in tokens:
            if token.kind == _OPEN:
                if current is not None:
                    _finish()
                current = token.block or Block()
            elif token.kind == _CLOSE:
                if current is not None:
                    _finish()
                    current = None
            else:
                if current is None:
                    current = Block()
                buffer.append(token)
        if current is not None:
            _finish()
        return cls(children=tuple(blocks))


def _inline_tokens(leaves: Iterable[TextLeaf]) -> list[_Token]:
    return [_Token(_CHAR, char=ch, marks=leaf.marks) for leaf in leaves for ch in leaf.text]


def _block_tokens(block: Block) -> list[_Token]:
    template = block.with_children(())
    return [_Token(_OPEN, block=template), *_inline_tokens(block.children), _Token(_CLOSE)]


def _group_leaves(tokens: Iterable[_Token]) -> list[TextLeaf]:
    leaves: list[TextLeaf] = []
    run: list[str] = []
    marks: tuple[str, ...] | None = None
    for token in tokens:
        if marks is not None and token.marks != marks:
            leaves.append(TextLeaf("".join(run), marks))
            run = []
        marks = token.marks
        run.append(token.char)
    if run and marks is not None:
        leaves.append(TextLeaf("".join(run), marks))
    return leaves


def _depth_at(tokens: Sequence[_Token], position: int) -> int:
    depth = 0
    for token in tokens[:position]:
        if token.kind == _OPEN:
            depth += 1
        elif token.kind == _CLOSE:
            depth = max(0, depth - 1)
    return depth


def _enclosing_block(tokens: Sequence[_Token], position: int) -> Block | None:
    for token in reversed(tokens[:position]):
        if token.kind == _CLOSE:
            return None
        if token.kind == _OPEN:
            return token.block
    return None


__all__ = [
    "BLOCK_SEPARATOR",
    "BLOCK_TYPES",
    "Block",
    "Document",
    "Fragment",
    "MARK_TYPES",
    "TextLeaf",
]
