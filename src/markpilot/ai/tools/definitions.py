"""Function-calling tool schemas and the parser for their arguments.

Arguments arrive from the model as a JSON string with no guarantees about its
shape. :func:`parse_tool_call` validates them with ``jsonschema`` and turns
them into one of the typed request objects below, or raises
:class:`~markpilot.ai.errors.MalformedArgumentsError`.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from json import JSONDecodeError
from typing import Any, Dict, Literal, Mapping, Sequence, Union

from jsonschema import Draft7Validator, ValidationError

from ...documents.ranges import Span
from ..errors import MalformedArgumentsError

REPLACE_TEXT = "replaceText"
INSERT_TEXT = "insertText"
FIND_AND_REPLACE_ALL = "findAndReplaceAll"
REPHRASE_TEXT = "rephraseText"

KNOWN_TOOLS: tuple[str, ...] = (REPLACE_TEXT, INSERT_TEXT, FIND_AND_REPLACE_ALL, REPHRASE_TEXT)
REPHRASE_STYLES: tuple[str, ...] = ("longer", "shorter", "simpler", "formal", "casual", "professional")
DEFAULT_TOOLS: tuple[str, ...] = (REPLACE_TEXT, INSERT_TEXT)


# -----------------------------------------------------------------------------
# Requests
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ToolCall:
    """A tool invocation as returned by the model: name plus raw arguments."""

    tool: str
    arguments: Mapping[str, Any] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class AbsolutePosition:
    location: Literal["start", "end"]
    kind: Literal["absolute"] = "absolute"


@dataclass(slots=True, frozen=True)
class RelativePosition:
    anchor: str
    placement: Literal["before", "after"]
    kind: Literal["relative"] = "relative"


@dataclass(slots=True, frozen=True)
class SelectionPosition:
    kind: Literal["selection"] = "selection"


PositionStrategy = Union[AbsolutePosition, RelativePosition, SelectionPosition]


@dataclass(slots=True, frozen=True)
class ReplaceTextRequest:
    """Replace an already-resolved span with ``new_text``."""

    start: int
    end: int
    new_text: str


@dataclass(slots=True, frozen=True)
class SearchReplaceRequest:
    """Replace the first occurrence of ``search_text``; resolved by the pipeline."""

    search_text: str
    new_text: str


@dataclass(slots=True, frozen=True)
class InsertTextRequest:
    position: PositionStrategy
    content: str


@dataclass(slots=True, frozen=True)
class FindReplaceRequest:
    pattern: str
    replacement: str
    match_case: bool = False
    whole_word: bool = False
    preserve_case: bool = True


@dataclass(slots=True, frozen=True)
class RephraseTextRequest:
    """Rewrite the selected text.

    ``span`` is filled in by callers that already know which range the user
    meant; otherwise the executor falls back to the persisted selection and
    then the live one.
    """

    new_text: str
    style: str | None = None
    span: Span | None = None


ToolRequest = Union[
    ReplaceTextRequest,
    SearchReplaceRequest,
    InsertTextRequest,
    FindReplaceRequest,
    RephraseTextRequest,
]


# -----------------------------------------------------------------------------
# Schemas
# -----------------------------------------------------------------------------

_SEARCH_REPLACE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "searchText": {
            "type": "string",
            "minLength": 1,
            "description": "Exact text currently in the document that should be replaced",
        },
        "newText": {
            "type": "string",
            "description": "Text that replaces searchText",
        },
    },
    "required": ["searchText", "newText"],
}

_RANGE_REPLACE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "from": {"type": "integer"},
        "to": {"type": "integer"},
        "newText": {"type": "string"},
    },
    "required": ["from", "to", "newText"],
}

_POSITION_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "description": "Where to insert the text (choose one strategy)",
    "oneOf": [
        {
            "type": "object",
            "properties": {
                "type": {"type": "string", "enum": ["absolute"]},
                "location": {
                    "type": "string",
                    "enum": ["start", "end"],
                    "description": "Insert at document start or end",
                },
            },
            "required": ["type", "location"],
        },
        {
            "type": "object",
            "properties": {
                "type": {"type": "string", "enum": ["relative"]},
                "anchor": {
                    "type": "string",
                    "minLength": 1,
                    "description": "Text to search for as reference point (e.g. a heading)",
                },
                "placement": {
                    "type": "string",
                    "enum": ["before", "after"],
                    "description": "Insert before or after the anchor text",
                },
            },
            "required": ["type", "anchor", "placement"],
        },
        {
            "type": "object",
            "properties": {"type": {"type": "string", "enum": ["selection"]}},
            "required": ["type"],
            "description": "Insert at current editor selection/cursor",
        },
    ],
}

_INSERT_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "position": _POSITION_SCHEMA,
        "content": {
            "type": "string",
            "description": (
                "The text to insert. Use markdown formatting: ## for headings, **bold**, "
                "*italic*, - for lists, > for quotes."
            ),
        },
    },
    "required": ["position", "content"],
}

_FIND_REPLACE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "searchPattern": {
            "type": "string",
            "minLength": 1,
            "description": "Text to search for (every occurrence is replaced)",
        },
        "replacement": {"type": "string", "description": "Replacement text"},
        "options": {
            "type": "object",
            "properties": {
                "matchCase": {"type": "boolean", "description": "Case-sensitive search (default: false)"},
                "wholeWord": {"type": "boolean", "description": "Match whole words only (default: false)"},
                "preserveCase": {
                    "type": "boolean",
                    "description": "Preserve original case (User→Customer, USER→CUSTOMER) (default: true)",
                },
            },
        },
    },
    "required": ["searchPattern", "replacement"],
}

_REPHRASE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "newText": {
            "type": "string",
            "minLength": 1,
            "description": "The rephrased/rewritten version of the selected text",
        },
        "style": {
            "type": "string",
            "enum": list(REPHRASE_STYLES),
            "description": "Style applied to the text",
        },
    },
    "required": ["newText"],
}

_TOOL_DESCRIPTIONS: Dict[str, str] = {
    REPLACE_TEXT: (
        "Replace existing text in the document. Quote the text to change in searchText exactly as it "
        "appears and give the rewritten version in newText."
    ),
    INSERT_TEXT: (
        "Insert NEW text at a specific position in the document (does not replace existing text). "
        "Use this to add content, write new sections, or expand the document."
    ),
    FIND_AND_REPLACE_ALL: (
        "Find ALL occurrences of text and replace them with new text. Supports case preservation "
        "and whole word matching."
    ),
    REPHRASE_TEXT: (
        "Rephrase/rewrite the SELECTED text. Use when the user wants to modify the selected text "
        "(longer, shorter, simpler, more formal, ...). Only works when text is selected."
    ),
}

_BOUNDARY_SCHEMAS: Dict[str, Dict[str, Any]] = {
    REPLACE_TEXT: _SEARCH_REPLACE_SCHEMA,
    INSERT_TEXT: _INSERT_SCHEMA,
    FIND_AND_REPLACE_ALL: _FIND_REPLACE_SCHEMA,
    REPHRASE_TEXT: _REPHRASE_SCHEMA,
}

_SEARCH_REPLACE_VALIDATOR = Draft7Validator(_SEARCH_REPLACE_SCHEMA)
_RANGE_REPLACE_VALIDATOR = Draft7Validator(_RANGE_REPLACE_SCHEMA)
_INSERT_VALIDATOR = Draft7Validator(_INSERT_SCHEMA)
_FIND_REPLACE_VALIDATOR = Draft7Validator(_FIND_REPLACE_SCHEMA)
_REPHRASE_VALIDATOR = Draft7Validator(_REPHRASE_SCHEMA)


def tool_schemas(enabled: Sequence[str] | None = None) -> list[Dict[str, Any]]:
    """Return OpenAI ``tools`` entries for the enabled tool names."""

    names = DEFAULT_TOOLS if enabled is None else tuple(enabled)
    unknown = [name for name in names if name not in _BOUNDARY_SCHEMAS]
    if unknown:
        raise ValueError(f"Unknown tool(s): {', '.join(unknown)}")
    return [
        {
            "type": "function",
            "function": {
                "name": name,
                "description": _TOOL_DESCRIPTIONS[name],
                "parameters": json.loads(json.dumps(_BOUNDARY_SCHEMAS[name])),
            },
        }
        for name in names
    ]


# -----------------------------------------------------------------------------
# Parsing
# -----------------------------------------------------------------------------


def parse_tool_call(call: ToolCall | str, arguments: Mapping[str, Any] | str | bytes | None = None) -> ToolRequest:
    """Validate a tool call and return the matching typed request.

    ``call`` is either a :class:`ToolCall` or the tool name, in which case
    ``arguments`` holds the raw (usually JSON-encoded) arguments.

    Raises:
        MalformedArgumentsError: when the name is unknown, the arguments are
            not a JSON object, or they do not match the tool's schema.
    """

    if isinstance(call, ToolCall):
        name, raw = call.tool, call.arguments
    else:
        name, raw = call, arguments
    payload = _coerce_arguments(name, raw)

    if name == REPLACE_TEXT:
        if "searchText" in payload:
            _validate(_SEARCH_REPLACE_VALIDATOR, name, payload)
            return SearchReplaceRequest(search_text=payload["searchText"], new_text=payload["newText"])
        _validate(_RANGE_REPLACE_VALIDATOR, name, payload)
        return ReplaceTextRequest(start=int(payload["from"]), end=int(payload["to"]), new_text=payload["newText"])
    if name == INSERT_TEXT:
        candidate = dict(payload)
        position = candidate.get("position")
        if isinstance(position, Mapping):
            candidate["position"] = _normalize_position(position)
        _validate(_INSERT_VALIDATOR, name, candidate)
        return InsertTextRequest(position=_build_position(candidate["position"]), content=candidate["content"])
    if name == FIND_AND_REPLACE_ALL:
        _validate(_FIND_REPLACE_VALIDATOR, name, payload)
        options = payload.get("options") or {}
        return FindReplaceRequest(
            pattern=payload["searchPattern"],
            replacement=payload["replacement"],
            match_case=bool(options.get("matchCase", False)),
            whole_word=bool(options.get("wholeWord", False)),
            preserve_case=bool(options.get("preserveCase", True)),
        )
    if name == REPHRASE_TEXT:
        _validate(_REPHRASE_VALIDATOR, name, payload)
        return RephraseTextRequest(new_text=payload["newText"], style=payload.get("style"))
    raise MalformedArgumentsError(detail=f"Unknown tool '{name}'", tool=name)


def _coerce_arguments(name: str, raw: Mapping[str, Any] | str | bytes | None) -> Dict[str, Any]:
    if raw is None:
        raise MalformedArgumentsError(detail="Tool call carried no arguments", tool=name)
    if isinstance(raw, Mapping):
        return dict(raw)
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    if not isinstance(raw, str):
        raise MalformedArgumentsError(detail=f"Unsupported argument payload {type(raw).__name__}", tool=name)
    try:
        parsed = json.loads(raw)
    except JSONDecodeError as exc:
        raise MalformedArgumentsError(detail=f"Arguments are not valid JSON: {exc.msg}", tool=name) from exc
    if not isinstance(parsed, Mapping):
        raise MalformedArgumentsError(detail="Arguments must decode to an object", tool=name)
    return dict(parsed)


def _normalize_position(position: Mapping[str, Any]) -> Dict[str, Any]:
    normalized = dict(position)
    if "type" not in normalized and "kind" in normalized:
        normalized["type"] = normalized.pop("kind")
    else:
        normalized.pop("kind", None)
    kind = normalized.get("type")
    if isinstance(kind, str):
        normalized["type"] = kind.strip().lower()
    return normalized


def _build_position(position: Mapping[str, Any]) -> PositionStrategy:
    kind = position["type"]
    if kind == "absolute":
        return AbsolutePosition(location=position["location"])
    if kind == "relative":
        return RelativePosition(anchor=position["anchor"], placement=position["placement"])
    return SelectionPosition()


def _validate(validator: Draft7Validator, name: str, payload: Mapping[str, Any]) -> None:
    try:
        validator.validate(payload)
    except ValidationError as error:
        raise MalformedArgumentsError(detail=_format_validation_error(error), tool=name) from error


def _format_validation_error(error: ValidationError) -> str:
    path = ".".join(str(part) for part in error.path)
    if path:
        return f"{path}: {error.message}"
    return error.message


__all__ = [
    "AbsolutePosition",
    "DEFAULT_TOOLS",
    "FIND_AND_REPLACE_ALL",
    "FindReplaceRequest",
    "INSERT_TEXT",
    "InsertTextRequest",
    "KNOWN_TOOLS",
    "PositionStrategy",
    "REPHRASE_STYLES",
    "REPHRASE_TEXT",
    "REPLACE_TEXT",
    "RelativePosition",
    "RephraseTextRequest",
    "ReplaceTextRequest",
    "SearchReplaceRequest",
    "SelectionPosition",
    "ToolCall",
    "ToolRequest",
    "parse_tool_call",
    "tool_schemas",
]
