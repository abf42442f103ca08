"""System prompt for command requests."""

from __future__ import annotations

from typing import Sequence

from .tools.definitions import DEFAULT_TOOLS, FIND_AND_REPLACE_ALL, INSERT_TEXT, REPHRASE_TEXT, REPLACE_TEXT

FALLBACK_REPLY = "I can help you brainstorm ideas or edit your document. What would you like to do?"


def build_system_prompt(
    document_text: str,
    *,
    word_count: int | None = None,
    selected_text: str | None = None,
    tools: Sequence[str] = DEFAULT_TOOLS,
) -> str:
    """Return the system message sent ahead of the conversation.

    The full plain text of the document is included so the model can quote
    targets verbatim; the persisted selection (if any) tells it what "this"
    refers to.
    """

    text = document_text or ""
    count = word_count if word_count is not None else len(text.split())
    selection_line = f'"{selected_text}"' if selected_text else "None"
    return f"""You are editing a document.

**Full Document Content** ({count} words, rendered text):
```
{text}
```

**Currently Selected Text**: {selection_line}

{_text_format_section()}

{_tools_section(tools)}

{_when_to_use_tools_section()}"""


def _text_format_section() -> str:
    return """**Text Format**:
- The content above is RENDERED TEXT, not markdown source
- When quoting document text, use the EXACT TEXT as shown above
- Search for "1. Item" not "1\\. Item", and "Introduction" not "## Introduction"
- Special characters (õ, ü, ä, ñ) work correctly; the document may not be in English"""


def _tools_section(tools: Sequence[str]) -> str:
    lines = ["**Available Tools**:"]
    descriptions = {
        REPLACE_TEXT: (
            "**replaceText** - Replace existing text. Put the exact current text in searchText "
            "and the new version in newText"
        ),
        INSERT_TEXT: (
            "**insertText** - Add NEW content at the start, the end, before/after an anchor text, "
            "or at the cursor. ALWAYS use markdown formatting in content"
        ),
        FIND_AND_REPLACE_ALL: (
            "**findAndReplaceAll** - Replace ALL occurrences of a word or phrase, optionally "
            "preserving case"
        ),
        REPHRASE_TEXT: (
            "**rephraseText** - Rewrite the Currently Selected Text (longer, shorter, simpler, more "
            "formal). Only use it when text is selected"
        ),
    }
    for index, name in enumerate(tools, start=1):
        if name in descriptions:
            lines.append(f"{index}. {descriptions[name]}")
    return "\n".join(lines)


def _when_to_use_tools_section() -> str:
    return """**When to Use Tools**:
Use tools ONLY when the user explicitly wants to EDIT the document
("rewrite this", "add a conclusion", "replace X with Y").

Respond conversationally (NO TOOLS) when the user asks questions, wants
information or advice, or is brainstorming.

If it is unclear whether the user wants to edit or discuss, PREFER A CONVERSATIONAL RESPONSE."""


__all__ = ["FALLBACK_REPLY", "build_system_prompt"]
