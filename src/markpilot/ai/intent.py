"""Heuristic labelling of prompts as discussion or edit requests.

The label is shown next to the user's message only; it never decides whether
a request is sent or which tools are offered.
"""

from __future__ import annotations

import re
from enum import Enum


class Intent(str, Enum):
    DISCUSSION = "discussion"
    EDIT = "edit"


_EDIT_VERBS = re.compile(
    r"\b(add|append|insert|write|rewrite|rephrase|replace|change|fix|correct|remove|delete|"
    r"shorten|lengthen|expand|simplify|summari[sz]e|translate|make|turn|convert|format|"
    r"capitali[sz]e|rename|update|edit|put)\b",
    re.IGNORECASE,
)
_QUESTION_OPENERS = re.compile(
    r"^\s*(what|why|how|who|when|where|which|is|are|does|do|can|could|should|would|explain|"
    r"tell me|describe|give me ideas|suggest|brainstorm)\b",
    re.IGNORECASE,
)


def classify_intent(prompt: str) -> Intent:
    """Return :attr:`Intent.EDIT` for imperative edit requests.

    Questions ("what does this mean?") and brainstorming requests are labelled
    as discussion even when they mention an edit verb, unless they are phrased
    as a polite command ("can you rewrite this?").
    """

    text = (prompt or "").strip()
    if not text:
        return Intent.DISCUSSION
    has_edit_verb = bool(_EDIT_VERBS.search(text))
    if _QUESTION_OPENERS.match(text):
        polite_command = re.match(r"^\s*(can|could|would|will)\s+you\b", text, re.IGNORECASE)
        if polite_command and has_edit_verb:
            return Intent.EDIT
        return Intent.DISCUSSION
    if text.endswith("?") and not has_edit_verb:
        return Intent.DISCUSSION
    return Intent.EDIT if has_edit_verb else Intent.DISCUSSION


__all__ = ["Intent", "classify_intent"]
