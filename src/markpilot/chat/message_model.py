"""Conversation data models."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Literal, Optional

LOGGER = logging.getLogger(__name__)


def _utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""

    return datetime.now(timezone.utc)


ChatRole = Literal["user", "assistant"]
ToolType = Literal["replace", "insert", "replace_all"]
IntentLabel = Literal["discussion", "edit"]


@dataclass(slots=True)
class Message:
    """Represents a row inside the conversation."""

    role: ChatRole
    content: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: datetime = field(default_factory=_utcnow)
    tool_type: Optional[ToolType] = None
    intent: Optional[IntentLabel] = None
    is_error: bool = False

    def as_context(self) -> Dict[str, str]:
        """Return the subset of the message the language model sees."""

        return {"role": self.role, "content": self.content}

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.tool_type:
            payload["tool_type"] = self.tool_type
        if self.intent:
            payload["intent"] = self.intent
        if self.is_error:
            payload["is_error"] = True
        return payload


class Conversation:
    """Ordered, append-only message list bound to one document.

    Switching documents resets the list in place so views holding a
    reference keep observing the same object.
    """

    def __init__(self, document_id: str | None = None) -> None:
        self._messages: List[Message] = []
        self.document_id = document_id

    def append(self, message: Message) -> Message:
        self._messages.append(message)
        return message

    def add_user(self, content: str, *, intent: IntentLabel | None = None) -> Message:
        return self.append(Message(role="user", content=content, intent=intent))

    def add_assistant(
        self,
        content: str,
        *,
        tool_type: ToolType | None = None,
        is_error: bool = False,
    ) -> Message:
        return self.append(Message(role="assistant", content=content, tool_type=tool_type, is_error=is_error))

    def as_context(self) -> List[Dict[str, str]]:
        return [message.as_context() for message in self._messages]

    def reset(self) -> None:
        self._messages.clear()

    def bind_document(self, document_id: str | None) -> bool:
        """Attach to ``document_id``; clears history when it differs.

        Returns ``True`` when the conversation was reset.
        """

        if document_id == self.document_id:
            return False
        LOGGER.debug("Resetting conversation for document %s (was %s)", document_id, self.document_id)
        self.document_id = document_id
        self.reset()
        return True

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    @property
    def last(self) -> Message | None:
        return self._messages[-1] if self._messages else None

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(tuple(self._messages))


__all__ = ["ChatRole", "Conversation", "IntentLabel", "Message", "ToolType"]
