"""Tests for the conversation model."""

from __future__ import annotations

from markpilot.chat.message_model import Conversation, Message


def test_turns_are_appended_in_order() -> None:
    conversation = Conversation("doc")

    conversation.add_user("Fix it", intent="edit")
    conversation.add_assistant("Replaced the text in the document.", tool_type="replace")

    assert [message.role for message in conversation] == ["user", "assistant"]
    assert conversation.last is not None and conversation.last.tool_type == "replace"
    assert conversation.as_context() == [
        {"role": "user", "content": "Fix it"},
        {"role": "assistant", "content": "Replaced the text in the document."},
    ]


def test_bind_document_resets_only_on_change() -> None:
    conversation = Conversation("doc")
    conversation.add_user("hello")

    assert conversation.bind_document("doc") is False
    assert len(conversation) == 1
    assert conversation.bind_document("other") is True
    assert len(conversation) == 0
    assert conversation.document_id == "other"


def test_message_to_dict_omits_empty_fields() -> None:
    message = Message(role="assistant", content="oops", is_error=True)

    payload = message.to_dict()

    assert payload["is_error"] is True
    assert "tool_type" not in payload
    assert payload["id"] == message.id
    assert payload["timestamp"].endswith("+00:00")


def test_message_ids_are_unique() -> None:
    assert Message(role="user", content="a").id != Message(role="user", content="a").id
