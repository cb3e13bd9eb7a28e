"""
tests/test_conversation.py — Chat transcript store and prompt building
"""
from __future__ import annotations

import pytest

from app.models import ChatContext, ChatMessage, ChatRole
from app.services.conversation import ConversationStore, render_transcript, suggest_followups
from app.services.prompts import build_chat_prompt


def _msg(role: ChatRole, text: str) -> ChatMessage:
    return ChatMessage(role=role, content=text)


def test_transcript_drops_oldest_beyond_max_turns():
    store = ConversationStore(max_turns=3)
    for i in range(5):
        store.append("s", _msg(ChatRole.USER, f"m{i}"))
    assert [m.content for m in store.history("s")] == ["m2", "m3", "m4"]


def test_history_is_a_copy():
    store = ConversationStore(max_turns=3)
    store.append("s", _msg(ChatRole.USER, "hi"))
    store.history("s").clear()
    assert len(store.history("s")) == 1


def test_unknown_session_has_empty_history():
    assert ConversationStore().history("nobody") == []


def test_clear_reports_whether_history_existed():
    store = ConversationStore()
    store.append(1, _msg(ChatRole.USER, "hi"))
    assert len(store) == 1
    assert store.clear(1) is True
    assert store.clear(1) is False
    assert len(store) == 0


def test_max_turns_must_be_positive():
    with pytest.raises(ValueError):
        ConversationStore(max_turns=0)


def test_default_suggestions_without_context():
    assert suggest_followups(None) == ["Which topics can I study?", "Give me a practical example"]


def test_topic_only_suggestion():
    assert suggest_followups(ChatContext(current_topic="Loops")) == [
        "Can you explain more about Loops?"
    ]


def test_render_transcript_labels_speakers():
    text = render_transcript([_msg(ChatRole.USER, "why?"), _msg(ChatRole.ASSISTANT, "because")])
    assert text == "Student: why?\nAssistant: because"


def test_chat_prompt_includes_only_recent_turns():
    history = [_msg(ChatRole.USER, f"old {i}") for i in range(8)]
    prompt = build_chat_prompt("now", history, ChatContext(current_topic="Sorting"), prompt_turns=2)
    assert "old 5" not in prompt
    assert "old 6" in prompt and "old 7" in prompt
    assert "Topic: Sorting" in prompt
    assert "now" in prompt
