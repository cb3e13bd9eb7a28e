"""
app/services/conversation.py — Bounded per-session chat transcripts
In-memory, keyed by session id, owned by the service container.
Only the most recent `max_turns` messages are kept per session.
"""
from __future__ import annotations

from collections import deque
from typing import Hashable, Optional

from app.models import ChatContext, ChatMessage, ChatRole


class ConversationStore:
    def __init__(self, max_turns: int = 10) -> None:
        if max_turns < 1:
            raise ValueError("max_turns must be at least 1")
        self._max_turns = max_turns
        self._sessions: dict[Hashable, deque[ChatMessage]] = {}

    @property
    def max_turns(self) -> int:
        return self._max_turns

    def history(self, session_id: Hashable) -> list[ChatMessage]:
        return list(self._sessions.get(session_id, ()))

    def append(self, session_id: Hashable, *messages: ChatMessage) -> None:
        transcript = self._sessions.setdefault(session_id, deque(maxlen=self._max_turns))
        transcript.extend(messages)

    def clear(self, session_id: Hashable) -> bool:
        return self._sessions.pop(session_id, None) is not None

    def __len__(self) -> int:
        return len(self._sessions)


def suggest_followups(context: Optional[ChatContext]) -> list[str]:
    """Follow-up prompts shown under a chat reply (max 3)."""
    suggestions: list[str] = []
    if context and context.current_topic:
        suggestions.append(f"Can you explain more about {context.current_topic}?")
    if context and context.current_subtopic:
        suggestions.append(f"Show me an example of {context.current_subtopic}")
    if not suggestions:
        suggestions.append("Which topics can I study?")
        suggestions.append("Give me a practical example")
    return suggestions[:3]


def render_transcript(messages: list[ChatMessage]) -> str:
    lines = []
    for m in messages:
        speaker = "Student" if m.role == ChatRole.USER else "Assistant"
        lines.append(f"{speaker}: {m.content}")
    return "\n".join(lines)
