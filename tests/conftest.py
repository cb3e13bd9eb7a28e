"""
tests/conftest.py — Shared pytest fixtures
"""
from __future__ import annotations

import asyncio
import json
from typing import Any, Optional

import pytest

from app.config import Settings
from app.core.admission import AdmissionController
from app.core.cache_manager import CacheGateway
from app.core.clock import ManualClock
from app.models import GenerationOptions
from app.services.conversation import ConversationStore
from app.services.orchestrator import GenerationOrchestrator


async def settle(rounds: int = 5) -> None:
    """Let every ready task run until it blocks again."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def make_question(text: str = "What does len([1, 2]) return?", correct: int = 0) -> dict:
    return {
        "text": text,
        "difficulty": "intermediate",
        "options": [
            {"text": f"option {i}", "is_correct": i == correct, "explanation": "because"}
            for i in range(4)
        ],
        "correct_feedback": "Well done.",
        "incorrect_feedback": "Check the docs.",
        "key_concept": "lists",
    }


def questions_payload(count: int) -> str:
    return json.dumps({"questions": [make_question(f"Question {i}?") for i in range(count)]})


class FakeGenerator:
    """Scripted Generator: returns queued responses or raises queued exceptions."""

    model_name = "fake-model"

    def __init__(self, *responses: Any) -> None:
        self.responses = list(responses)
        self.prompts: list[str] = []
        self.options: list[GenerationOptions] = []

    @property
    def calls(self) -> int:
        return len(self.prompts)

    async def generate(self, prompt: str, options: GenerationOptions) -> str:
        self.prompts.append(prompt)
        self.options.append(options)
        response = self.responses.pop(0) if self.responses else ""
        if isinstance(response, BaseException):
            raise response
        return response


class MemoryStore:
    def __init__(self) -> None:
        self.records: list[dict[str, Any]] = []

    async def save(self, record: dict[str, Any]) -> Optional[dict[str, Any]]:
        self.records.append(record)
        return record

    async def recent(self, kind: str, user_id: Optional[int] = None, limit: int = 20) -> list[dict[str, Any]]:
        matches = [
            r for r in self.records
            if r.get("kind") == kind and (user_id is None or r.get("user_id") == user_id)
        ]
        return matches[::-1][:limit]


class UnavailableStore:
    def __init__(self, raise_error: bool = False) -> None:
        self.raise_error = raise_error
        self.attempts = 0

    async def save(self, record: dict[str, Any]) -> Optional[dict[str, Any]]:
        self.attempts += 1
        if self.raise_error:
            raise ConnectionError("store offline")
        return None


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(start=1000.0)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        environment="testing",
        api_key="",
        gemini_api_key="",
        gemini_rpm_limit=15,
        rate_window_seconds=60,
        admission_wait_timeout_seconds=120,
    )


@pytest.fixture
def cache(clock) -> CacheGateway:
    return CacheGateway(clock=clock, max_entries=100)


@pytest.fixture
def memory_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def build_orchestrator(clock, cache, settings, memory_store):
    """Factory: orchestrator wired to the manual clock and a scripted generator."""

    def _build(*responses: Any, store: Any = memory_store, limit: int = 15):
        generator = FakeGenerator(*responses)
        admission = AdmissionController(limit=limit, window_seconds=60, clock=clock)
        orchestrator = GenerationOrchestrator(
            generator=generator,
            admission=admission,
            cache=cache,
            store=store,
            conversations=ConversationStore(max_turns=settings.chat_history_max_turns),
            settings=settings,
            clock=clock,
        )
        return orchestrator, generator

    return _build
