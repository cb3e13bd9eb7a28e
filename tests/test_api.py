"""
tests/test_api.py — HTTP surface tests with injected services
"""
from __future__ import annotations

import json

import pytest
from fastapi.testclient import TestClient

from app.core import auth
from app.core.errors import ExternalServiceError, RateLimitExceededError
from app.core.rate_limiter import limiter
from app.dependencies import GatewayServices
from app.main import app
from conftest import FakeGenerator, MemoryStore, questions_payload

USER = {"X-User-Id": "7"}


@pytest.fixture
def services(settings, clock):
    return GatewayServices.build(
        settings, clock=clock, generator=FakeGenerator(), store=MemoryStore(),
    )


@pytest.fixture
def client(services, monkeypatch):
    monkeypatch.setattr(limiter, "enabled", False)
    monkeypatch.setattr(auth.settings, "api_key", "")
    app.state.services = services
    # No context manager: the lifespan would replace the injected services
    return TestClient(app)


def _script(services, *responses):
    services.orchestrator._generator.responses.extend(responses)


def test_ping(client):
    response = client.get("/api/ping")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert response.headers["X-Content-Type-Options"] == "nosniff"


def test_generate_questions_envelope(client, services):
    _script(services, questions_payload(3))
    response = client.post(
        "/api/v1/gemini/generate-questions",
        json={"subtopic_id": 42, "quantity": 3, "difficulty": "basica"},
        headers=USER,
    )
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"]["generated_count"] == 3
    assert body["data"]["cached"] is False
    assert len(body["data"]["questions"][0]["options"]) == 4


def test_generate_questions_requires_user(client):
    response = client.post("/api/v1/gemini/generate-questions", json={"subtopic_id": 1})
    assert response.status_code == 401


def test_generate_questions_rejects_bad_quantity(client):
    response = client.post(
        "/api/v1/gemini/generate-questions",
        json={"subtopic_id": 1, "quantity": 50},
        headers=USER,
    )
    assert response.status_code == 422


def test_external_failure_maps_to_502(client, services):
    _script(services, ExternalServiceError("Gemini unavailable"))
    response = client.post(
        "/api/v1/gemini/generate-questions", json={"subtopic_id": 1}, headers=USER,
    )
    assert response.status_code == 502
    assert response.json() == {
        "success": False, "error": "Gemini unavailable", "stage": "generate",
    }


def test_admission_denied_maps_to_429_with_retry_after(client, services):
    _script(services, RateLimitExceededError(retry_after=30))
    response = client.post(
        "/api/v1/gemini/explain-concept", json={"concept": "closures"}, headers=USER,
    )
    assert response.status_code == 429
    assert response.headers["Retry-After"] == "30"
    assert response.json()["retry_after"] == 30


def test_validate_code_failure_still_returns_200(client, services):
    _script(services, ExternalServiceError("timeout"))
    response = client.post(
        "/api/v1/gemini/validate-code",
        json={"code": "print(1)", "exercise_id": 2, "language": "python"},
        headers=USER,
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["verdict"] == "error"
    assert data["score"] == 0


def test_validate_code_uses_header_user_id(client, services):
    _script(services, json.dumps({"verdict": "correct", "feedback": "Great"}))
    response = client.post(
        "/api/v1/gemini/validate-code",
        json={"code": "print(1)", "exercise_id": 2, "language": "python", "user_id": 99},
        headers=USER,
    )
    assert response.json()["data"]["score"] == 100
    store = services.orchestrator._store
    assert store.records[0]["user_id"] == 7


def test_chat_and_clear(client, services):
    _script(services, "Hello! What would you like to learn?")
    response = client.post("/api/v1/gemini/chat", json={"message": "hi"}, headers=USER)
    assert response.status_code == 200
    assert response.json()["data"]["reply"].startswith("Hello")
    assert len(services.conversations.history(7)) == 2

    response = client.delete("/api/v1/gemini/chat", headers=USER)
    assert response.json()["data"]["had_history"] is True
    assert services.conversations.history(7) == []


def test_chat_rejects_blank_message(client):
    response = client.post("/api/v1/gemini/chat", json={"message": "   "}, headers=USER)
    assert response.status_code == 422


def test_stats(client, services):
    _script(services, "reply")
    client.post("/api/v1/gemini/chat", json={"message": "hi"}, headers=USER)
    data = client.get("/api/v1/gemini/stats").json()["data"]
    assert data["count"] == 1
    assert data["limit"] == services.settings.gemini_rpm_limit
    assert data["queue_depth"] == 0


def test_api_key_enforced_when_configured(client, monkeypatch):
    monkeypatch.setattr(auth.settings, "api_key", "secret")
    assert client.get("/api/v1/gemini/stats").status_code == 401
    response = client.get("/api/v1/gemini/stats", headers={"X-API-Key": "secret"})
    assert response.status_code == 200


def test_non_integer_user_id_is_rejected(client):
    response = client.post(
        "/api/v1/gemini/chat", json={"message": "hi"}, headers={"X-User-Id": "abc"},
    )
    assert response.status_code == 400


def test_feedback_history_is_scoped_to_caller(client, services):
    verdict = json.dumps({"verdict": "correct", "feedback": "Great"})
    _script(services, verdict, verdict)
    body = {"code": "print(1)", "exercise_id": 2, "language": "python"}
    client.post("/api/v1/gemini/validate-code", json=body, headers=USER)
    client.post(
        "/api/v1/gemini/validate-code",
        json={**body, "code": "print(2)"},
        headers={"X-User-Id": "8"},
    )

    data = client.get("/api/v1/gemini/feedback", headers=USER).json()["data"]
    assert data["count"] == 1
    assert data["feedback"][0]["user_id"] == 7
    assert data["feedback"][0]["content"] == "Great"


def test_chat_accepts_caller_history(client, services):
    _script(services, "Recursion again?")
    response = client.post(
        "/api/v1/gemini/chat",
        json={
            "message": "and the base case?",
            "history": [{"role": "user", "content": "explain recursion"}],
        },
        headers=USER,
    )
    assert response.status_code == 200
    assert "explain recursion" in services.orchestrator._generator.prompts[-1]
