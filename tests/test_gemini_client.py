"""
tests/test_gemini_client.py — Gemini client with the SDK mocked out
"""
from __future__ import annotations

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from google.api_core.exceptions import NotFound, ResourceExhausted, ServiceUnavailable

from app.clients import gemini_client
from app.clients.gemini_client import GeminiGenerator
from app.core.admission import AdmissionController
from app.core.errors import ExternalServiceError, TransientServiceError
from app.models import CodeValidationRequest, GenerationOptions, ValidationVerdict
from app.services.orchestrator import GenerationOrchestrator
from conftest import settle

OPTIONS = GenerationOptions(temperature=0.3, max_tokens=100, tag="code_validation")


def _response(text: str) -> SimpleNamespace:
    return SimpleNamespace(
        text=text,
        usage_metadata=SimpleNamespace(prompt_token_count=12, candidates_token_count=34),
    )


@pytest.fixture
def sdk(monkeypatch):
    """Replace GenerativeModel; return the mock generate_content_async."""
    generate = AsyncMock()
    model = MagicMock()
    model.generate_content_async = generate
    monkeypatch.setattr(gemini_client.genai, "GenerativeModel", MagicMock(return_value=model))
    monkeypatch.setattr(gemini_client.genai, "configure", MagicMock())
    return generate


@pytest.mark.asyncio
async def test_returns_stripped_text(sdk):
    sdk.return_value = _response("  {\"verdict\": \"correct\"}\n")
    generator = GeminiGenerator(api_key="k", model="gemini-test")
    assert await generator.generate("prompt", OPTIONS) == '{"verdict": "correct"}'
    assert generator.model_name == "gemini-test"
    gemini_client.genai.configure.assert_called_once_with(api_key="k")


@pytest.mark.asyncio
async def test_passes_generation_options_to_sdk(sdk):
    sdk.return_value = _response("ok")
    await GeminiGenerator(api_key="k").generate("prompt", OPTIONS)
    _, kwargs = gemini_client.genai.GenerativeModel.call_args
    config = kwargs["generation_config"]
    assert config.temperature == pytest.approx(0.3)
    assert config.max_output_tokens == 100


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [ResourceExhausted("quota"), ServiceUnavailable("overloaded")])
async def test_quota_and_overload_make_a_single_call(sdk, error):
    """The client never retries on its own; every SDK call needs an admission slot."""
    sdk.side_effect = error
    with pytest.raises(TransientServiceError) as exc_info:
        await GeminiGenerator(api_key="k").generate("prompt", OPTIONS)
    assert sdk.await_count == 1
    assert exc_info.value.stage == "generate"


@pytest.mark.asyncio
async def test_model_not_found_is_not_transient(sdk):
    sdk.side_effect = NotFound("no such model")
    with pytest.raises(ExternalServiceError) as exc_info:
        await GeminiGenerator(api_key="k").generate("prompt", OPTIONS)
    assert not isinstance(exc_info.value, TransientServiceError)
    assert sdk.await_count == 1


@pytest.mark.asyncio
async def test_unexpected_error_becomes_external_service_error(sdk):
    sdk.side_effect = ValueError("bad request")
    with pytest.raises(ExternalServiceError):
        await GeminiGenerator(api_key="k").generate("prompt", OPTIONS)


@pytest.mark.asyncio
async def test_empty_text_is_an_error(sdk):
    sdk.return_value = _response("   ")
    with pytest.raises(ExternalServiceError):
        await GeminiGenerator(api_key="k").generate("prompt", OPTIONS)


@pytest.mark.asyncio
async def test_timeout_is_transient(sdk):
    async def hang(prompt):
        await asyncio.Event().wait()

    sdk.side_effect = hang
    generator = GeminiGenerator(api_key="k", timeout_seconds=0.01)
    with pytest.raises(TransientServiceError):
        await generator.generate("prompt", OPTIONS)


# ── Retries through the orchestrator ──────────────────────────────────────────

@pytest.mark.asyncio
async def test_retry_after_quota_error_waits_for_a_new_slot(sdk, clock, cache, settings):
    """Every SDK call, retries included, holds its own admission grant."""
    admission = AdmissionController(limit=1, window_seconds=60, clock=clock)
    orchestrator = GenerationOrchestrator(
        generator=GeminiGenerator(api_key="k"),
        admission=admission,
        cache=cache,
        store=None,
        settings=settings,
        clock=clock,
    )
    calls: list[tuple[float, int]] = []

    async def sdk_call(prompt):
        calls.append((clock.now(), admission.count))
        if len(calls) == 1:
            raise ResourceExhausted("quota")
        return _response('{"verdict": "correct", "feedback": "ok"}')

    sdk.side_effect = sdk_call
    request = CodeValidationRequest(code="print(1)", exercise_id=1, language="python")
    task = asyncio.create_task(orchestrator.validate_code(request))
    await settle(20)
    clock.advance(1)  # backoff
    await settle(20)

    assert len(calls) == 1
    assert admission.queue_depth == 1

    clock.advance(59)
    await settle(20)
    result = await task

    assert result.response.verdict == ValidationVerdict.CORRECT
    assert calls == [(1000.0, 1), (1060.0, 1)]
    assert all(count <= admission.limit for _, count in calls)
