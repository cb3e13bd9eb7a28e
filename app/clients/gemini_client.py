"""
app/clients/gemini_client.py — Google Gemini API client
Async text generation: exactly one SDK call per generate(), bounded by a
timeout, and one structured log line per call. Quota, overload and deadline
errors leave as TransientServiceError; every other failure as
ExternalServiceError. Retries and admission belong to the orchestrator,
which acquires a slot before every call.
"""
from __future__ import annotations

import asyncio
import time
from typing import Any

import google.generativeai as genai
from google.api_core.exceptions import (
    DeadlineExceeded,
    NotFound,
    ResourceExhausted,
    ServiceUnavailable,
)
from loguru import logger

from app.core import logging as app_logging
from app.core.errors import ExternalServiceError, TransientServiceError
from app.models import GenerationOptions

_TRANSIENT_ERRORS = (ResourceExhausted, ServiceUnavailable, DeadlineExceeded, asyncio.TimeoutError)


def _response_text(response: Any) -> str:
    """Extract text; blocked or empty candidates raise ValueError in the SDK."""
    try:
        text = response.text
    except ValueError as exc:
        raise ExternalServiceError(f"Gemini returned no usable text: {exc}") from exc
    return text.strip() if text else ""


def _usage(response: Any) -> tuple[int, int]:
    usage = getattr(response, "usage_metadata", None)
    if usage is None:
        return 0, 0
    return (
        getattr(usage, "prompt_token_count", 0) or 0,
        getattr(usage, "candidates_token_count", 0) or 0,
    )


class GeminiGenerator:
    """Generator backed by google-generativeai. One SDK call per generate()."""

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.5-flash",
        timeout_seconds: float = 30.0,
    ) -> None:
        if api_key:
            genai.configure(api_key=api_key)
        else:
            logger.warning("GEMINI_API_KEY is not set. Gemini calls will fail.")
        self.model_name = model
        self._timeout = timeout_seconds

    def _build_model(self, options: GenerationOptions) -> Any:
        return genai.GenerativeModel(
            self.model_name,
            generation_config=genai.types.GenerationConfig(
                temperature=options.temperature,
                max_output_tokens=options.max_tokens,
            ),
        )

    async def generate(self, prompt: str, options: GenerationOptions) -> str:
        start_time = time.monotonic()
        try:
            gen_model = self._build_model(options)
            response = await asyncio.wait_for(
                gen_model.generate_content_async(prompt),
                timeout=self._timeout,
            )
        except _TRANSIENT_ERRORS as exc:
            latency_ms = (time.monotonic() - start_time) * 1000
            reason = "timeout" if isinstance(exc, asyncio.TimeoutError) else type(exc).__name__
            app_logging.log_gemini_call(self.model_name, options.tag, 0, 0, latency_ms, error=reason)
            raise TransientServiceError(f"Gemini {reason}: {exc}") from exc
        except NotFound as exc:
            logger.critical(
                f"Model '{self.model_name}' not found (possibly deprecated). "
                f"Update GEMINI_MODEL. Error: {exc}"
            )
            raise ExternalServiceError(f"Model '{self.model_name}' not found: {exc}") from exc
        except Exception as exc:
            latency_ms = (time.monotonic() - start_time) * 1000
            app_logging.log_gemini_call(
                self.model_name, options.tag, 0, 0, latency_ms, error=type(exc).__name__,
            )
            raise ExternalServiceError(f"Gemini call failed: {exc}") from exc

        latency_ms = (time.monotonic() - start_time) * 1000
        input_tokens, output_tokens = _usage(response)
        app_logging.log_gemini_call(
            self.model_name, options.tag, input_tokens, output_tokens, latency_ms,
        )
        text = _response_text(response)
        if not text:
            raise ExternalServiceError("Gemini returned an empty response")
        return text
