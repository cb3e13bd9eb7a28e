"""
app/core/errors.py — Gateway exception taxonomy
Every error carries the workflow stage it was raised in
(admission | generate | parse | persist) so callers can report it uniformly.
"""
from __future__ import annotations

from typing import Optional


class GatewayError(Exception):
    """Base class for failures raised by the generation core."""

    default_stage = "unknown"

    def __init__(self, message: str, stage: Optional[str] = None) -> None:
        super().__init__(message)
        self.stage = stage or self.default_stage

    def describe(self) -> str:
        return f"{self.stage}: {self}"


class RateLimitExceededError(GatewayError):
    """Admission denied even after waiting in the queue."""

    default_stage = "admission"

    def __init__(self, retry_after: int, message: Optional[str] = None) -> None:
        super().__init__(
            message or f"Rate limit exceeded. Retry after {retry_after}s.",
        )
        self.retry_after = retry_after


class AdmissionClosedError(GatewayError):
    """Raised to waiters when the admission controller shuts down."""

    default_stage = "admission"


class ExternalServiceError(GatewayError):
    """The Gemini call itself failed or timed out."""

    default_stage = "generate"


class TransientServiceError(ExternalServiceError):
    """Quota, overload or timeout on a single attempt; worth retrying after admission."""


class MalformedResponseError(GatewayError):
    """Gemini output could not be decoded into the expected structure."""

    default_stage = "parse"


class PersistenceUnavailableError(GatewayError):
    """Non-fatal: the persistent store could not record a result."""

    default_stage = "persist"
