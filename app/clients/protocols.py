"""
app/clients/protocols.py — Collaborator interfaces used by the orchestrator
"""
from __future__ import annotations

from typing import Any, Optional, Protocol

from app.models import GenerationOptions


class Generator(Protocol):
    """Text generator. Failures surface as ExternalServiceError."""

    model_name: str

    async def generate(self, prompt: str, options: GenerationOptions) -> str:
        ...


class PersistentStore(Protocol):
    """Best-effort record sink. Returns None when the store is unavailable."""

    async def save(self, record: dict[str, Any]) -> Optional[dict[str, Any]]:
        ...

    async def recent(
        self, kind: str, user_id: Optional[int] = None, limit: int = 20
    ) -> list[dict[str, Any]]:
        """Newest-first saved records of `kind`; empty when nothing is readable."""
        ...
