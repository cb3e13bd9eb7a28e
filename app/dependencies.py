"""
app/dependencies.py — Service container and FastAPI Depends() providers
State flows: lifespan builds GatewayServices → app.state.services →
Depends() injects. One container per process; no module-level mutable state.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from app.clients.gemini_client import GeminiGenerator
from app.clients.protocols import Generator, PersistentStore
from app.clients.store_client import build_store
from app.config import Settings
from app.core.admission import AdmissionController
from app.core.cache_manager import CacheGateway
from app.core.clock import Clock, SystemClock
from app.services.cleanup import CacheSweeper
from app.services.conversation import ConversationStore
from app.services.orchestrator import GenerationOrchestrator


@dataclass
class GatewayServices:
    settings: Settings
    clock: Clock
    admission: AdmissionController
    cache: CacheGateway
    conversations: ConversationStore
    orchestrator: GenerationOrchestrator
    sweeper: CacheSweeper

    @classmethod
    def build(
        cls,
        settings: Settings,
        clock: Optional[Clock] = None,
        generator: Optional[Generator] = None,
        store: Optional[PersistentStore] = None,
    ) -> "GatewayServices":
        clock = clock or SystemClock()
        admission = AdmissionController(
            limit=settings.gemini_rpm_limit,
            window_seconds=settings.rate_window_seconds,
            clock=clock,
            warning_percent=settings.utilization_warning_percent,
        )
        cache = CacheGateway(clock=clock, max_entries=settings.max_cache_entries)
        conversations = ConversationStore(max_turns=settings.chat_history_max_turns)
        generator = generator or GeminiGenerator(
            api_key=settings.gemini_api_key,
            model=settings.gemini_model,
            timeout_seconds=settings.gemini_timeout_seconds,
        )
        orchestrator = GenerationOrchestrator(
            generator=generator,
            admission=admission,
            cache=cache,
            store=store if store is not None else build_store(settings.store_dir),
            conversations=conversations,
            settings=settings,
            clock=clock,
        )
        sweeper = CacheSweeper(
            cache, settings.cache_sweep_interval_hours * 3600, clock=clock,
        )
        return cls(
            settings=settings,
            clock=clock,
            admission=admission,
            cache=cache,
            conversations=conversations,
            orchestrator=orchestrator,
            sweeper=sweeper,
        )

    def start(self) -> None:
        self.sweeper.start()

    async def shutdown(self) -> None:
        await self.sweeper.stop()
        self.admission.close()


def get_orchestrator(request: Request) -> GenerationOrchestrator:
    """Inject GenerationOrchestrator via Depends()."""
    return request.app.state.services.orchestrator  # type: ignore[no-any-return]
