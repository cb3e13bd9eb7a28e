"""
app/services/orchestrator.py — Cache-first Gemini workflows
The only component that calls the generator, always through the shared
AdmissionController:

    cache lookup → [miss] → acquire → generate → parse → cache store
                 → best-effort persistence → response

Every workflow returns a WorkflowResult that separates the primary
response from the persistence side effect; persistence failures are
recorded there and logged, never raised.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Generic, Hashable, Optional, TypeVar

from loguru import logger

from app.clients.protocols import Generator, PersistentStore
from app.config import Settings, get_settings
from app.core import logging as app_logging
from app.core.admission import AdmissionController
from app.core.cache_manager import (
    CacheGateway,
    hash_code,
    question_cache_key,
    validation_cache_key,
)
from app.core.clock import Clock, SystemClock
from app.core.errors import (
    ExternalServiceError,
    GatewayError,
    PersistenceUnavailableError,
    RateLimitExceededError,
    TransientServiceError,
)
from app.models import (
    AdmissionStats,
    ChatMessage,
    ChatRequest,
    ChatResponse,
    ChatRole,
    CodeValidationRequest,
    ConceptExplanationRequest,
    ConceptExplanationResponse,
    FeedbackRecord,
    GeneratedQuestion,
    GenerationOptions,
    PersistenceOutcome,
    PersistenceStatus,
    QuestionBatchRequest,
    QuestionBatchResponse,
    QuestionRecord,
    StoredOption,
    ValidationOutcome,
    ValidationVerdict,
    coerce_difficulty,
)
from app.services import prompts
from app.services.conversation import ConversationStore, suggest_followups
from app.utils.validators import parse_question_batch, parse_validation_outcome

T = TypeVar("T")

_VALIDATION_ERROR_FEEDBACK = (
    "There was an error processing your code. Please try again."
)


@dataclass
class WorkflowResult(Generic[T]):
    response: T
    persistence: PersistenceOutcome = field(default_factory=PersistenceOutcome)
    cached: bool = False


class GenerationOrchestrator:
    def __init__(
        self,
        generator: Generator,
        admission: AdmissionController,
        cache: CacheGateway,
        store: Optional[PersistentStore] = None,
        conversations: Optional[ConversationStore] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._clock: Clock = clock or SystemClock()
        self._generator = generator
        self._admission = admission
        self._cache = cache
        self._store = store
        self._conversations = conversations or ConversationStore(
            max_turns=self._settings.chat_history_max_turns
        )

    @property
    def conversations(self) -> ConversationStore:
        return self._conversations

    # ──────────────────────────────────────────────────────────────────────────
    # Shared stages
    # ──────────────────────────────────────────────────────────────────────────

    def _options(self, operation: str) -> GenerationOptions:
        profile = self._settings.generation_profiles.get(operation, {})
        return GenerationOptions(
            temperature=profile.get("temperature", 0.7),
            max_tokens=int(profile.get("max_tokens", 1024)),
            tag=operation,
        )

    async def _generate(self, prompt: str, operation: str) -> str:
        """
        Admission → generator call, once per attempt. Transient failures are
        retried with backoff up to gemini_max_attempts; each retry acquires
        its own slot. Raises RateLimitExceededError / ExternalServiceError.
        """
        options = self._options(operation)
        attempts = max(1, self._settings.gemini_max_attempts)
        for attempt in range(1, attempts + 1):
            await self._admission.acquire(timeout=self._settings.admission_wait_timeout)
            try:
                return await self._generator.generate(prompt, options)
            except TransientServiceError as exc:
                if attempt == attempts:
                    raise
                wait = 2 ** (attempt - 1)
                logger.warning(
                    f"{operation}: {exc} on attempt {attempt}/{attempts}. Retrying in {wait}s."
                )
                await self._clock.sleep(wait)
            except GatewayError:
                raise
            except Exception as exc:
                raise ExternalServiceError(f"Generator failed: {exc}") from exc
        raise ExternalServiceError(f"{operation}: no attempts made")

    async def _save(self, record: dict[str, Any]) -> bool:
        try:
            saved = await self._store.save(record)
        except Exception as exc:
            app_logging.log_error(
                "orchestrator", "persist",
                PersistenceUnavailableError(f"Store raised {type(exc).__name__}: {exc}"),
                {"kind": record.get("kind")},
            )
            return False
        return saved is not None

    async def _persist(self, records: list[dict[str, Any]]) -> PersistenceOutcome:
        if self._store is None or not records:
            return PersistenceOutcome(status=PersistenceStatus.SKIPPED)
        saved = 0
        for record in records:
            if await self._save(record):
                saved += 1
        if saved == len(records):
            return PersistenceOutcome(status=PersistenceStatus.SAVED, saved_count=saved)
        logger.warning(
            f"Store unavailable: saved {saved}/{len(records)} records; results kept in cache only."
        )
        return PersistenceOutcome(
            status=PersistenceStatus.UNAVAILABLE,
            saved_count=saved,
            error=f"{len(records) - saved} of {len(records)} records not saved",
        )

    # ──────────────────────────────────────────────────────────────────────────
    # Workflow 1: question batch generation
    # ──────────────────────────────────────────────────────────────────────────

    async def generate_questions(
        self, request: QuestionBatchRequest
    ) -> WorkflowResult[QuestionBatchResponse]:
        """
        Cache-first batch generation. A cached batch shorter than the requested
        quantity is a full miss; a hit returns the whole cached batch, exactly
        as the miss that stored it did. Zero valid generated items is a well-formed
        empty response. Admission, generator and undecodable-output failures
        propagate to the caller.
        """
        start = time.monotonic()
        key = question_cache_key(request.subtopic_id, request.difficulty.value)

        lookup = self._cache.lookup_batch(key, request.quantity)
        if lookup.found:
            questions = [
                GeneratedQuestion.model_validate(p) for p in lookup.payload
            ]
            response = QuestionBatchResponse(
                questions=questions,
                subtopic_id=request.subtopic_id,
                generated_count=len(questions),
                cached=True,
            )
            app_logging.log_generation(
                "generate_questions", True, len(questions),
                PersistenceStatus.SKIPPED.value, (time.monotonic() - start) * 1000,
            )
            return WorkflowResult(response=response, cached=True)

        try:
            raw = await self._generate(
                prompts.build_questions_prompt(request), "question_generation"
            )
            questions = parse_question_batch(raw)
        except GatewayError as exc:
            app_logging.log_error(
                "orchestrator", "generate_questions", exc,
                {"subtopic_id": request.subtopic_id, "stage": exc.stage},
            )
            raise

        persistence = PersistenceOutcome(status=PersistenceStatus.SKIPPED)
        if questions:
            self._cache.store(
                key,
                [q.model_dump(mode="json") for q in questions],
                self._settings.question_cache_ttl_hours * 3600,
            )
            persistence = await self._persist(
                [self._question_record(request, q) for q in questions]
            )
        else:
            logger.warning(
                f"No structurally valid questions generated for subtopic {request.subtopic_id}."
            )

        response = QuestionBatchResponse(
            questions=questions,
            subtopic_id=request.subtopic_id,
            generated_count=len(questions),
            cached=False,
        )
        app_logging.log_generation(
            "generate_questions", False, len(questions),
            persistence.status.value, (time.monotonic() - start) * 1000,
        )
        return WorkflowResult(response=response, persistence=persistence)

    def _question_record(
        self, request: QuestionBatchRequest, question: GeneratedQuestion
    ) -> dict[str, Any]:
        record = QuestionRecord(
            subtopic_id=request.subtopic_id,
            text=question.text,
            difficulty=coerce_difficulty(question.difficulty, request.difficulty),
            options=[
                StoredOption(
                    text=o.text,
                    is_correct=o.is_correct,
                    explanation=o.explanation,
                    order=i + 1,
                )
                for i, o in enumerate(question.options)
            ],
            correct_feedback=question.correct_feedback,
            incorrect_feedback=question.incorrect_feedback,
            key_concept=question.key_concept,
            model_used=self._generator.model_name,
        )
        return record.model_dump(mode="json")

    # ──────────────────────────────────────────────────────────────────────────
    # Workflow 2: code validation (never raises)
    # ──────────────────────────────────────────────────────────────────────────

    async def validate_code(
        self, request: CodeValidationRequest
    ) -> WorkflowResult[ValidationOutcome]:
        """
        Cache-first code validation keyed on SHA-256(code) + exercise id.
        Any failure becomes a ValidationOutcome with verdict "error".
        """
        start = time.monotonic()
        key = validation_cache_key(request.code, request.exercise_id)

        lookup = self._cache.lookup(key)
        if lookup.found and lookup.payload:
            outcome = ValidationOutcome.model_validate(lookup.payload[0])
            outcome.cached = True
            app_logging.log_generation(
                "validate_code", True, 1,
                PersistenceStatus.SKIPPED.value, (time.monotonic() - start) * 1000,
            )
            return WorkflowResult(response=outcome, cached=True)

        try:
            raw = await self._generate(
                prompts.build_validation_prompt(request), "code_validation"
            )
            outcome = parse_validation_outcome(raw, self._settings.validation_max_score)
        except Exception as exc:
            app_logging.log_error(
                "orchestrator", "validate_code", exc,
                {"exercise_id": request.exercise_id, "stage": getattr(exc, "stage", "unknown")},
            )
            outcome = self._error_outcome(exc)
            app_logging.log_generation(
                "validate_code", False, 0, PersistenceStatus.SKIPPED.value,
                (time.monotonic() - start) * 1000, error=str(exc),
            )
            return WorkflowResult(response=outcome)

        self._cache.store(
            key,
            [outcome.model_dump(mode="json", exclude={"cached"})],
            self._settings.validation_cache_ttl_hours * 3600,
        )
        persistence = await self._persist([self._feedback_record(request, outcome)])
        app_logging.log_generation(
            "validate_code", False, 1, persistence.status.value,
            (time.monotonic() - start) * 1000,
        )
        return WorkflowResult(response=outcome, persistence=persistence)

    @staticmethod
    def _error_outcome(exc: Exception) -> ValidationOutcome:
        feedback = _VALIDATION_ERROR_FEEDBACK
        if isinstance(exc, RateLimitExceededError):
            feedback = (
                f"The tutor is busy right now. Please try again in {exc.retry_after} seconds."
            )
        issue = exc.describe() if isinstance(exc, GatewayError) else str(exc)
        return ValidationOutcome(
            verdict=ValidationVerdict.ERROR,
            score=0,
            feedback=feedback,
            issues=[issue or type(exc).__name__],
        )

    def _feedback_record(
        self, request: CodeValidationRequest, outcome: ValidationOutcome
    ) -> dict[str, Any]:
        record = FeedbackRecord(
            user_id=request.user_id,
            content=outcome.feedback,
            context={
                "exercise_id": request.exercise_id,
                "code_hash": hash_code(request.code),
                "code": request.code,
                "language": request.language,
                "verdict": outcome.verdict.value,
                "score": outcome.score,
            },
            model_used=self._generator.model_name,
        )
        return record.model_dump(mode="json")

    # ──────────────────────────────────────────────────────────────────────────
    # Workflow 3: chat assistant (not cacheable)
    # ──────────────────────────────────────────────────────────────────────────

    async def chat(
        self, session_id: Hashable, request: ChatRequest
    ) -> WorkflowResult[ChatResponse]:
        """
        The transcript is only updated when the reply succeeds. A history sent
        with the request is used for the prompt instead of the stored one.
        """
        start = time.monotonic()
        user_message = ChatMessage(role=ChatRole.USER, content=request.message)
        if request.history is not None:
            prior = request.history[-self._conversations.max_turns:]
        else:
            prior = self._conversations.history(session_id)
        history = prior + [user_message]
        prompt = prompts.build_chat_prompt(
            request.message, history, request.context, self._settings.chat_prompt_turns,
        )

        try:
            reply = await self._generate(prompt, "chat_assistant")
        except GatewayError as exc:
            app_logging.log_error("orchestrator", "chat", exc, {"stage": exc.stage})
            raise

        self._conversations.append(
            session_id,
            user_message,
            ChatMessage(role=ChatRole.ASSISTANT, content=reply),
        )
        app_logging.log_generation(
            "chat", False, 1, PersistenceStatus.SKIPPED.value,
            (time.monotonic() - start) * 1000,
        )
        return WorkflowResult(
            response=ChatResponse(
                reply=reply,
                context_used=request.context is not None,
                suggestions=suggest_followups(request.context),
            )
        )

    def clear_chat(self, session_id: Hashable) -> bool:
        return self._conversations.clear(session_id)

    async def feedback_history(self, user_id: int, limit: int = 20) -> list[dict[str, Any]]:
        """Most recent code-validation feedback saved for `user_id`."""
        if self._store is None:
            return []
        return await self._store.recent("feedback", user_id=user_id, limit=limit)

    # ──────────────────────────────────────────────────────────────────────────
    # Workflow 4: concept explanation (free text, not cached)
    # ──────────────────────────────────────────────────────────────────────────

    async def explain_concept(
        self, request: ConceptExplanationRequest
    ) -> WorkflowResult[ConceptExplanationResponse]:
        try:
            explanation = await self._generate(
                prompts.build_concept_prompt(request), "concept_explanation"
            )
        except GatewayError as exc:
            app_logging.log_error(
                "orchestrator", "explain_concept", exc,
                {"concept": request.concept, "stage": exc.stage},
            )
            raise
        return WorkflowResult(
            response=ConceptExplanationResponse(
                concept=request.concept,
                explanation=explanation,
                language=request.language,
                level=request.level,
            )
        )

    # ──────────────────────────────────────────────────────────────────────────
    # Stats
    # ──────────────────────────────────────────────────────────────────────────

    def stats(self) -> AdmissionStats:
        return self._admission.stats()
