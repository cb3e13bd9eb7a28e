"""
app/routers/api.py — Tutor API endpoints
Endpoints under /api/v1/gemini: generate-questions, validate-code, chat, feedback,
explain-concept, stats. Responses use the {"success": true, "data": ...}
envelope. Gateway errors are mapped to HTTP responses in main.py.
"""

from fastapi import APIRouter, Depends, Query, Request

from app.core.auth import require_user_id, verify_api_key
from app.core.rate_limiter import RATE_LIMITS, limiter
from app.dependencies import get_orchestrator
from app.models import (
    ApiEnvelope,
    ChatRequest,
    CodeValidationRequest,
    ConceptExplanationRequest,
    QuestionBatchRequest,
)
from app.services.orchestrator import GenerationOrchestrator

router = APIRouter(dependencies=[Depends(verify_api_key)])


@router.post("/generate-questions", response_model=ApiEnvelope)
@limiter.limit(RATE_LIMITS["generation"])
async def generate_questions(
    request: Request,
    body: QuestionBatchRequest,
    _user_id: int = Depends(require_user_id),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> ApiEnvelope:
    """Generate (or serve cached) multiple-choice questions for a subtopic."""
    result = await orchestrator.generate_questions(body)
    return ApiEnvelope(data=result.response.model_dump(mode="json"))


@router.post("/validate-code", response_model=ApiEnvelope)
@limiter.limit(RATE_LIMITS["validation"])
async def validate_code(
    request: Request,
    body: CodeValidationRequest,
    user_id: int = Depends(require_user_id),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> ApiEnvelope:
    """Validate a code submission. Always answers 200 with an outcome."""
    result = await orchestrator.validate_code(body.model_copy(update={"user_id": user_id}))
    return ApiEnvelope(data=result.response.model_dump(mode="json"))


@router.post("/chat", response_model=ApiEnvelope)
@limiter.limit(RATE_LIMITS["chat"])
async def chat(
    request: Request,
    body: ChatRequest,
    user_id: int = Depends(require_user_id),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> ApiEnvelope:
    result = await orchestrator.chat(user_id, body)
    return ApiEnvelope(data=result.response.model_dump(mode="json"))


@router.delete("/chat", response_model=ApiEnvelope)
async def clear_chat(
    user_id: int = Depends(require_user_id),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> ApiEnvelope:
    cleared = orchestrator.clear_chat(user_id)
    return ApiEnvelope(data={"message": "Chat history cleared", "had_history": cleared})


@router.get("/feedback", response_model=ApiEnvelope)
@limiter.limit(RATE_LIMITS["stats"])
async def feedback_history(
    request: Request,
    limit: int = Query(20, ge=1, le=100),
    user_id: int = Depends(require_user_id),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> ApiEnvelope:
    """The caller's saved code-validation feedback, newest first."""
    records = await orchestrator.feedback_history(user_id, limit=limit)
    return ApiEnvelope(data={"feedback": records, "count": len(records)})


@router.post("/explain-concept", response_model=ApiEnvelope)
@limiter.limit(RATE_LIMITS["chat"])
async def explain_concept(
    request: Request,
    body: ConceptExplanationRequest,
    _user_id: int = Depends(require_user_id),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> ApiEnvelope:
    result = await orchestrator.explain_concept(body)
    return ApiEnvelope(data=result.response.model_dump(mode="json"))


@router.get("/stats", response_model=ApiEnvelope)
@limiter.limit(RATE_LIMITS["stats"])
async def stats(
    request: Request,
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> ApiEnvelope:
    """Admission controller snapshot: count, limit, queue depth, utilization."""
    return ApiEnvelope(data=orchestrator.stats().model_dump(mode="json"))
