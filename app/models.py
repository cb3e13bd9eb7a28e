"""
app/models.py — All Pydantic data schemas
Quiz questions, code validation outcomes, chat transcripts, admission stats,
cache entries and the records handed to the persistent store.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator


# ──────────────────────────────────────────────────────────────────────────────
# Enumerations
# ──────────────────────────────────────────────────────────────────────────────

class Difficulty(str, Enum):
    BASIC = "basic"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class ValidationVerdict(str, Enum):
    CORRECT = "correct"
    INCORRECT = "incorrect"
    ERROR = "error"


class ChatRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


_DIFFICULTY_ALIASES = {
    "basic": Difficulty.BASIC,
    "basica": Difficulty.BASIC,
    "básica": Difficulty.BASIC,
    "intermediate": Difficulty.INTERMEDIATE,
    "intermedia": Difficulty.INTERMEDIATE,
    "advanced": Difficulty.ADVANCED,
    "avanzada": Difficulty.ADVANCED,
}


def coerce_difficulty(value: Any, default: Difficulty = Difficulty.INTERMEDIATE) -> Difficulty:
    """Map free-form difficulty labels onto Difficulty; unknown labels → default."""
    if isinstance(value, Difficulty):
        return value
    if not isinstance(value, str):
        return default
    return _DIFFICULTY_ALIASES.get(value.strip().lower(), default)


class PersistenceStatus(str, Enum):
    SAVED = "saved"
    SKIPPED = "skipped"
    UNAVAILABLE = "unavailable"


# ──────────────────────────────────────────────────────────────────────────────
# Generator options
# ──────────────────────────────────────────────────────────────────────────────

class GenerationOptions(BaseModel):
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=1024, ge=1)
    tag: str = "unknown"  # operation name, used for logging


# ──────────────────────────────────────────────────────────────────────────────
# Question generation
# ──────────────────────────────────────────────────────────────────────────────

class AnswerOption(BaseModel):
    text: str
    is_correct: bool = False
    explanation: Optional[str] = None


class GeneratedQuestion(BaseModel):
    text: str = Field(min_length=1)
    options: list[AnswerOption]
    difficulty: Optional[str] = None
    correct_feedback: str = ""
    incorrect_feedback: str = ""
    key_concept: Optional[str] = None

    @property
    def correct_option(self) -> Optional[AnswerOption]:
        return next((o for o in self.options if o.is_correct), None)


class QuestionBatchRequest(BaseModel):
    subtopic_id: int
    quantity: int = Field(default=5, ge=1, le=20)
    difficulty: Difficulty = Difficulty.INTERMEDIATE
    topic: Optional[str] = None
    language: Optional[str] = None

    @field_validator("difficulty", mode="before")
    @classmethod
    def normalize_difficulty(cls, v: Any) -> Any:
        if isinstance(v, str) and v.strip().lower() in _DIFFICULTY_ALIASES:
            return _DIFFICULTY_ALIASES[v.strip().lower()]
        return v


class QuestionBatchResponse(BaseModel):
    questions: list[GeneratedQuestion] = []
    subtopic_id: int
    generated_count: int = 0
    cached: bool = False


# ──────────────────────────────────────────────────────────────────────────────
# Code validation
# ──────────────────────────────────────────────────────────────────────────────

class CodeValidationRequest(BaseModel):
    code: str = Field(min_length=1)
    exercise_id: int
    user_id: Optional[int] = None
    language: str
    problem_statement: Optional[str] = None
    test_cases: list[Any] = []


class ValidationOutcome(BaseModel):
    verdict: ValidationVerdict
    score: int = Field(default=0, ge=0)
    feedback: str = ""
    issues: list[str] = []
    tests_passed: int = 0
    tests_total: int = 0
    suggestions: list[str] = []
    cached: bool = False


# ──────────────────────────────────────────────────────────────────────────────
# Chat assistant / concept explanation
# ──────────────────────────────────────────────────────────────────────────────

class ChatMessage(BaseModel):
    role: ChatRole
    content: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class ChatContext(BaseModel):
    current_topic: Optional[str] = None
    current_subtopic: Optional[str] = None


class ChatRequest(BaseModel):
    message: str
    context: Optional[ChatContext] = None
    # Caller-held transcript; replaces the stored one for this prompt only
    history: Optional[list[ChatMessage]] = Field(default=None, max_length=50)

    @field_validator("message")
    @classmethod
    def validate_message(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Message must not be empty")
        return v.strip()


class ChatResponse(BaseModel):
    reply: str
    context_used: bool = False
    suggestions: list[str] = []


class ConceptExplanationRequest(BaseModel):
    concept: str = Field(min_length=1)
    language: Optional[str] = None
    level: str = "intermediate"


class ConceptExplanationResponse(BaseModel):
    concept: str
    explanation: str
    language: Optional[str] = None
    level: str = "intermediate"


# ──────────────────────────────────────────────────────────────────────────────
# Admission stats
# ──────────────────────────────────────────────────────────────────────────────

class AdmissionStats(BaseModel):
    count: int
    limit: int
    queue_depth: int
    utilization_percent: float
    window_remaining_seconds: float


# ──────────────────────────────────────────────────────────────────────────────
# Cache — persisted shape of CacheGateway entries
# ──────────────────────────────────────────────────────────────────────────────

class CacheEntry(BaseModel):
    key: str
    payload: list[dict[str, Any]]
    stored_at: float
    ttl_seconds: float

    def is_live(self, now: float) -> bool:
        return now < self.stored_at + self.ttl_seconds


class CacheLookup(BaseModel):
    found: bool = False
    payload: list[dict[str, Any]] = []


class CacheData(BaseModel):
    schema_version: str = "1.0"
    last_sweep: Optional[float] = None
    entries: dict[str, CacheEntry] = {}


# ──────────────────────────────────────────────────────────────────────────────
# Persistent store records
# ──────────────────────────────────────────────────────────────────────────────

class StoredOption(BaseModel):
    text: str
    is_correct: bool
    explanation: Optional[str] = None
    order: int


class QuestionRecord(BaseModel):
    kind: str = "question"
    subtopic_id: int
    text: str
    difficulty: Difficulty
    options: list[StoredOption]
    correct_feedback: str = ""
    incorrect_feedback: str = ""
    key_concept: Optional[str] = None
    generated_by_llm: bool = True
    model_used: str
    created_at: datetime = Field(default_factory=datetime.utcnow)


class FeedbackRecord(BaseModel):
    kind: str = "feedback"
    user_id: Optional[int] = None
    feedback_type: str = "code_validation"
    content: str
    context: dict[str, Any] = {}
    model_used: str
    created_at: datetime = Field(default_factory=datetime.utcnow)


class PersistenceOutcome(BaseModel):
    """Side-effect result of a workflow; recorded, never raised."""
    status: PersistenceStatus = PersistenceStatus.SKIPPED
    saved_count: int = 0
    error: Optional[str] = None


# ──────────────────────────────────────────────────────────────────────────────
# API envelope
# ──────────────────────────────────────────────────────────────────────────────

class ApiEnvelope(BaseModel):
    success: bool = True
    data: Any = None
