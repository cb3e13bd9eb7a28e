"""
app/utils/validators.py — Gemini response parsing and schema enforcement
Turns free-form model text into verified structured records:
fence stripping → JSON decoding (ParseResult) → shape checks.
Stateless; never retries. Retry policy belongs to the orchestrator.
"""
from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass
from typing import Any, Optional

from loguru import logger
from pydantic import ValidationError

from app.core.errors import MalformedResponseError
from app.models import GeneratedQuestion, ValidationOutcome, ValidationVerdict

REQUIRED_OPTIONS = 4
QUESTIONS_FIELD = "questions"
VERDICT_FIELD = "verdict"

_FENCE_RE = re.compile(r"^```[\w+.-]*[ \t]*\n?(.*?)\n?```$", re.DOTALL)


@dataclass(frozen=True)
class ParseResult:
    """Outcome of decoding model text: exactly one of data / error is set."""
    data: Optional[dict[str, Any]] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> dict[str, Any]:
        if self.error is not None:
            raise MalformedResponseError(self.error)
        return self.data or {}


# ──────────────────────────────────────────────────────────────────────────────
# Decoding
# ──────────────────────────────────────────────────────────────────────────────

def strip_code_fence(text: str) -> str:
    """
    Trim and remove a surrounding markdown fence, tagged or not:
    ```json\\n{...}\\n``` → {...}
    An opening fence without a closing one loses only its first line.
    """
    text = text.strip()
    if not text.startswith("```"):
        return text
    match = _FENCE_RE.match(text)
    if match:
        return match.group(1).strip()
    _, _, rest = text.partition("\n")
    return rest.strip()


def decode_payload(text: str) -> ParseResult:
    """
    Decode model output into a JSON object.
    Falls back to the outermost {...} span when prose surrounds the object.
    """
    body = strip_code_fence(text or "")
    if not body:
        return ParseResult(error="Empty response from model")

    try:
        data = json.loads(body)
    except json.JSONDecodeError as exc:
        start, end = body.find("{"), body.rfind("}")
        if start == -1 or end <= start:
            logger.debug(f"JSON parse failed: {exc} | Text: {body[:200]!r}")
            return ParseResult(error=f"Response is not valid JSON: {exc.msg}")
        try:
            data = json.loads(body[start:end + 1])
        except json.JSONDecodeError as inner:
            logger.debug(f"JSON parse failed: {inner} | Text: {body[:200]!r}")
            return ParseResult(error=f"Response is not valid JSON: {inner.msg}")

    if not isinstance(data, dict):
        return ParseResult(error=f"Expected a JSON object, got {type(data).__name__}")
    return ParseResult(data=data)


# ──────────────────────────────────────────────────────────────────────────────
# Question batches
# ──────────────────────────────────────────────────────────────────────────────

def is_valid_question(item: Any) -> bool:
    """Non-empty text, exactly 4 options, exactly 1 marked correct."""
    if not isinstance(item, dict):
        return False
    if not isinstance(item.get("text"), str) or not item["text"].strip():
        return False
    options = item.get("options")
    if not isinstance(options, list) or len(options) != REQUIRED_OPTIONS:
        return False
    if not all(isinstance(o, dict) for o in options):
        return False
    correct = [o for o in options if o.get("is_correct") is True]
    return len(correct) == 1


def parse_question_batch(raw_text: str) -> list[GeneratedQuestion]:
    """
    Parse a question batch. Invalid elements are discarded; an empty list
    is a valid result. Raises MalformedResponseError if the text cannot be
    decoded or lacks the top-level `questions` list.
    """
    data = decode_payload(raw_text).unwrap()
    items = data.get(QUESTIONS_FIELD)
    if not isinstance(items, list):
        raise MalformedResponseError(
            f"Response is missing the `{QUESTIONS_FIELD}` list"
        )

    questions: list[GeneratedQuestion] = []
    for index, item in enumerate(items):
        if not is_valid_question(item):
            logger.warning(f"Discarding structurally invalid question #{index}")
            continue
        try:
            questions.append(GeneratedQuestion.model_validate(item))
        except ValidationError as exc:
            logger.warning(f"Discarding question #{index}: {exc.error_count()} field errors")

    if len(questions) < len(items):
        logger.info(f"Kept {len(questions)}/{len(items)} generated questions.")
    return questions


# ──────────────────────────────────────────────────────────────────────────────
# Code validation outcomes
# ──────────────────────────────────────────────────────────────────────────────

def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def compute_score(
    verdict: ValidationVerdict,
    passed: Optional[int],
    total: Optional[int],
    max_score: int,
) -> int:
    """
    correct → max_score
    incorrect with pass counts → round(max_score * passed / total)
    anything else → 0
    """
    if verdict == ValidationVerdict.CORRECT:
        return max_score
    if verdict == ValidationVerdict.INCORRECT and passed and total and total > 0:
        passed = max(0, min(passed, total))
        return _round_half_up(max_score * passed / total)
    return 0


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if v is not None]


def parse_validation_outcome(raw_text: str, max_score: int = 100) -> ValidationOutcome:
    """Parse a code-validation response. Raises MalformedResponseError."""
    data = decode_payload(raw_text).unwrap()
    raw_verdict = data.get(VERDICT_FIELD)
    if not isinstance(raw_verdict, str):
        raise MalformedResponseError(f"Response is missing the `{VERDICT_FIELD}` field")
    try:
        verdict = ValidationVerdict(raw_verdict.strip().lower())
    except ValueError:
        raise MalformedResponseError(f"Unknown verdict {raw_verdict!r}") from None

    passed = _as_int(data.get("tests_passed"))
    total = _as_int(data.get("tests_total"))

    return ValidationOutcome(
        verdict=verdict,
        score=compute_score(verdict, passed, total, max_score),
        feedback=str(data.get("feedback") or ""),
        issues=_string_list(data.get("issues")),
        tests_passed=max(0, passed or 0),
        tests_total=max(0, total or 0),
        suggestions=_string_list(data.get("suggestions")),
    )
