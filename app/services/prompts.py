"""
app/services/prompts.py — Prompt templates for each Gemini workflow
Templates are loaded from prompts/<name>.txt when present, else the inline
fallback is used. Response formats here must match app/utils/validators.py.
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

from app.models import (
    ChatContext,
    ChatMessage,
    CodeValidationRequest,
    ConceptExplanationRequest,
    QuestionBatchRequest,
)
from app.services.conversation import render_transcript

PROMPTS_DIR = Path(__file__).parent.parent.parent / "prompts"

_QUESTIONS_PROMPT_FALLBACK = """
Generate {quantity} multiple-choice questions about {topic} in {language}.

MANDATORY:
- Topic: {topic}
- Language: {language}
- Every question MUST use real {language} syntax (no pseudocode)
- No generic questions ("What is the purpose of programming?")
- Difficulty: {difficulty}

Each question has EXACTLY 4 options and EXACTLY 1 correct option.

Respond ONLY with JSON (no markdown):
{{
  "questions": [
    {{
      "text": "<question with {language} code about {topic}>",
      "difficulty": "{difficulty}",
      "options": [
        {{"text": "<option A>", "is_correct": true, "explanation": "<why>"}},
        {{"text": "<option B>", "is_correct": false, "explanation": "<why not>"}},
        {{"text": "<option C>", "is_correct": false, "explanation": "<why not>"}},
        {{"text": "<option D>", "is_correct": false, "explanation": "<why not>"}}
      ],
      "correct_feedback": "<short praise>",
      "incorrect_feedback": "<short hint>",
      "key_concept": "{topic}"
    }}
  ]
}}
"""

_VALIDATION_PROMPT_FALLBACK = """
You are an expert programming tutor. Analyse the student's code and give
educational feedback.

STUDENT CODE:
```{language}
{code}
```

PROBLEM STATEMENT:
{problem_statement}

TEST CASES:
{test_cases}

INSTRUCTIONS:
1. Decide whether the code is correct
2. Identify syntax or logic errors
3. Give constructive, step-by-step feedback

Respond ONLY with JSON:
{{
  "verdict": "correct" | "incorrect" | "error",
  "issues": ["<error found>"],
  "tests_passed": <number>,
  "tests_total": {tests_total},
  "feedback": "<step-by-step explanation>",
  "suggestions": ["<improvement>"]
}}
"""

_CHAT_PROMPT_FALLBACK = """
You are a friendly programming tutor.

YOUR ROLE:
- Guide the student towards understanding
- Ask questions that encourage critical thinking
- Give hints, not complete solutions
- Be patient and encouraging
{context}
HISTORY:
{history}

CURRENT MESSAGE:
{message}

Reply naturally and educationally:
"""

_CONCEPT_PROMPT_FALLBACK = """
Explain the programming concept "{concept}"{language_clause}.

STUDENT LEVEL: {level}

INSTRUCTIONS:
1. Start with a clear, simple definition
2. Give practical code examples{language_clause}
3. Explain common use cases
4. Mention common mistakes to avoid
5. Suggest resources to go deeper

FORMAT:
- Definition
- Code example
- Use cases
- Tips
"""

_prompt_cache: dict[str, str] = {}


def _load_prompt(name: str, fallback: str) -> str:
    """Load prompts/<name>.txt once; fall back to the inline template."""
    if name not in _prompt_cache:
        try:
            _prompt_cache[name] = (PROMPTS_DIR / f"{name}.txt").read_text(encoding="utf-8")
        except FileNotFoundError:
            _prompt_cache[name] = fallback
    return _prompt_cache[name]


def build_questions_prompt(request: QuestionBatchRequest) -> str:
    return _load_prompt("questions", _QUESTIONS_PROMPT_FALLBACK).format(
        quantity=request.quantity,
        topic=request.topic or "programming",
        language=request.language or "general",
        difficulty=request.difficulty.value,
    )


def build_validation_prompt(request: CodeValidationRequest) -> str:
    return _load_prompt("code_validation", _VALIDATION_PROMPT_FALLBACK).format(
        language=request.language,
        code=request.code,
        problem_statement=request.problem_statement or "Not specified",
        test_cases=json.dumps(request.test_cases, indent=2, default=str),
        tests_total=len(request.test_cases),
    )


def build_chat_prompt(
    message: str,
    history: list[ChatMessage],
    context: Optional[ChatContext],
    prompt_turns: int = 5,
) -> str:
    context_text = ""
    if context is not None:
        context_text = (
            "\nCONTEXT:\n"
            f"- Topic: {context.current_topic or 'Not specified'}\n"
            f"- Subtopic: {context.current_subtopic or 'Not specified'}\n"
        )
    return _load_prompt("chat", _CHAT_PROMPT_FALLBACK).format(
        context=context_text,
        history=render_transcript(history[-prompt_turns:]),
        message=message,
    )


def build_concept_prompt(request: ConceptExplanationRequest) -> str:
    language_clause = f" using {request.language}" if request.language else ""
    return _load_prompt("concept", _CONCEPT_PROMPT_FALLBACK).format(
        concept=request.concept,
        language_clause=language_clause,
        level=request.level,
    )
