"""
app/config.py — Pydantic BaseSettings configuration
Gemini admission limits, cache TTLs, chat transcript bounds and the
per-operation generation profiles used by the orchestrator.
"""
from __future__ import annotations

from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Application ────────────────────────────────────────────────────────────
    environment: str = "development"
    log_level: str = "INFO"
    port: int = 8000

    # ── Authentication — empty disables the X-API-Key check ───────────────────
    api_key: str = ""

    # ── Google Gemini ─────────────────────────────────────────────────────────
    gemini_api_key: str = ""
    gemini_model: str = "gemini-2.5-flash"
    gemini_timeout_seconds: float = 30.0
    gemini_max_attempts: int = 2

    # ── Admission control (requests per window) ───────────────────────────────
    gemini_rpm_limit: int = 15
    rate_window_seconds: float = 60.0
    # 0 → wait in the queue indefinitely
    admission_wait_timeout_seconds: float = 120.0
    utilization_warning_percent: float = 80.0

    # ── Caching ───────────────────────────────────────────────────────────────
    question_cache_ttl_hours: float = 24.0
    validation_cache_ttl_hours: float = 168.0
    cache_sweep_interval_hours: float = 24.0
    max_cache_entries: int = 1000

    # ── Chat assistant ────────────────────────────────────────────────────────
    chat_history_max_turns: int = 10
    chat_prompt_turns: int = 5

    # ── Code validation scoring ───────────────────────────────────────────────
    validation_max_score: int = 100

    # ── Persistence (empty → no-op store) ─────────────────────────────────────
    store_dir: str = ""

    # ── Generation profiles per operation ─────────────────────────────────────
    generation_profiles: dict[str, dict[str, float]] = {
        "question_generation": {"temperature": 0.8, "max_tokens": 5000},
        "code_validation": {"temperature": 0.3, "max_tokens": 1500},
        "chat_assistant": {"temperature": 0.9, "max_tokens": 800},
        "concept_explanation": {"temperature": 0.7, "max_tokens": 1500},
    }

    @field_validator("environment")
    @classmethod
    def validate_env(cls, v: str) -> str:
        allowed = {"development", "production", "testing"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @field_validator(
        "gemini_rpm_limit", "gemini_max_attempts", "chat_history_max_turns", "validation_max_score",
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @field_validator("rate_window_seconds")
    @classmethod
    def validate_window(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("rate_window_seconds must be positive")
        return v

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @property
    def admission_wait_timeout(self) -> float | None:
        if self.admission_wait_timeout_seconds <= 0:
            return None
        return self.admission_wait_timeout_seconds


@lru_cache()
def get_settings() -> Settings:
    """Return cached Settings instance. Use this everywhere."""
    return Settings()
