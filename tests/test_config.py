"""
tests/test_config.py — Settings validation
"""
from __future__ import annotations

import pytest
from pydantic import ValidationError

from app.config import Settings


def test_defaults():
    settings = Settings(_env_file=None)
    assert settings.gemini_rpm_limit == 15
    assert settings.rate_window_seconds == 60
    assert settings.admission_wait_timeout == 120
    assert settings.generation_profiles["code_validation"]["temperature"] == 0.3


def test_zero_wait_timeout_means_wait_forever():
    assert Settings(_env_file=None, admission_wait_timeout_seconds=0).admission_wait_timeout is None


def test_env_vars_override(monkeypatch):
    monkeypatch.setenv("GEMINI_RPM_LIMIT", "4")
    monkeypatch.setenv("STORE_DIR", "/data/records")
    settings = Settings(_env_file=None)
    assert settings.gemini_rpm_limit == 4
    assert settings.store_dir == "/data/records"


@pytest.mark.parametrize("field,value", [
    ("environment", "staging"),
    ("gemini_rpm_limit", 0),
    ("rate_window_seconds", 0),
    ("chat_history_max_turns", 0),
])
def test_invalid_values_rejected(field, value):
    with pytest.raises(ValidationError):
        Settings(_env_file=None, **{field: value})
