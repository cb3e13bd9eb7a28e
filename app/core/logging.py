"""
app/core/logging.py — loguru structured JSON logging setup
Every Gemini call, admission decision, cache lookup, workflow completion
and persistence attempt is logged as a structured JSON record.
"""
from __future__ import annotations

import json
import sys
import traceback
from datetime import datetime
from typing import Any, Optional

from loguru import logger


def setup_logging(log_level: str = "INFO") -> None:
    """Configure loguru for structured JSON output to stdout."""
    # Remove default loguru handler
    logger.remove()

    logger.add(
        sys.stdout,
        level=log_level.upper(),
        format="{message}",
        serialize=True,       # loguru built-in JSON serialization
        backtrace=True,
        diagnose=False,       # Disable in production for safety
        colorize=False,
    )


def _build_log_record(
    component: str,
    operation: str,
    extra: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    """Build a base structured log record."""
    record: dict[str, Any] = {
        "timestamp": datetime.utcnow().isoformat() + "Z",
        "component": component,
        "operation": operation,
    }
    if extra:
        record.update(extra)
    return record


# ──────────────────────────────────────────────────────────────────────────────
# Event helpers
# ──────────────────────────────────────────────────────────────────────────────

def log_gemini_call(
    model: str,
    operation: str,
    input_tokens: int,
    output_tokens: int,
    latency_ms: float,
    error: Optional[str] = None,
) -> None:
    """Every Gemini API call is logged, successful or not."""
    record = _build_log_record("gemini_client", "api_call", {
        "model": model,
        "operation": operation,
        "input_tokens": input_tokens,
        "output_tokens": output_tokens,
        "latency_ms": round(latency_ms, 2),
        "error": error,
    })
    if error:
        logger.warning(json.dumps(record))
    else:
        logger.info(json.dumps(record))


def log_admission(
    decision: str,  # granted | queued | dequeued | timeout | reset
    count: int,
    limit: int,
    queue_depth: int,
    waited_s: float = 0.0,
) -> None:
    """Admission decisions; utilization at or above the threshold is a WARNING."""
    utilization = (count / limit) * 100 if limit else 0.0
    record = _build_log_record("admission", decision, {
        "count": count,
        "limit": limit,
        "queue_depth": queue_depth,
        "utilization_percent": round(utilization, 1),
        "waited_s": round(waited_s, 3),
    })
    logger.debug(json.dumps(record))


def log_high_utilization(count: int, limit: int, utilization_percent: float) -> None:
    record = _build_log_record("admission", "high_utilization", {
        "count": count,
        "limit": limit,
        "utilization_percent": round(utilization_percent, 1),
    })
    logger.warning(json.dumps(record))


def log_cache_lookup(
    key: str,
    hit: bool,
    cached_size: int,
    requested: Optional[int] = None,
) -> None:
    record = _build_log_record("cache_gateway", "lookup", {
        "key": key,
        "hit": hit,
        "cached_size": cached_size,
        "requested": requested,
    })
    logger.debug(json.dumps(record))


def log_generation(
    workflow: str,
    cached: bool,
    items: int,
    persistence: str,
    latency_ms: float,
    error: Optional[str] = None,
) -> None:
    """Every orchestrator workflow completion is logged."""
    record = _build_log_record("orchestrator", workflow, {
        "cached": cached,
        "items": items,
        "persistence": persistence,
        "latency_ms": round(latency_ms, 2),
        "error": error,
    })
    logger.info(json.dumps(record))


def log_persistence(
    kind: str,
    success: bool,
    error: Optional[str] = None,
) -> None:
    record = _build_log_record("persistent_store", "save", {
        "kind": kind,
        "success": success,
        "error": error,
    })
    if success:
        logger.debug(json.dumps(record))
    else:
        logger.warning(json.dumps(record))


def log_error(
    component: str,
    operation: str,
    error: Exception,
    context: Optional[dict[str, Any]] = None,
) -> None:
    """Every error is logged with full context."""
    tb = traceback.format_exc()
    record = _build_log_record(component, operation, {
        "error_type": type(error).__name__,
        "error_message": str(error),
        "stage": getattr(error, "stage", None),
        "stack_trace": tb[:2000] if tb else "",
        "context": context or {},
    })
    logger.error(json.dumps(record))
