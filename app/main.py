"""
app/main.py — FastAPI application entry point
Includes: lifespan management (service container, cache sweeper), CORS,
          per-client rate limiting, security headers, gateway error mapping,
          startup validation, ping endpoint.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from app.config import get_settings
from app.core.errors import GatewayError, RateLimitExceededError
from app.core.logging import log_error, setup_logging
from app.core.rate_limiter import limiter
from app.dependencies import GatewayServices
from app.routers import api

settings = get_settings()

_VERSION = "1.0.0"


# ──────────────────────────────────────────────────────────────────────────────
# Application Lifespan
# ──────────────────────────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    FastAPI lifespan: startup → yield → shutdown.
    Startup: initialize logging, validate critical environment variables,
             build the service container and start the cache sweeper.
    Shutdown: stop the sweeper and release queued admission waiters.
    """
    setup_logging(settings.log_level)
    logger.info("Gemini tutor gateway starting up...")

    _validate_env()

    services = getattr(app.state, "services", None)
    if services is None:
        services = GatewayServices.build(settings)
        app.state.services = services
    services.start()

    logger.info(
        f"Startup complete. Admission limit {settings.gemini_rpm_limit} per "
        f"{settings.rate_window_seconds}s, model {settings.gemini_model}."
    )
    yield
    logger.info("Shutting down Gemini tutor gateway.")
    await services.shutdown()


def _validate_env() -> None:
    """Warn loudly on missing secrets; the app still starts."""
    required = [
        ("gemini_api_key", "GEMINI_API_KEY"),
        ("api_key", "API_KEY"),
    ]
    missing = [env_name for attr, env_name in required if not getattr(settings, attr, None)]
    if missing:
        logger.critical(f"Missing env vars: {', '.join(missing)}")
        logger.warning("App will start but affected features will be unavailable until credentials are set.")


# ──────────────────────────────────────────────────────────────────────────────
# FastAPI App
# ──────────────────────────────────────────────────────────────────────────────

app = FastAPI(
    title="Gemini Tutor Gateway",
    description=(
        "Rate-limited, cache-first gateway to Gemini for quiz generation, "
        "code validation and a tutoring chat assistant."
    ),
    version=_VERSION,
    docs_url="/docs" if not settings.is_production else None,
    redoc_url=None,
    lifespan=lifespan,
)

# ── Per-client rate limiting — slowapi ────────────────────────────────────────
app.state.limiter = limiter
app.add_exception_handler(
    RateLimitExceeded,
    lambda req, exc: JSONResponse(
        status_code=429,
        content={"success": False, "error": "Rate limit exceeded. Slow down."},
    ),
)
app.add_middleware(SlowAPIMiddleware)

# ── CORS ──────────────────────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.is_development else [],
    allow_credentials=False,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["*"],
)


# ── Security headers middleware ───────────────────────────────────────────────
@app.middleware("http")
async def add_security_headers(request: Request, call_next) -> Response:
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    if settings.is_production:
        response.headers["Strict-Transport-Security"] = (
            "max-age=31536000; includeSubDomains"
        )
    return response


# ── Gateway error mapping ─────────────────────────────────────────────────────
@app.exception_handler(RateLimitExceededError)
async def admission_denied_handler(request: Request, exc: RateLimitExceededError) -> JSONResponse:
    return JSONResponse(
        status_code=429,
        content={
            "success": False,
            "error": str(exc),
            "stage": exc.stage,
            "retry_after": exc.retry_after,
        },
        headers={"Retry-After": str(exc.retry_after)},
    )


@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    # generate / parse failures are upstream faults; anything else is ours
    status_code = 502 if exc.stage in ("generate", "parse") else 500
    log_error("api", request.url.path, exc, {"status_code": status_code})
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": str(exc), "stage": exc.stage},
    )


# ── Routers ───────────────────────────────────────────────────────────────────
app.include_router(api.router, prefix="/api/v1/gemini", tags=["gemini"])


# ── Ping endpoint ─────────────────────────────────────────────────────────────
@app.get("/api/ping", tags=["health"])
async def ping():
    """Liveness check. Does NOT call any external services."""
    return {"status": "ok", "version": _VERSION}
