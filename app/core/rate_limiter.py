"""
app/core/rate_limiter.py — slowapi per-client HTTP rate limits
Coarse abuse protection per remote address. The Gemini call budget itself
is enforced by the AdmissionController (app/core/admission.py).
"""
from __future__ import annotations

from slowapi import Limiter
from slowapi.util import get_remote_address

# Single shared limiter instance — imported by main.py and routers
limiter = Limiter(key_func=get_remote_address)

RATE_LIMITS = {
    # Question generation: large outputs, cached per subtopic
    "generation": "20/minute",
    # Code validation: cached per submission
    "validation": "30/minute",
    # Chat + concept explanations
    "chat": "30/minute",
    # Stats / ping: cheap
    "stats": "60/minute",
}
