"""
app/core/auth.py — API key check and session identity
Authentication proper lives upstream; this layer only checks the shared
X-API-Key (when configured) and reads the caller's id from X-User-Id.
"""
from __future__ import annotations

import secrets
from typing import Optional

from fastapi import Header, HTTPException, status

from app.config import get_settings

settings = get_settings()


async def verify_api_key(
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
) -> bool:
    """Validate X-API-Key header. Disabled when API_KEY is empty."""
    if not settings.api_key:
        return True
    if not x_api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-API-Key header required",
        )
    if not secrets.compare_digest(x_api_key, settings.api_key):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
        )
    return True


async def require_user_id(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
) -> int:
    """The authenticated user's id, used as the chat session key."""
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not authenticated",
        )
    try:
        return int(x_user_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-User-Id must be an integer",
        ) from None
