"""Bearer token checks for the cache management endpoints."""

from __future__ import annotations

import hmac
from typing import Optional

from fastapi import HTTPException, Request, status


def require_bearer_token(request: Request, token: Optional[str]) -> None:
    """Reject the request unless it carries ``Authorization: Bearer <token>``.

    When no token is configured every request is rejected, so the management
    surface stays closed by default.
    """
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Cache management is not configured")

    auth_header = request.headers.get("authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")
    if not hmac.compare_digest(auth_header, f"Bearer {token}"):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid bearer token")
