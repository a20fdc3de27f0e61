"""Response payloads returned by the proxy service."""

from __future__ import annotations

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Body returned for every proxied request that fails."""

    error: str


class CacheInvalidationResult(BaseModel):
    service: str
    deleted: int


class CacheCleanupResult(BaseModel):
    deleted: int
