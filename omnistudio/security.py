"""
Request guards for the sidecar.

Provides:
- Optional sidecar API key (``X-API-Key``)
- Per-IP token bucket rate limiting
- Extraction of the caller's Bearer token for forwarding to the Studio API
"""

import time
from typing import Dict, Optional

from fastapi import Header, HTTPException, Request

from .config import settings


class TokenBucket:
    """In-memory per-key token bucket; best effort, single process."""

    def __init__(self, rps: float, burst: int):
        self.rps = max(rps, 0.1)
        self.burst = max(burst, 1)
        self.tokens: Dict[str, float] = {}
        self.updated: Dict[str, float] = {}

    def allow(self, key: str, now: Optional[float] = None) -> bool:
        now = time.time() if now is None else now
        elapsed = now - self.updated.get(key, now)
        level = min(float(self.burst), self.tokens.get(key, float(self.burst)) + elapsed * self.rps)
        self.updated[key] = now
        allowed = level >= 1.0
        self.tokens[key] = level - 1.0 if allowed else level
        return allowed

    def cleanup_old_entries(self, max_age_seconds: float = 3600, now: Optional[float] = None) -> int:
        """
        Remove keys not seen for ``max_age_seconds``; returns how many were dropped.

        A key idle that long has refilled to ``burst`` anyway.
        """
        now = time.time() if now is None else now
        stale_keys = [k for k, v in self.updated.items() if now - v > max_age_seconds]
        for k in stale_keys:
            self.tokens.pop(k, None)
            self.updated.pop(k, None)
        return len(stale_keys)

    def reset(self) -> None:
        self.tokens.clear()
        self.updated.clear()


bucket = TokenBucket(settings.RATE_LIMIT_RPS, settings.RATE_LIMIT_BURST)

# Tracked keys above this trigger a sweep of idle entries
MAX_TRACKED_KEYS = 1024


async def enforce_security(
    request: Request,
    x_api_key: Optional[str] = Header(default=None, alias="X-API-Key"),
) -> None:
    """
    FastAPI dependency that enforces the sidecar API key and rate limit.

    Raises:
        HTTPException: 401 for invalid API key, 429 for rate limit exceeded
    """
    if settings.SIDECAR_API_KEY and x_api_key != settings.SIDECAR_API_KEY:
        raise HTTPException(status_code=401, detail="Invalid API key")

    ip = request.client.host if request.client else "unknown"
    if len(bucket.updated) > MAX_TRACKED_KEYS:
        bucket.cleanup_old_entries()
    if not bucket.allow(ip):
        raise HTTPException(status_code=429, detail="Rate limit exceeded")


async def bearer_token(
    authorization: Optional[str] = Header(default=None),
) -> Optional[str]:
    """
    The caller's Bearer JWT, or the configured ``STUDIO_TOKEN``.

    Raises:
        HTTPException: 401 if the Authorization header is not a Bearer token
    """
    if authorization:
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            raise HTTPException(status_code=401, detail="Authorization must be a Bearer token")
        return token.strip()
    return settings.STUDIO_TOKEN
