"""Per-IP rate limiting for the public chat endpoint.

The widget is embedded on public clinic sites, so ``POST /api/chat`` is
limited to ``CHAT_RATE_LIMIT_PER_MINUTE`` requests per client IP over a
sliding one-minute window.  The check runs before the request body is
parsed, so a throttled visitor costs no model or store calls.

Hits are kept in process memory; each worker limits on its own.
"""

from __future__ import annotations

import logging
import time
from collections import defaultdict, deque

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from src.config import CHAT_RATE_LIMIT_PER_MINUTE

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60.0
LIMITED_PATHS = frozenset({"/api/chat"})


def client_ip(request: Request) -> str:
    """First ``X-Forwarded-For`` hop when behind a proxy, else the peer address."""
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded.strip():
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "anonymous"


class SlidingWindowLimiter:
    """Counts hits per key over the last ``WINDOW_SECONDS``."""

    def __init__(self, requests_per_minute: int = CHAT_RATE_LIMIT_PER_MINUTE) -> None:
        self.requests_per_minute = requests_per_minute
        self._hits: dict[str, deque[float]] = defaultdict(deque)

    def allow(self, key: str, now: float | None = None) -> bool:
        if self.requests_per_minute <= 0:
            return True
        now = time.monotonic() if now is None else now
        bucket = self._hits[key]
        while bucket and now - bucket[0] >= WINDOW_SECONDS:
            bucket.popleft()
        if len(bucket) >= self.requests_per_minute:
            return False
        bucket.append(now)
        return True

    def reset(self) -> None:
        self._hits.clear()


chat_limiter = SlidingWindowLimiter()


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, limiter: SlidingWindowLimiter | None = None) -> None:
        super().__init__(app)
        self.limiter = limiter or chat_limiter

    async def dispatch(self, request: Request, call_next):
        if request.method == "POST" and request.url.path in LIMITED_PATHS:
            ip = client_ip(request)
            if not self.limiter.allow(ip):
                logger.warning("Rate limit hit for %s on %s", ip, request.url.path)
                return JSONResponse(
                    {"detail": "Too many requests. Please wait a moment and try again."},
                    status_code=429,
                )
        return await call_next(request)
