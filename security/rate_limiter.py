"""
RateLimiter — per-client sliding-window rate limiter for FastAPI.

Allows ``RATE_LIMIT_REQUESTS`` requests per ``RATE_LIMIT_WINDOW_SECONDS``
for each client IP (100 per 15 minutes by default).
Implemented as ASGI middleware.
"""

from __future__ import annotations

import logging
import time
from collections import defaultdict, deque
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from config.settings import get_settings
from core.exceptions import RateLimitExceededError

logger = logging.getLogger(__name__)


class RateLimiter(BaseHTTPMiddleware):
    """Sliding-window rate limiter middleware.

    Tracks request times per client IP and returns 429 once the
    configured number of requests within the window is used up.
    """

    def __init__(self, app: Any) -> None:
        super().__init__(app)
        settings = get_settings()
        self._limit = settings.RATE_LIMIT_REQUESTS
        self._window = float(settings.RATE_LIMIT_WINDOW_SECONDS)
        self._requests: dict[str, deque[float]] = defaultdict(deque)

    async def dispatch(self, request: Request, call_next: Any) -> Any:
        """Check the rate limit before processing the request."""
        if request.url.path == "/health":
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        history = self._requests[client_ip]

        now = time.monotonic()
        while history and history[0] <= now - self._window:
            history.popleft()

        if len(history) >= self._limit:
            retry_after = int(history[0] + self._window - now) + 1
            logger.warning("Rate limit exceeded for IP %s", client_ip)
            return JSONResponse(
                status_code=429,
                content={
                    "detail": RateLimitExceededError().message,
                    "retry_after_seconds": retry_after,
                },
                headers={"Retry-After": str(retry_after)},
            )

        history.append(now)
        return await call_next(request)
