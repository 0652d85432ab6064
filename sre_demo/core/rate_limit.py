import logging
import math
import time

from cachetools import TTLCache
from fastapi import Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Fixed-window, per-client request limiter.

    Each client gets a counter that lives for exactly one window. The counter
    is mutated in place so TTLCache never refreshes its expiry; the window
    therefore restarts only once the entry has expired.
    """

    def __init__(self, window_ms: int, max_requests: int, maxsize: int = 10_000):
        self.window_seconds = window_ms / 1000
        self.max_requests = max_requests
        self._windows = TTLCache(maxsize=maxsize, ttl=self.window_seconds)

    def _client_key(self, request: Request) -> str:
        return request.client.host if request.client else "unknown"

    def hit(self, key: str) -> tuple[int, float]:
        """Count a request for key; returns (count, seconds until reset)."""
        now = time.monotonic()
        window = self._windows.get(key)
        if window is None:
            window = [0, now]
            self._windows[key] = window
        window[0] += 1
        reset_in = max(self.window_seconds - (now - window[1]), 0)
        return window[0], reset_in

    async def __call__(self, request: Request, call_next):
        count, reset_in = self.hit(self._client_key(request))
        remaining = max(self.max_requests - count, 0)

        if count > self.max_requests:
            logger.warning(
                f"Rate limit exceeded: {self._client_key(request)} "
                f"{request.method} {request.url.path}"
            )
            response = JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={
                    "error": "Too Many Requests",
                    "message": "You have exceeded the rate limit. Please try again later.",
                    "retry_after": math.ceil(reset_in),
                },
            )
        else:
            response = await call_next(request)

        response.headers["RateLimit-Limit"] = str(self.max_requests)
        response.headers["RateLimit-Remaining"] = str(remaining)
        response.headers["RateLimit-Reset"] = str(math.ceil(reset_in))
        return response
