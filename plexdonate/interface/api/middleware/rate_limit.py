"""Per-IP sliding-window rate limit for webhook endpoints.

State is process-local: each replica keeps its own counters and a restart
resets them.
"""

import asyncio
import math
import time
from collections import deque

import logfire
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

WINDOW_SECONDS = 60.0

# Paths carrying provider webhooks, including the legacy registrations
LIMITED_PREFIXES = ("/webhook", "/api/paypal/webhook", "/api/stripe/webhook")


class SlidingWindowCounter:
    """Request timestamps per key within a trailing window."""

    def __init__(self, window_seconds: float = WINDOW_SECONDS) -> None:
        self.window_seconds = window_seconds
        self._buckets: dict[str, deque[float]] = {}
        self._lock = asyncio.Lock()

    def _prune(self, key: str, now: float) -> deque[float] | None:
        bucket = self._buckets.get(key)
        if bucket is None:
            return None
        cutoff = now - self.window_seconds
        while bucket and bucket[0] <= cutoff:
            bucket.popleft()
        if not bucket:
            del self._buckets[key]
            return None
        return bucket

    async def hit(self, key: str, limit: int, now: float | None = None) -> float:
        """Record a request unless the key is over its limit.

        Args:
            key: Client key, usually the remote IP
            limit: Requests allowed per window
            now: Monotonic clock reading, for tests

        Returns:
            0 if the request is allowed, else seconds until a slot frees up
        """
        now = time.monotonic() if now is None else now
        async with self._lock:
            bucket = self._prune(key, now)
            if bucket is not None and len(bucket) >= limit:
                return max(bucket[0] + self.window_seconds - now, 0.0)
            if bucket is None:
                bucket = self._buckets[key] = deque()
            bucket.append(now)
            return 0.0

    def __len__(self) -> int:
        return len(self._buckets)


def client_key(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Answers 429 once an IP exceeds ``requests_per_minute`` on webhook paths."""

    def __init__(
        self,
        app: ASGIApp,
        requests_per_minute: int = 100,
        enabled: bool = True,
        counter: SlidingWindowCounter | None = None,
    ) -> None:
        super().__init__(app)
        self.requests_per_minute = requests_per_minute
        self.enabled = enabled
        self.counter = counter or SlidingWindowCounter()

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if not self.enabled or not request.url.path.startswith(LIMITED_PREFIXES):
            return await call_next(request)

        key = client_key(request)
        wait = await self.counter.hit(key, self.requests_per_minute)
        if wait > 0:
            retry_after = max(1, math.ceil(wait))
            logfire.warn(
                "Rate limit exceeded",
                client=key,
                path=request.url.path,
                retry_after=retry_after,
            )
            return JSONResponse(
                {"error": "Too many requests"},
                status_code=429,
                headers={"Retry-After": str(retry_after)},
            )
        return await call_next(request)
