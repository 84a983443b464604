"""HTTP middleware."""

from .rate_limit import RateLimitMiddleware, SlidingWindowCounter

__all__ = ["RateLimitMiddleware", "SlidingWindowCounter"]
