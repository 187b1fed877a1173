"""Rate limiting for the OrbitKeys API.

This module provides token bucket-based rate limiting with:
- A global per-client limit applied as middleware (100 requests / minute)
- A stricter per-client limit for the root-key endpoints (30 / 5 minutes)
- 429 Too Many Requests responses with Retry-After

Token Bucket Algorithm:
- Each client has a bucket holding at most ``max_requests`` tokens
- Tokens refill at ``max_requests / window_seconds`` per second
- Each request consumes one token
- If no tokens are available, the request is rejected with 429
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger("orbitkeys.api.ratelimit")


@dataclass
class RateLimitConfig:
    """Configuration for rate limiting.

    Attributes:
        enabled: Whether rate limiting is enabled
        max_requests: Requests allowed per window (also the burst size)
        window_seconds: Length of the window
        exempt_paths: Paths exempt from rate limiting
    """

    enabled: bool = True
    max_requests: int = 100
    window_seconds: float = 60.0
    exempt_paths: list[str] = field(
        default_factory=lambda: [
            "/health",
            "/docs",
            "/openapi.json",
        ]
    )


@dataclass
class TokenBucket:
    """Token bucket for rate limiting.

    Attributes:
        capacity: Maximum tokens in bucket (burst limit)
        refill_rate: Tokens added per second
        tokens: Current token count
        last_refill: Timestamp of last refill
    """

    capacity: float
    refill_rate: float  # tokens per second
    tokens: float = field(default=0.0)
    last_refill: float = field(default_factory=time.monotonic)

    def __post_init__(self):
        self.tokens = self.capacity

    def consume(self, tokens: float = 1.0) -> bool:
        """Try to consume tokens from the bucket.

        Returns:
            True if tokens were consumed, False if not enough tokens
        """
        self._refill()

        if self.tokens >= tokens:
            self.tokens -= tokens
            return True
        return False

    def _refill(self) -> None:
        now = time.monotonic()
        elapsed = now - self.last_refill
        self.tokens = min(self.capacity, self.tokens + elapsed * self.refill_rate)
        self.last_refill = now

    def get_retry_after(self) -> float:
        """Get seconds until a token will be available."""
        if self.tokens >= 1.0:
            return 0.0
        return (1.0 - self.tokens) / self.refill_rate

    def get_remaining(self) -> int:
        self._refill()
        return int(self.tokens)


class RateLimiter:
    """Per-client token bucket rate limiter.

    Thread-safe for concurrent access.
    """

    def __init__(self, config: RateLimitConfig | None = None):
        """Initialize the rate limiter.

        Args:
            config: Rate limiting configuration
        """
        self.config = config or RateLimitConfig()
        self._buckets: dict[str, TokenBucket] = {}
        self._lock = threading.Lock()

    def _get_bucket(self, key: str) -> TokenBucket:
        """Get or create the bucket for a client (must be called with lock held)."""
        bucket = self._buckets.get(key)
        if bucket is None:
            bucket = TokenBucket(
                capacity=float(self.config.max_requests),
                refill_rate=self.config.max_requests / self.config.window_seconds,
            )
            self._buckets[key] = bucket
        return bucket

    def check(self, key: str) -> tuple[bool, dict[str, str]]:
        """Check if a request is allowed under the rate limit.

        Args:
            key: The rate limit key (client address)

        Returns:
            Tuple of (allowed, headers) where headers contains rate limit info
        """
        if not self.config.enabled:
            return True, {}

        with self._lock:
            bucket = self._get_bucket(key)
            allowed = bucket.consume()
            headers = {
                "X-RateLimit-Limit": str(self.config.max_requests),
                "X-RateLimit-Remaining": str(bucket.get_remaining()),
            }
            if not allowed:
                headers["Retry-After"] = str(int(bucket.get_retry_after()) + 1)

        return allowed, headers

    def reset(self, key: str | None = None) -> None:
        """Reset the bucket for a key, or all buckets."""
        with self._lock:
            if key is None:
                self._buckets.clear()
            else:
                self._buckets.pop(key, None)

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            return {
                "enabled": self.config.enabled,
                "max_requests": self.config.max_requests,
                "window_seconds": self.config.window_seconds,
                "active_buckets": len(self._buckets),
            }


def get_client_key(request: Request) -> str:
    """Rate limit key for a request: the client address."""
    client_ip = request.client.host if request.client else "unknown"
    return f"ip_{client_ip}"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """FastAPI middleware applying the global per-client rate limit."""

    def __init__(self, app, rate_limiter: RateLimiter | None = None):
        """Initialize the middleware.

        Args:
            app: FastAPI application
            rate_limiter: RateLimiter instance (created if not provided)
        """
        super().__init__(app)
        self.rate_limiter = rate_limiter or RateLimiter()

    async def dispatch(self, request: Request, call_next):
        if self._is_exempt(request.url.path):
            return await call_next(request)

        key = get_client_key(request)
        allowed, headers = self.rate_limiter.check(key)

        if not allowed:
            logger.warning(f"Rate limit exceeded for {key}")
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={
                    "detail": "Rate limit exceeded. Please retry later.",
                    "retry_after": headers.get("Retry-After", "60"),
                },
                headers=headers,
            )

        response = await call_next(request)

        for header, value in headers.items():
            response.headers[header] = value

        return response

    def _is_exempt(self, path: str) -> bool:
        return any(path.startswith(exempt) for exempt in self.rate_limiter.config.exempt_paths)


def rate_limit_dependency(state_attr: str):
    """Create a FastAPI dependency enforcing a limiter stored on app.state.

    Used for route groups that need a stricter limit than the middleware.

    Args:
        state_attr: Name of the RateLimiter attribute on ``app.state``

    Returns:
        FastAPI dependency function
    """

    async def check_rate_limit(request: Request) -> None:
        rate_limiter: RateLimiter = getattr(request.app.state, state_attr)
        key = get_client_key(request)

        allowed, headers = rate_limiter.check(key)
        if not allowed:
            logger.warning(f"Rate limit ({state_attr}) exceeded for {key}")
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Rate limit exceeded. Please retry later.",
                headers=headers,
            )

    return check_rate_limit


__all__ = [
    "RateLimitConfig",
    "TokenBucket",
    "RateLimiter",
    "RateLimitMiddleware",
    "get_client_key",
    "rate_limit_dependency",
]
