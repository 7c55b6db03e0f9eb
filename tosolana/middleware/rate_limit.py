"""
Rate limiting middleware with in-process storage.

Implements a fixed-window counter per (endpoint class, client IP). Counters
live in memory, so limits are per process.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response

from ..config import settings
from ..errors import RateLimitError

logger = logging.getLogger(__name__)

# Sweep expired windows once the table grows past this many keys
EVICTION_THRESHOLD = 10_000


@dataclass
class RateLimitResult:
    ok: bool
    remaining: int
    reset_at: float    # epoch milliseconds


def default_limits() -> Dict[str, Dict[str, int]]:
    """Limits per endpoint class, read from settings."""
    window = settings.rate_limit_window_seconds
    return {
        "quote": {"limit": settings.rate_limit_quote, "window": window},
        "execute": {"limit": settings.rate_limit_execute, "window": window},
        "status": {"limit": settings.rate_limit_status, "window": window},
        "default": {"limit": settings.rate_limit_default, "window": window},
    }


class RateLimiter:
    """
    Fixed-window rate limiter.

    The first request in a window records ``reset_at = now + window``; each
    request increments the count and is rejected once the count exceeds the
    maximum. Check-and-increment is atomic per process.
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        self._clock = clock or (lambda: time.time() * 1000)
        self._windows: Dict[str, List[float]] = {}    # key -> [count, reset_at]
        self._lock = threading.Lock()

    def check(self, key: str, window_ms: int, max_requests: int) -> RateLimitResult:
        now = self._clock()
        with self._lock:
            if len(self._windows) > EVICTION_THRESHOLD:
                self._evict_expired(now)

            entry = self._windows.get(key)
            if entry is None or now >= entry[1]:
                entry = [0, now + window_ms]
                self._windows[key] = entry

            entry[0] += 1
            count, reset_at = int(entry[0]), entry[1]

        if count > max_requests:
            return RateLimitResult(ok=False, remaining=0, reset_at=reset_at)
        return RateLimitResult(ok=True, remaining=max_requests - count, reset_at=reset_at)

    def _evict_expired(self, now: float) -> None:
        expired = [key for key, (_, reset_at) in self._windows.items() if now >= reset_at]
        for key in expired:
            del self._windows[key]

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()


def client_ip(request: Request) -> str:
    """First entry of X-Forwarded-For, else the peer address."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()
    return request.client.host if request.client else "unknown"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    FastAPI middleware for rate limiting.
    """

    def __init__(
        self,
        app,
        rate_limiter: Optional[RateLimiter] = None,
        limits: Optional[Dict[str, Dict[str, int]]] = None,
        api_prefix: Optional[str] = None,
        exclude_paths: Optional[list] = None,
    ):
        super().__init__(app)
        self.rate_limiter = rate_limiter or get_rate_limiter()
        self.limits = limits or default_limits()
        self.api_prefix = (settings.api_prefix if api_prefix is None else api_prefix).rstrip("/")
        self.exclude_paths = exclude_paths or [
            "/docs",
            "/redoc",
            "/openapi.json",
            "/healthz",
        ]

    def _endpoint_class(self, path: str) -> str:
        relative = path[len(self.api_prefix):] if path.startswith(self.api_prefix) else path
        if relative.startswith("/quote"):
            return "quote"
        if relative.startswith("/execute"):
            return "execute"
        if relative.startswith("/status"):
            return "status"
        return "default"

    def _get_limit_for_path(self, path: str) -> Dict[str, int]:
        endpoint = self._endpoint_class(path)
        return self.limits.get(endpoint) or self.limits["default"]

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        # Skip rate limiting for excluded paths
        path = request.url.path
        if path == "/" or any(path.startswith(p) for p in self.exclude_paths):
            return await call_next(request)

        endpoint = self._endpoint_class(path)
        limit_config = self._get_limit_for_path(path)
        result = self.rate_limiter.check(
            f"{endpoint}:{client_ip(request)}",
            limit_config["window"] * 1000,
            limit_config["limit"],
        )

        if not result.ok:
            now_ms = time.time() * 1000
            retry_after = max(1, int((result.reset_at - now_ms + 999) // 1000))
            error = RateLimitError(retry_after, limit_config["limit"], limit_config["window"])
            logger.info(f"Rate limit exceeded for {endpoint} by {client_ip(request)}")
            return JSONResponse(
                status_code=error.status_code,
                content=error.to_dict(),
                headers={
                    "Retry-After": str(retry_after),
                    "X-RateLimit-Limit": str(limit_config["limit"]),
                    "X-RateLimit-Remaining": "0",
                },
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(limit_config["limit"])
        response.headers["X-RateLimit-Remaining"] = str(result.remaining)
        return response


# Singleton instance
_rate_limiter: Optional[RateLimiter] = None


def get_rate_limiter() -> RateLimiter:
    """Get the singleton rate limiter instance."""
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = RateLimiter()
    return _rate_limiter
