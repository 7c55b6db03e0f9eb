from .logging_middleware import RequestLoggingMiddleware
from .rate_limit import (
    RateLimiter,
    RateLimitMiddleware,
    RateLimitResult,
    client_ip,
    get_rate_limiter,
)

__all__ = [
    "RequestLoggingMiddleware",
    "RateLimiter",
    "RateLimitMiddleware",
    "RateLimitResult",
    "client_ip",
    "get_rate_limiter",
]
