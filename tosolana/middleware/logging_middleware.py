"""
HTTP request logging middleware.

One ``http_request`` event per call. The request id (and the session id for
status polls) is bound to structlog's context so every log line emitted while
handling the request carries it.
"""

import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from .rate_limit import client_ip

logger = structlog.stdlib.get_logger("http")

# Polled constantly by load balancers and clients; logged at debug only
QUIET_PATHS = frozenset({"/healthz", "/"})


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex[:12]

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)
        session_id = request.query_params.get("sessionId")
        if session_id:
            structlog.contextvars.bind_contextvars(session_id=session_id)

        start = time.perf_counter()
        status_code = 500

        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers["x-request-id"] = request_id
            return response
        finally:
            duration_ms = round((time.perf_counter() - start) * 1000, 1)

            if status_code >= 500:
                log = logger.error
            elif status_code >= 400:
                log = logger.warning
            elif request.url.path in QUIET_PATHS:
                log = logger.debug
            else:
                log = logger.info

            log(
                "http_request",
                method=request.method,
                path=request.url.path,
                status=status_code,
                duration_ms=duration_ms,
                client_ip=client_ip(request),
                rate_limited=status_code == 429,
            )
