"""
commerce_gateway.observability.middleware

HTTP middleware for request-scoped logging context and access logging.

Responsibilities:
- Generate/propagate request IDs.
- Bind request metadata into structlog contextvars.
- Emit one access-log line per completed request.
"""

from __future__ import annotations

import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from commerce_gateway.observability.logging import get_logger

access_log = get_logger("commerce_gateway.access")


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    - Ensures every request has a request id
    - Binds request-scoped contextvars for structured logs
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        # Prefer a caller-provided request id for trace continuity; otherwise generate one.
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            path=request.url.path,
            method=request.method,
        )
        try:
            response: Response = await call_next(request)
        finally:
            # Avoid leaking context across requests under async concurrency.
            structlog.contextvars.clear_contextvars()

        response.headers["x-request-id"] = request_id
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Access log: status and duration, at a level chosen by status class.
    Faults that escape as exceptions are logged by the error funnel instead.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = round((time.perf_counter() - start) * 1000, 2)

        status = response.status_code
        if status >= 500:
            emit = access_log.error
        elif status >= 400:
            emit = access_log.warning
        else:
            emit = access_log.info
        emit(
            "request",
            status=status,
            duration_ms=duration_ms,
            client_ip=request.client.host if request.client else "unknown",
        )
        return response


# --- Module Notes -----------------------------------------------------------
# `RequestContextMiddleware` sits outermost among the stages so every later log
# line (including the funnel's) carries the request id.
