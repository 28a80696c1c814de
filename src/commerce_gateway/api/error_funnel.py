"""
commerce_gateway.api.error_funnel

The single terminal error handler.

Responsibilities:
- Normalize any exception into an `AppError`.
- Log every fault before responding (operational at warning, others at error
  with traceback).
- Render the one error response a request gets, hiding detail of
  non-operational faults.
- Catch faults raised by middleware stages inside the header stages, without
  ever sending a second response.
"""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from commerce_gateway.errors import AppError
from commerce_gateway.observability.logging import get_logger

log = get_logger(__name__)

GENERIC_MESSAGE = "Something went wrong. Please try again later."


def to_fault(exc: Exception) -> AppError:
    if isinstance(exc, AppError):
        return exc
    if isinstance(exc, RequestValidationError):
        return AppError(
            "Request validation failed.",
            422,
            details=jsonable_encoder(exc.errors()),
        )
    if isinstance(exc, StarletteHTTPException):
        return AppError(str(exc.detail), exc.status_code, headers=dict(exc.headers or {}))
    return AppError(str(exc) or type(exc).__name__, 500, is_operational=False)


class ErrorFunnel:
    async def handle(self, request: Request, exc: Exception) -> JSONResponse:
        fault = to_fault(exc)
        request_id = getattr(request.state, "request_id", "")
        self._log(fault, exc, request, request_id)

        if fault.is_operational:
            content = {"status": fault.status, "message": fault.message}
            if fault.details is not None:
                content["details"] = fault.details
        else:
            content = {"status": "error", "message": GENERIC_MESSAGE}
        content["request_id"] = request_id
        return JSONResponse(
            status_code=fault.status_code or 500,
            content=content,
            headers=fault.headers or None,
        )

    @staticmethod
    def _log(fault: AppError, exc: Exception, request: Request, request_id: str) -> None:
        fields = {
            "fault": type(exc).__name__,
            "status": fault.status_code,
            "message": fault.message,
            "operational": fault.is_operational,
            "method": request.method,
            "path": request.url.path,
            "request_id": request_id,
        }
        if fault.context:
            fields["context"] = fault.context
        if fault.is_operational:
            log.warning("fault", **fields)
        else:
            log.error("fault", exc_info=exc, **fields)


def register_exception_handlers(app: FastAPI, funnel: ErrorFunnel) -> None:
    # Faults raised by routes and route-group stages, answered inside the stage
    # chain so headers added on the way out (CORS, security) still apply.
    app.add_exception_handler(AppError, funnel.handle)
    app.add_exception_handler(StarletteHTTPException, funnel.handle)
    app.add_exception_handler(RequestValidationError, funnel.handle)


class FaultBoundaryMiddleware:
    """
    Installed just inside the stages that decorate every response (request
    id, security headers, CORS). Faults raised by later stages, and unexpected
    exceptions from anywhere, unwind to here. If a response has already
    started for the request, the fault is logged and nothing else is sent.
    """

    def __init__(self, app: ASGIApp, *, funnel: ErrorFunnel) -> None:
        self.app = app
        self.funnel = funnel

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        response_started = False

        async def send_wrapper(message: Message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except Exception as exc:
            request = Request(scope)
            if response_started:
                log.error(
                    "fault_after_response_started",
                    fault=type(exc).__name__,
                    message=str(exc),
                    path=request.url.path,
                    request_id=getattr(request.state, "request_id", ""),
                    exc_info=exc,
                )
                return
            response = await self.funnel.handle(request, exc)
            await response(scope, receive, send)


# --- Module Notes -----------------------------------------------------------
# Stages never write error bodies themselves; they raise and let this module answer.
