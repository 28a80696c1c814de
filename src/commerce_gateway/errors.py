"""
commerce_gateway.errors

Fault hierarchy shared by every pipeline stage.

Responsibilities:
- Define `AppError`, the uniform fault carrying message, status code and an
  operational flag.
- Provide the concrete faults produced by the gateway's own stages.

Operational faults are expected conditions (bad input, forbidden, rate
limited) whose message is safe to return. Non-operational faults are
programmer or infrastructure errors; their detail is logged but never sent to
the caller.
"""

from __future__ import annotations

from typing import Any

FORBIDDEN_MESSAGE = "You are not authorized to perform this action."


class AppError(Exception):
    def __init__(
        self,
        message: str,
        status_code: int = 500,
        *,
        is_operational: bool = True,
        context: dict[str, Any] | None = None,
        details: Any = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.is_operational = is_operational
        # Logged server-side only.
        self.context = context or {}
        # Returned to the caller alongside the message (operational faults only).
        self.details = details
        self.headers = headers or {}

    @property
    def status(self) -> str:
        return "fail" if 400 <= self.status_code < 500 else "error"


class BadRequestError(AppError):
    def __init__(self, message: str = "Malformed request body.", **kwargs: Any) -> None:
        super().__init__(message, 400, **kwargs)


class ForbiddenError(AppError):
    """
    Raised only by the role gate. The message is fixed and never mentions the
    principal that was rejected.
    """

    def __init__(self) -> None:
        super().__init__(FORBIDDEN_MESSAGE, 403)


class PayloadTooLargeError(AppError):
    def __init__(self, limit: int) -> None:
        super().__init__(
            f"Request body exceeds the {limit} byte limit.",
            413,
            context={"limit": limit},
        )


class RateLimitExceededError(AppError):
    def __init__(self, retry_after: int) -> None:
        super().__init__(
            f"Too many requests. Please wait {retry_after} seconds before retrying.",
            429,
            context={"retry_after": retry_after},
            headers={"Retry-After": str(retry_after)},
        )
        self.retry_after = retry_after


class RouteNotFoundError(AppError):
    def __init__(self, method: str, url: str) -> None:
        super().__init__(
            f"Can not find {url} with {method} on this server",
            501,
            context={"method": method, "url": url},
        )


class ServiceUnavailableError(AppError):
    def __init__(self, message: str = "Service temporarily unavailable.") -> None:
        super().__init__(message, 503)


class StoreConnectionError(AppError):
    def __init__(self, message: str = "Could not connect to the backing store.") -> None:
        super().__init__(message, 500, is_operational=False)


# --- Module Notes -----------------------------------------------------------
# Stages raise these; only `api.error_funnel` turns them into response bodies.
