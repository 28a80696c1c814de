"""
commerce_gateway.middleware.cookies

Signed-cookie stage: verifies cookies written with the cookie secret and
exposes their plain values on `request.state.signed_cookies`.
"""

from __future__ import annotations

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from commerce_gateway.auth.jwt import sign_cookie, unsign_cookie

SIGNED_PREFIX = "s:"


def signed_cookie_value(value: str, *, secret: str) -> str:
    """Value to put in a Set-Cookie header for a signed cookie."""
    return SIGNED_PREFIX + sign_cookie(value, secret=secret)


class SignedCookieMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: ASGIApp, *, secret: str) -> None:
        super().__init__(app)
        self._secret = secret

    async def dispatch(self, request: Request, call_next) -> Response:
        signed: dict[str, str] = {}
        for name, raw in request.cookies.items():
            if not raw.startswith(SIGNED_PREFIX):
                continue
            value = unsign_cookie(raw[len(SIGNED_PREFIX) :], secret=self._secret)
            if value is not None:
                signed[name] = value
        request.state.signed_cookies = signed
        return await call_next(request)
