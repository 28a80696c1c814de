"""
commerce_gateway.auth.context

Authentication context: populate and read the request's principal.

Responsibilities:
- Turn a bearer token (or the signed `access_token` cookie) into exactly one
  principal variant and attach it to request state.
- Expose a single accessor that downstream stages use to read it.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response
from starlette.types import ASGIApp

from commerce_gateway.auth.jwt import JwtConfig, JwtValidationError, decode_and_validate
from commerce_gateway.auth.models import Principal, PrincipalKind, RiderPrincipal, UserPrincipal
from commerce_gateway.observability.logging import get_logger

log = get_logger(__name__)

ACCESS_TOKEN_COOKIE = "access_token"


def principal_from_claims(claims: dict[str, Any]) -> Principal | None:
    """
    Build a principal from validated token claims.

    Claims that match neither variant yield no principal at all, so a
    malformed identity is treated exactly like an anonymous caller.
    """

    subject = claims.get("sub")
    if not isinstance(subject, str) or not subject:
        return None

    kind = claims.get("kind")
    if kind == PrincipalKind.user:
        role = claims.get("role")
        if isinstance(role, str) and role:
            return UserPrincipal(subject=subject, role=role)
    elif kind == PrincipalKind.rider:
        is_approved = claims.get("is_approved")
        if isinstance(is_approved, bool):
            return RiderPrincipal(subject=subject, is_approved=is_approved)
    return None


def get_principal(request: Request) -> Principal | None:
    return getattr(request.state, "principal", None)


def _extract_token(request: Request) -> str | None:
    header = request.headers.get("authorization", "")
    scheme, _, credentials = header.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    signed = getattr(request.state, "signed_cookies", {})
    return signed.get(ACCESS_TOKEN_COOKIE)


class AuthContextMiddleware(BaseHTTPMiddleware):
    """
    Authentication only: never rejects a request. Anonymous and invalid
    callers proceed with no principal and are refused later by the role gate
    of any protected group.
    """

    def __init__(self, app: ASGIApp, *, jwt_config: JwtConfig) -> None:
        super().__init__(app)
        self._cfg = jwt_config

    async def dispatch(self, request: Request, call_next) -> Response:
        request.state.principal = None
        token = _extract_token(request)
        if token:
            try:
                claims = decode_and_validate(cfg=self._cfg, token=token)
            except JwtValidationError as e:
                log.warning("invalid_token", reason=str(e))
            else:
                principal = principal_from_claims(claims)
                if principal is None:
                    log.warning("unrecognized_principal_claims", kind=claims.get("kind"))
                else:
                    request.state.principal = principal
                    structlog.contextvars.bind_contextvars(principal_kind=principal.kind.value)
        return await call_next(request)


# --- Module Notes -----------------------------------------------------------
# The two identity sources (user accounts, rider accounts) only meet here; every
# other module sees the `Principal` union.
