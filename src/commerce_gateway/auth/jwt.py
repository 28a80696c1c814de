"""
commerce_gateway.auth.jwt

JWT issuing and validation helpers.

Responsibilities:
- Issue short-lived JWTs for users and riders (dev tooling, tests).
- Decode and validate JWTs with strict claim requirements (iss/aud/exp/iat/sub).
- Sign and verify cookie values with the cookie secret.

Note:
- Production systems often prefer RS256 + JWKS; this repo uses HS256 for simplicity.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt
from jwt import InvalidTokenError

from commerce_gateway.auth.models import Principal, RiderPrincipal, UserPrincipal
from commerce_gateway.settings import Settings

_COOKIE_ALG = "HS256"


@dataclass(frozen=True, slots=True)
class JwtConfig:
    # Algorithm/issuer/audience are enforced during decoding.
    alg: str
    issuer: str
    audience: str
    secret: str

    @classmethod
    def from_settings(cls, settings: Settings) -> JwtConfig:
        return cls(
            alg=settings.jwt_alg,
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
            secret=settings.jwt_secret,
        )


class JwtValidationError(Exception):
    pass


def principal_claims(principal: Principal) -> dict[str, Any]:
    match principal:
        case UserPrincipal(role=role):
            return {"kind": principal.kind.value, "role": role}
        case RiderPrincipal(is_approved=is_approved):
            return {"kind": principal.kind.value, "is_approved": is_approved}
    raise TypeError(f"Unsupported principal type: {type(principal).__name__}")


def issue_token(
    *,
    cfg: JwtConfig,
    principal: Principal,
    ttl: timedelta = timedelta(hours=1),
) -> str:
    now = datetime.now(tz=UTC)
    # Keep payload minimal and stable; identity claims are re-validated on decode.
    payload: dict[str, Any] = {
        "iss": cfg.issuer,
        "aud": cfg.audience,
        "sub": principal.subject,
        "iat": int(now.timestamp()),
        "exp": int((now + ttl).timestamp()),
        **principal_claims(principal),
    }
    return jwt.encode(payload, cfg.secret, algorithm=cfg.alg)


def decode_and_validate(*, cfg: JwtConfig, token: str) -> dict[str, Any]:
    try:
        # jwt.decode enforces signature + registered claims (issuer/audience/exp, etc.).
        return jwt.decode(
            token,
            cfg.secret,
            algorithms=[cfg.alg],
            issuer=cfg.issuer,
            audience=cfg.audience,
            options={
                "require": ["exp", "iat", "iss", "aud", "sub"],
            },
        )
    except InvalidTokenError as e:
        raise JwtValidationError(str(e)) from e


def sign_cookie(value: str, *, secret: str) -> str:
    return jwt.encode({"v": value}, secret, algorithm=_COOKIE_ALG)


def unsign_cookie(signed: str, *, secret: str) -> str | None:
    # Tampered or foreign cookies are dropped rather than rejected.
    try:
        payload = jwt.decode(signed, secret, algorithms=[_COOKIE_ALG])
    except InvalidTokenError:
        return None
    value = payload.get("v")
    return value if isinstance(value, str) else None


# --- Module Notes -----------------------------------------------------------
# Token issuing is used by:
# - `api/routers/dev_auth.py` (dev convenience)
# - the test suite (gated route groups)
