"""
commerce_gateway.auth.gate

Role-based authorization gate.

Responsibilities:
- Decide, as a pure function, whether a principal may pass a set of roles.
- Wrap that decision as a FastAPI dependency placed ahead of protected groups.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from fastapi import Request

from commerce_gateway.auth.context import get_principal
from commerce_gateway.auth.models import RIDER_ROLE, RiderPrincipal, UserPrincipal
from commerce_gateway.errors import ForbiddenError


@dataclass(frozen=True, slots=True)
class Outcome:
    fault: ForbiddenError | None = None

    @property
    def allowed(self) -> bool:
        return self.fault is None


AUTHORIZED = Outcome()


def normalize_roles(allowed_roles: str | Iterable[str]) -> frozenset[str]:
    # A bare string is one tag, not an iterable of characters.
    if isinstance(allowed_roles, str):
        return frozenset((allowed_roles,))
    return frozenset(allowed_roles)


def authorize(principal: object, allowed_roles: str | Iterable[str]) -> Outcome:
    """
    Decide whether `principal` may proceed.

    Users pass when their role is allowed. Riders pass only when approved and
    "rider" is allowed; an unapproved rider is refused whatever the roles.
    Anything else, including no principal or an object of an unknown type,
    is refused.
    """

    roles = normalize_roles(allowed_roles)
    match principal:
        case UserPrincipal(role=role) if role in roles:
            return AUTHORIZED
        case RiderPrincipal(is_approved=True) if RIDER_ROLE in roles:
            return AUTHORIZED
    return Outcome(fault=ForbiddenError())


def require_roles(allowed_roles: str | Iterable[str]):
    roles = normalize_roles(allowed_roles)

    async def _gate(request: Request) -> None:
        outcome = authorize(get_principal(request), roles)
        if outcome.fault is not None:
            raise outcome.fault

    _gate.__name__ = f"require_roles[{','.join(sorted(roles))}]"
    return _gate


# --- Module Notes -----------------------------------------------------------
# Mount `require_roles(...)` as a router-level dependency (see `api.pipeline.mount`)
# or on individual endpoints inside a route group.
