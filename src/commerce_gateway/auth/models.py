"""
commerce_gateway.auth.models

Auth domain models.

Responsibilities:
- Define the two authenticated identity variants attached to a request.
- Provide the `Principal` union consumed by the role gate.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import TypeAlias

RIDER_ROLE = "rider"


class PrincipalKind(enum.StrEnum):
    # Stored in the `kind` token claim; treat as stable API contract.
    user = "user"
    rider = "rider"


@dataclass(frozen=True, slots=True)
class UserPrincipal:
    """
    Registered account (customer, vendor, admin, ...). `role` comes from an
    open set of tags.
    """

    subject: str
    role: str

    @property
    def kind(self) -> PrincipalKind:
        return PrincipalKind.user


@dataclass(frozen=True, slots=True)
class RiderPrincipal:
    """
    Delivery rider. Carries no role tag; acts as "rider" only once approved.
    """

    subject: str
    is_approved: bool

    @property
    def kind(self) -> PrincipalKind:
        return PrincipalKind.rider


Principal: TypeAlias = UserPrincipal | RiderPrincipal


# --- Module Notes -----------------------------------------------------------
# Keep these models minimal; they are built once per request by
# `auth.context` and read by `auth.gate`.
