from __future__ import annotations

import pytest

from commerce_gateway.api.app import create_app
from commerce_gateway.auth.context import principal_from_claims
from commerce_gateway.auth.gate import authorize
from commerce_gateway.auth.models import RiderPrincipal, UserPrincipal
from commerce_gateway.errors import FORBIDDEN_MESSAGE, ForbiddenError


def test_user_with_allowed_role_passes() -> None:
    outcome = authorize(UserPrincipal(subject="u1", role="admin"), {"admin", "vendor"})
    assert outcome.allowed
    assert outcome.fault is None


def test_user_with_other_role_is_refused() -> None:
    outcome = authorize(UserPrincipal(subject="u1", role="customer"), {"admin"})
    assert not outcome.allowed
    assert isinstance(outcome.fault, ForbiddenError)
    assert outcome.fault.status_code == 403
    assert outcome.fault.message == FORBIDDEN_MESSAGE


def test_approved_rider_passes_only_when_rider_is_allowed() -> None:
    rider = RiderPrincipal(subject="r1", is_approved=True)
    assert authorize(rider, {"rider", "admin"}).allowed
    assert not authorize(rider, {"admin"}).allowed


def test_unapproved_rider_is_refused_even_when_rider_is_allowed() -> None:
    rider = RiderPrincipal(subject="r1", is_approved=False)
    outcome = authorize(rider, {"rider"})
    assert not outcome.allowed
    assert outcome.fault.status_code == 403


@pytest.mark.parametrize(
    ("principal", "allowed_roles", "allowed"),
    [
        (UserPrincipal(subject="v1", role="vendor"), ["admin", "vendor"], True),
        (RiderPrincipal(subject="r1", is_approved=True), ["rider"], True),
        (RiderPrincipal(subject="r2", is_approved=False), ["rider", "admin"], False),
    ],
)
def test_documented_scenarios(principal, allowed_roles, allowed) -> None:
    outcome = authorize(principal, allowed_roles)
    assert outcome.allowed is allowed
    if not allowed:
        assert outcome.fault.status_code == 403
        assert outcome.fault.message == "You are not authorized to perform this action."


def test_user_with_rider_role_tag_is_a_user() -> None:
    # A role tag of "rider" on a user account is just a role match.
    assert authorize(UserPrincipal(subject="u1", role="rider"), {"rider"}).allowed


@pytest.mark.parametrize(
    "principal",
    [
        None,
        object(),
        {"role": "admin"},
        "admin",
    ],
)
def test_missing_or_unknown_principal_is_refused(principal) -> None:
    outcome = authorize(principal, {"admin"})
    assert not outcome.allowed
    assert outcome.fault.message == FORBIDDEN_MESSAGE


def test_empty_role_set_refuses_everyone() -> None:
    assert not authorize(UserPrincipal(subject="u1", role="admin"), set()).allowed
    assert not authorize(RiderPrincipal(subject="r1", is_approved=True), []).allowed


def test_bare_string_is_a_single_role() -> None:
    assert authorize(UserPrincipal(subject="u1", role="admin"), "admin").allowed
    assert not authorize(UserPrincipal(subject="u1", role="a"), "admin").allowed


def test_forbidden_message_does_not_mention_the_principal() -> None:
    outcome = authorize(UserPrincipal(subject="alice@example.com", role="customer"), {"admin"})
    assert "alice" not in outcome.fault.message
    assert "customer" not in outcome.fault.message


def test_principal_from_claims_builds_each_variant() -> None:
    assert principal_from_claims({"sub": "u1", "kind": "user", "role": "vendor"}) == UserPrincipal(
        subject="u1", role="vendor"
    )
    assert principal_from_claims({"sub": "r1", "kind": "rider", "is_approved": True}) == RiderPrincipal(
        subject="r1", is_approved=True
    )


@pytest.mark.parametrize(
    "claims",
    [
        {"sub": "u1", "kind": "user"},
        {"sub": "u1", "kind": "user", "role": ""},
        {"sub": "r1", "kind": "rider", "is_approved": "yes"},
        {"sub": "x1", "kind": "robot", "role": "admin"},
        {"kind": "user", "role": "admin"},
    ],
)
def test_principal_from_claims_rejects_malformed_identities(claims) -> None:
    assert principal_from_claims(claims) is None


@pytest.mark.asyncio
async def test_gated_group_over_http(make_settings, client_for, bearer) -> None:
    settings = make_settings(route_roles={"order": ["admin"], "logistics": ["rider"]})
    app = create_app(settings=settings)

    async with client_for(app) as client:
        r = await client.get("/v1/api/order")
        assert r.status_code == 403
        assert r.json()["status"] == "fail"
        assert r.json()["message"] == FORBIDDEN_MESSAGE

        r = await client.get(
            "/v1/api/order", headers=bearer(settings, UserPrincipal(subject="u1", role="customer"))
        )
        assert r.status_code == 403

        r = await client.get(
            "/v1/api/order", headers=bearer(settings, UserPrincipal(subject="u1", role="admin"))
        )
        assert r.status_code == 200

        r = await client.get(
            "/v1/api/logistics",
            headers=bearer(settings, RiderPrincipal(subject="r1", is_approved=False)),
        )
        assert r.status_code == 403

        r = await client.get(
            "/v1/api/logistics",
            headers=bearer(settings, RiderPrincipal(subject="r1", is_approved=True)),
        )
        assert r.status_code == 200

        # Ungated groups stay open to anonymous callers.
        r = await client.get("/v1/api/category")
        assert r.status_code == 200


@pytest.mark.asyncio
async def test_invalid_token_is_treated_as_anonymous(make_settings, client_for, bearer) -> None:
    settings = make_settings(route_roles={"order": ["admin"]})
    app = create_app(settings=settings)
    other = make_settings(jwt_secret="some-other-secret-of-sufficient-length")

    async with client_for(app) as client:
        r = await client.get(
            "/v1/api/order", headers=bearer(other, UserPrincipal(subject="u1", role="admin"))
        )
        assert r.status_code == 403

        r = await client.get("/v1/api/category", headers={"Authorization": "Bearer not-a-jwt"})
        assert r.status_code == 200
