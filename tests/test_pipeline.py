"""
tests.test_pipeline

Stage ordering validation, installation order, route-group mounting and the
catch-all route.
"""

from __future__ import annotations

import dataclasses

import pytest
from fastapi import APIRouter, FastAPI

from commerce_gateway.api.app import create_app
from commerce_gateway.api.error_funnel import ErrorFunnel
from commerce_gateway.api.pipeline import (
    AUTH_CONTEXT,
    BODY_PARSER,
    COMPRESSION,
    COOKIE_PARSER,
    CORS,
    ERROR_FUNNEL,
    REQUEST_CONTEXT,
    SANITIZER,
    SECURITY_HEADERS as SECURITY_HEADERS_STAGE,
    PipelineError,
    RouteGroup,
    StageKind,
    default_stages,
    install_stages,
    mount,
    mount_catch_all,
    validate_stages,
)
from commerce_gateway.api.routers.resources import ROUTE_GROUP_NAMES, default_route_groups
from commerce_gateway.middleware.security import SECURITY_HEADERS


def _stages(settings):
    return default_stages(settings, ErrorFunnel())


def _names(stages):
    return [stage.name for stage in stages]


def _move(stages, name, *, before):
    stage = next(s for s in stages if s.name == name)
    rest = [s for s in stages if s.name != name]
    at = _names(rest).index(before)
    return [*rest[:at], stage, *rest[at:]]


def test_default_stages_are_valid(settings) -> None:
    stages = _stages(settings)
    validate_stages(stages, gated=True)
    assert stages[-1].name == ERROR_FUNNEL
    assert stages[-1].kind is StageKind.error_handler


def test_sanitizer_is_required(settings) -> None:
    stages = [s for s in _stages(settings) if s.name != SANITIZER]
    with pytest.raises(PipelineError, match=SANITIZER):
        validate_stages(stages)


def test_body_reader_before_body_parser_is_rejected(settings) -> None:
    stages = _move(_stages(settings), SANITIZER, before=BODY_PARSER)
    with pytest.raises(PipelineError, match="reads the body"):
        validate_stages(stages)


def test_body_reader_without_body_parser_is_rejected(settings) -> None:
    stages = [s for s in _stages(settings) if s.name != BODY_PARSER]
    with pytest.raises(PipelineError, match="reads the body"):
        validate_stages(stages)


def test_error_handler_must_be_last(settings) -> None:
    stages = _move(_stages(settings), ERROR_FUNNEL, before=BODY_PARSER)
    with pytest.raises(PipelineError, match="error handler"):
        validate_stages(stages)


def test_only_one_error_handler(settings) -> None:
    stages = _stages(settings)
    extra = dataclasses.replace(stages[-1], name="second_funnel")
    with pytest.raises(PipelineError, match="error handler"):
        validate_stages([*stages, extra])


def test_duplicate_stage_names_are_rejected(settings) -> None:
    stages = _stages(settings)
    with pytest.raises(PipelineError, match="Duplicate"):
        validate_stages([stages[0], *stages])


def test_gated_groups_need_an_auth_context(settings) -> None:
    stages = [s for s in _stages(settings) if s.name != AUTH_CONTEXT]
    validate_stages(stages, gated=False)
    with pytest.raises(PipelineError, match=AUTH_CONTEXT):
        validate_stages(stages, gated=True)


def test_cookie_parser_must_precede_auth_context(settings) -> None:
    stages = _move(_stages(settings), AUTH_CONTEXT, before=COOKIE_PARSER)
    with pytest.raises(PipelineError, match=COOKIE_PARSER):
        validate_stages(stages)


def test_install_puts_error_handler_inside_header_stages(settings) -> None:
    app = FastAPI()
    stages = _stages(settings)
    install_stages(app, stages)

    # user_middleware is outermost first.
    installed = [m.cls for m in app.user_middleware]
    wrapping = [s.middleware for s in stages if s.wraps_faults]
    rest = [s.middleware for s in stages[:-1] if not s.wraps_faults]
    assert _names(stages)[:3] == [REQUEST_CONTEXT, SECURITY_HEADERS_STAGE, CORS]
    assert installed == [*wrapping, stages[-1].middleware, *rest]
    assert app.state.stage_names == _names(stages)


def test_fault_wrapping_stage_must_lead(settings) -> None:
    stages = _move(_stages(settings), CORS, before=COMPRESSION)
    with pytest.raises(PipelineError, match="lead"):
        validate_stages(stages)


def test_error_handler_cannot_wrap_faults(settings) -> None:
    stages = [s for s in _stages(settings) if not s.wraps_faults]
    stages[-1] = dataclasses.replace(stages[-1], wraps_faults=True)
    with pytest.raises(PipelineError, match="error handler"):
        validate_stages(stages)


def test_mounting_a_prefix_twice_is_rejected() -> None:
    app = FastAPI()
    mount(app, "/v1/api/product", APIRouter())
    with pytest.raises(PipelineError, match="already mounted"):
        mount(app, "/v1/api/product", APIRouter())


def test_mounting_after_catch_all_is_rejected() -> None:
    app = FastAPI()
    mount_catch_all(app)
    with pytest.raises(PipelineError, match="catch-all"):
        mount(app, "/v1/api/product", APIRouter())


def test_duplicate_group_in_create_app_is_rejected(settings) -> None:
    groups = [RouteGroup("product", APIRouter()), RouteGroup("product", APIRouter())]
    with pytest.raises(PipelineError):
        create_app(settings=settings, route_groups=groups)


def test_unknown_group_in_configuration_is_rejected(make_settings) -> None:
    with pytest.raises(PipelineError, match="Unknown route groups"):
        default_route_groups(make_settings(rate_limited_groups=["product", "inventory"]))


def test_default_groups_follow_configuration(make_settings) -> None:
    groups = {
        g.name: g
        for g in default_route_groups(
            make_settings(rate_limited_groups=["review"], route_roles={"vendor": ["admin", "vendor"]})
        )
    }
    assert set(groups) == set(ROUTE_GROUP_NAMES)
    assert groups["review"].rate_limited
    assert not groups["product"].rate_limited
    assert groups["vendor"].allowed_roles == frozenset({"admin", "vendor"})
    assert groups["cart"].allowed_roles is None
    assert groups["cart"].prefix == "/v1/api/cart"


@pytest.mark.asyncio
async def test_root_answers_hi(settings, client_for) -> None:
    app = create_app(settings=settings)
    async with client_for(app) as client:
        r = await client.get("/")
    assert r.status_code == 200
    assert r.text == "Hi"


@pytest.mark.asyncio
async def test_unmatched_route_is_501_with_method_and_url(settings, client_for) -> None:
    app = create_app(settings=settings)
    async with client_for(app) as client:
        r = await client.get("/nope/here?page=2")
        assert r.status_code == 501
        body = r.json()
        assert body["status"] == "error"
        assert body["message"] == "Can not find /nope/here?page=2 with GET on this server"
        assert body["request_id"] == r.headers["x-request-id"]

        r = await client.post("/v1/api/unknown", json={"a": 1})
        assert r.status_code == 501
        assert r.json()["message"] == "Can not find /v1/api/unknown with POST on this server"


@pytest.mark.asyncio
async def test_wrong_method_on_known_path_is_501_not_405(settings, client_for) -> None:
    app = create_app(settings=settings)
    async with client_for(app) as client:
        r = await client.delete("/healthz")
    assert r.status_code == 501
    assert r.json()["message"] == "Can not find /healthz with DELETE on this server"


@pytest.mark.asyncio
async def test_error_responses_pass_through_the_stage_chain(settings, client_for) -> None:
    app = create_app(settings=settings)
    async with client_for(app) as client:
        r = await client.get("/missing", headers={"x-request-id": "req-123"})
    assert r.status_code == 501
    assert r.headers["x-request-id"] == "req-123"
    assert r.json()["request_id"] == "req-123"
    for name in SECURITY_HEADERS:
        assert name.lower() in r.headers
