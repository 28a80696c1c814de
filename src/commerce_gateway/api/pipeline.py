"""
commerce_gateway.api.pipeline

Declared request pipeline: stage list, validation, installation and mounting.

Responsibilities:
- Declare the global stage list in request-flow order (outermost first).
- Reject orderings that break a security or correctness invariant at startup.
- Install the stages on the app, with the error handler just inside the
  stages that decorate every response.
- Mount route groups behind their per-group stages (rate limiting, role gate).
- Mount the catch-all that turns unmatched method+path into a 501 fault.
"""

from __future__ import annotations

import enum
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from fastapi import APIRouter, Depends, FastAPI, Request
from starlette.middleware.cors import CORSMiddleware

from commerce_gateway.api.error_funnel import ErrorFunnel, FaultBoundaryMiddleware
from commerce_gateway.auth.context import AuthContextMiddleware
from commerce_gateway.auth.gate import require_roles
from commerce_gateway.auth.jwt import JwtConfig
from commerce_gateway.errors import RouteNotFoundError
from commerce_gateway.middleware.body import BodyParserMiddleware
from commerce_gateway.middleware.compression import SelectiveGZipMiddleware
from commerce_gateway.middleware.cookies import SignedCookieMiddleware
from commerce_gateway.middleware.rate_limit import RateLimiter
from commerce_gateway.middleware.sanitize import SanitizeMiddleware
from commerce_gateway.middleware.security import SecurityHeadersMiddleware
from commerce_gateway.observability.logging import get_logger
from commerce_gateway.observability.middleware import (
    RequestContextMiddleware,
    RequestLoggingMiddleware,
)
from commerce_gateway.settings import Settings

log = get_logger(__name__)

API_PREFIX = "/v1/api"
CORS_METHODS = ["GET", "POST", "PATCH", "PUT", "DELETE"]
CATCH_ALL_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]

# Stage names referenced by the ordering rules.
REQUEST_CONTEXT = "request_context"
SECURITY_HEADERS = "security_headers"
CORS = "cors"
BODY_PARSER = "body_parser"
SANITIZER = "sanitizer"
COOKIE_PARSER = "cookie_parser"
REQUEST_LOGGER = "request_logger"
AUTH_CONTEXT = "auth_context"
COMPRESSION = "compression"
ERROR_FUNNEL = "error_funnel"


class PipelineError(ValueError):
    pass


class StageKind(enum.StrEnum):
    middleware = "middleware"
    # Receives faults rather than requests; must be unique and last.
    error_handler = "error_handler"


@dataclass(frozen=True, slots=True)
class Stage:
    name: str
    middleware: type
    options: Mapping[str, Any] = field(default_factory=dict)
    kind: StageKind = StageKind.middleware
    reads_body: bool = False
    # Decorates every response, fault responses included; installed around the error handler.
    wraps_faults: bool = False


@dataclass(frozen=True, slots=True)
class RouteGroup:
    """
    One resource domain mounted under `/v1/api/<name>`. `allowed_roles=None`
    leaves the group ungated; an empty set refuses everyone.
    """

    name: str
    router: APIRouter
    rate_limited: bool = False
    allowed_roles: frozenset[str] | None = None

    @property
    def prefix(self) -> str:
        return f"{API_PREFIX}/{self.name}"


def default_stages(settings: Settings, funnel: ErrorFunnel) -> list[Stage]:
    return [
        Stage(REQUEST_CONTEXT, RequestContextMiddleware, wraps_faults=True),
        Stage(SECURITY_HEADERS, SecurityHeadersMiddleware, wraps_faults=True),
        Stage(
            CORS,
            CORSMiddleware,
            {"allow_origins": settings.cors_origins_list, "allow_methods": CORS_METHODS},
            wraps_faults=True,
        ),
        Stage(
            BODY_PARSER,
            BodyParserMiddleware,
            {
                "max_body_bytes": settings.max_body_bytes,
                "max_multipart_bytes": settings.max_multipart_bytes,
            },
        ),
        Stage(SANITIZER, SanitizeMiddleware, reads_body=True),
        Stage(COOKIE_PARSER, SignedCookieMiddleware, {"secret": settings.cookie_secret}),
        Stage(REQUEST_LOGGER, RequestLoggingMiddleware),
        Stage(AUTH_CONTEXT, AuthContextMiddleware, {"jwt_config": JwtConfig.from_settings(settings)}),
        Stage(COMPRESSION, SelectiveGZipMiddleware, {"minimum_size": settings.compression_min_size}),
        Stage(ERROR_FUNNEL, FaultBoundaryMiddleware, {"funnel": funnel}, kind=StageKind.error_handler),
    ]


def validate_stages(stages: Sequence[Stage], *, gated: bool = False) -> None:
    names = [stage.name for stage in stages]
    duplicates = sorted({name for name in names if names.count(name) > 1})
    if duplicates:
        raise PipelineError(f"Duplicate stages: {duplicates}")

    handlers = [i for i, stage in enumerate(stages) if stage.kind is StageKind.error_handler]
    if handlers != [len(stages) - 1]:
        raise PipelineError("Exactly one error handler is required and it must be the last stage")

    if stages[-1].wraps_faults:
        raise PipelineError("The error handler cannot wrap faults")
    leading = 0
    while leading < len(stages) and stages[leading].wraps_faults:
        leading += 1
    if any(stage.wraps_faults for stage in stages[leading:]):
        raise PipelineError("Stages that wrap faults must lead the stage list")

    if SANITIZER not in names:
        raise PipelineError(f"'{SANITIZER}' stage is required")

    body_at = names.index(BODY_PARSER) if BODY_PARSER in names else None
    for i, stage in enumerate(stages):
        if stage.reads_body and (body_at is None or i < body_at):
            raise PipelineError(f"'{stage.name}' reads the body and must follow '{BODY_PARSER}'")

    if gated and AUTH_CONTEXT not in names:
        raise PipelineError(f"Gated route groups require an '{AUTH_CONTEXT}' stage")

    if COOKIE_PARSER in names and AUTH_CONTEXT in names:
        if names.index(COOKIE_PARSER) > names.index(AUTH_CONTEXT):
            raise PipelineError(f"'{COOKIE_PARSER}' must run before '{AUTH_CONTEXT}'")


def install_stages(app: FastAPI, stages: Sequence[Stage]) -> None:
    # add_middleware wraps the current stack, so the last one added runs first.
    # Faults unwind outward to the error handler, which sits just inside the
    # fault-wrapping stages so its responses still get their headers.
    *normal, handler = stages
    outer = [stage for stage in normal if stage.wraps_faults]
    inner = [stage for stage in normal if not stage.wraps_faults]
    for stage in reversed(inner):
        app.add_middleware(stage.middleware, **stage.options)
    app.add_middleware(handler.middleware, **handler.options)
    for stage in reversed(outer):
        app.add_middleware(stage.middleware, **stage.options)
    app.state.stage_names = [stage.name for stage in stages]


def mount(app: FastAPI, path: str, router: APIRouter, *stages: Callable[..., Any]) -> None:
    """
    Include `router` under `path`, running `stages` in order before any of
    its handlers. A stage short-circuits the group by raising a fault.
    """

    if getattr(app.state, "catch_all_mounted", False):
        raise PipelineError(f"Cannot mount '{path}' after the catch-all route")
    mounted: set[str] = getattr(app.state, "mounted_prefixes", set())
    if path in mounted:
        raise PipelineError(f"Route group already mounted at '{path}'")

    app.include_router(router, prefix=path, dependencies=[Depends(stage) for stage in stages])
    mounted.add(path)
    app.state.mounted_prefixes = mounted


def mount_route_groups(app: FastAPI, groups: Iterable[RouteGroup], *, settings: Settings) -> None:
    limiters: dict[str, RateLimiter] = {}
    for group in groups:
        stages: list[Callable[..., Any]] = []
        # Throttle before authorizing: refused callers still count against the limit.
        if group.rate_limited:
            limiter = RateLimiter(
                requests=settings.rate_limit_requests,
                window=settings.rate_limit_window,
                name=group.name,
            )
            limiters[group.name] = limiter
            stages.append(limiter)
        if group.allowed_roles is not None:
            stages.append(require_roles(group.allowed_roles))
        mount(app, group.prefix, group.router, *stages)
        log.debug(
            "route_group_mounted",
            group=group.name,
            rate_limited=group.rate_limited,
            roles=sorted(group.allowed_roles) if group.allowed_roles is not None else None,
        )
    app.state.rate_limiters = limiters


async def route_not_found(request: Request) -> None:
    url = request.url.path
    if request.url.query:
        url = f"{url}?{request.url.query}"
    raise RouteNotFoundError(request.method, url)


def mount_catch_all(app: FastAPI) -> None:
    # Matches every method on every path, so it also wins over 405 partial matches.
    app.add_api_route(
        "/{path:path}",
        route_not_found,
        methods=CATCH_ALL_METHODS,
        include_in_schema=False,
    )
    app.state.catch_all_mounted = True


# --- Module Notes -----------------------------------------------------------
# Ordering rules checked by `validate_stages`:
# - body-reading stages follow the body parser; the sanitizer is mandatory
# - signed cookies are verified before the auth context reads them
# - an auth context exists whenever a group is gated
# - one error handler, declared last
# - stages that wrap faults lead the list; they are installed around the error handler
