"""
commerce_gateway.api.app

FastAPI app factory for the commerce gateway.

Responsibilities:
- Build the FastAPI application: error funnel, declared stage list, route groups.
- Attach shared infrastructure handed over by the lifecycle (store engine).
- Provide a single composition root where cross-cutting concerns live.
"""

from __future__ import annotations

from collections.abc import Iterable

from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncEngine

from commerce_gateway import __version__
from commerce_gateway.api.error_funnel import ErrorFunnel, register_exception_handlers
from commerce_gateway.api.pipeline import (
    RouteGroup,
    default_stages,
    install_stages,
    mount,
    mount_catch_all,
    mount_route_groups,
    validate_stages,
)
from commerce_gateway.api.routers import dev_auth, health
from commerce_gateway.api.routers.resources import default_route_groups
from commerce_gateway.db.session import create_sessionmaker
from commerce_gateway.observability.logging import configure_logging, get_logger
from commerce_gateway.settings import Settings

log = get_logger(__name__)


def create_app(
    *,
    settings: Settings,
    engine: AsyncEngine | None = None,
    route_groups: Iterable[RouteGroup] | None = None,
) -> FastAPI:
    # Configure structured logging once at process startup (before app serves requests).
    configure_logging(service_name=settings.service_name, level=settings.log_level)

    app = FastAPI(
        title="Commerce Gateway",
        version=__version__,
        docs_url="/docs",
        openapi_url="/openapi.json",
    )
    app.state.settings = settings
    # The lifecycle owns the engine; the app only borrows it.
    app.state.engine = engine
    app.state.sessionmaker = create_sessionmaker(engine) if engine is not None else None

    groups = list(route_groups) if route_groups is not None else default_route_groups(settings)

    funnel = ErrorFunnel()
    register_exception_handlers(app, funnel)

    stages = default_stages(settings, funnel)
    validate_stages(stages, gated=any(g.allowed_roles is not None for g in groups))
    install_stages(app, stages)

    app.include_router(health.router, tags=["health"])
    mount(app, "/v1/dev", dev_auth.router)
    mount_route_groups(app, groups, settings=settings)
    mount_catch_all(app)

    log.debug("app_built", stages=app.state.stage_names, groups=[g.name for g in groups])
    return app


# --- Module Notes -----------------------------------------------------------
# This file is intentionally small: app composition stays here; ordering rules live
# in `api.pipeline` and process concerns in `lifecycle`.
