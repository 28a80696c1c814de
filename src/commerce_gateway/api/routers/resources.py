"""
commerce_gateway.api.routers.resources

Default route groups.

Responsibilities:
- Name the resource groups the gateway serves.
- Build the default `RouteGroup` list from settings (rate limiting and
  group-level roles are configuration, not code).
- Provide the stand-in router mounted for a resource until its service's
  router is supplied to `create_app(route_groups=...)`.
"""

from __future__ import annotations

from fastapi import APIRouter

from commerce_gateway.api.pipeline import PipelineError, RouteGroup
from commerce_gateway.auth.gate import normalize_roles
from commerce_gateway.settings import Settings

ROUTE_GROUP_NAMES: tuple[str, ...] = (
    "auth",
    "user",
    "product",
    "review",
    "cart",
    "payment",
    "order",
    "chat",
    "wishlist",
    "escrow",
    "withdrawal",
    "vendor",
    "logistics",
    "category",
    "spec",
    "ads",
    "subscription",
    "banner",
    "flashsale",
)


def resource_router(name: str) -> APIRouter:
    router = APIRouter(tags=[name])

    @router.get("")
    async def describe() -> dict[str, str]:
        return {"resource": name, "status": "mounted"}

    return router


def default_route_groups(settings: Settings) -> list[RouteGroup]:
    unknown = (set(settings.rate_limited_groups) | set(settings.route_roles)) - set(
        ROUTE_GROUP_NAMES
    )
    if unknown:
        raise PipelineError(f"Unknown route groups in configuration: {sorted(unknown)}")

    return [
        RouteGroup(
            name=name,
            router=resource_router(name),
            rate_limited=name in settings.rate_limited_groups,
            allowed_roles=(
                normalize_roles(settings.route_roles[name]) if name in settings.route_roles else None
            ),
        )
        for name in ROUTE_GROUP_NAMES
    ]


# --- Module Notes -----------------------------------------------------------
# Every name appears once: each group is mounted exactly once under /v1/api/<name>.
