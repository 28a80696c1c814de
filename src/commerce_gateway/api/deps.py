"""
commerce_gateway.api.deps

FastAPI dependency wiring for the API layer.

Responsibilities:
- Provide dependency functions for settings and DB sessions.
- Encapsulate app.state access patterns (engine/sessionmaker).
"""

from __future__ import annotations

from collections.abc import AsyncIterator

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from commerce_gateway.errors import ServiceUnavailableError
from commerce_gateway.settings import Settings


def settings_dep(request: Request) -> Settings:
    # The settings the app was built with, not a fresh read of the environment.
    return request.app.state.settings


def sessionmaker_from_app(request: Request) -> async_sessionmaker[AsyncSession]:
    # Attached by `api.app.create_app` once the store is connected.
    factory = getattr(request.app.state, "sessionmaker", None)
    if factory is None:
        raise ServiceUnavailableError("The backing store is not connected.")
    return factory


async def db_session(
    session_factory: async_sessionmaker[AsyncSession] = Depends(sessionmaker_from_app),
) -> AsyncIterator[AsyncSession]:
    # Request-scoped DB session. Commit/rollback is managed by the route group.
    async with session_factory() as session:
        yield session


# --- Module Notes -----------------------------------------------------------
# In larger systems, additional per-request resources (caches, tracing spans, etc.)
# are often injected via dependencies in this module.
