"""
tests.conftest

Shared fixtures: test settings, in-process clients, token minting.
"""

from __future__ import annotations

import contextlib
from collections.abc import AsyncIterator, Callable
from datetime import timedelta
from typing import Any

import httpx
import pytest
from fastapi import FastAPI

from commerce_gateway.auth.jwt import JwtConfig, issue_token
from commerce_gateway.auth.models import Principal
from commerce_gateway.settings import Settings


@pytest.fixture
def make_settings() -> Callable[..., Settings]:
    def _make(**overrides: Any) -> Settings:
        values: dict[str, Any] = {
            "env": "test",
            "database_url": "sqlite+aiosqlite://",
            "log_level": "WARNING",
        }
        values.update(overrides)
        return Settings(**values)

    return _make


@pytest.fixture
def settings(make_settings: Callable[..., Settings]) -> Settings:
    return make_settings()


@pytest.fixture
def client_for() -> Callable[..., contextlib.AbstractAsyncContextManager[httpx.AsyncClient]]:
    @contextlib.asynccontextmanager
    async def _client(
        app: FastAPI, *, client: tuple[str, int] = ("127.0.0.1", 123)
    ) -> AsyncIterator[httpx.AsyncClient]:
        # Faults are answered by the app itself; nothing should escape to the transport.
        transport = httpx.ASGITransport(app=app, client=client)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
            yield c

    return _client


@pytest.fixture
def bearer() -> Callable[[Settings, Principal], dict[str, str]]:
    def _bearer(settings: Settings, principal: Principal) -> dict[str, str]:
        token = issue_token(
            cfg=JwtConfig.from_settings(settings),
            principal=principal,
            ttl=timedelta(minutes=5),
        )
        return {"Authorization": f"Bearer {token}"}

    return _bearer


# --- Module Notes -----------------------------------------------------------
# Apps built in tests get no store unless a test connects one; `/readyz` then
# answers 503.
