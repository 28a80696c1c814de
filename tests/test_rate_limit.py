from __future__ import annotations

import pytest
from starlette.requests import Request

from commerce_gateway.api.app import create_app
from commerce_gateway.errors import RateLimitExceededError
from commerce_gateway.middleware.rate_limit import RateLimiter


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _request(ip: str) -> Request:
    return Request({"type": "http", "method": "GET", "path": "/", "headers": [], "client": (ip, 5000)})


@pytest.mark.asyncio
async def test_limiter_refuses_over_limit_and_recovers_after_window() -> None:
    clock = _Clock()
    limiter = RateLimiter(requests=2, window=60, clock=clock)

    await limiter(_request("10.0.0.1"))
    clock.now += 10
    await limiter(_request("10.0.0.1"))

    with pytest.raises(RateLimitExceededError) as excinfo:
        await limiter(_request("10.0.0.1"))
    # The oldest hit leaves the window 50s from now.
    assert excinfo.value.retry_after == 50
    assert excinfo.value.status_code == 429
    assert excinfo.value.headers == {"Retry-After": "50"}

    clock.now += 50
    await limiter(_request("10.0.0.1"))


@pytest.mark.asyncio
async def test_limiter_counts_clients_separately() -> None:
    limiter = RateLimiter(requests=1, window=60, clock=_Clock())

    await limiter(_request("10.0.0.1"))
    await limiter(_request("10.0.0.2"))
    with pytest.raises(RateLimitExceededError):
        await limiter(_request("10.0.0.1"))


@pytest.mark.asyncio
async def test_refused_requests_do_not_extend_the_window() -> None:
    clock = _Clock()
    limiter = RateLimiter(requests=1, window=60, clock=clock)

    await limiter(_request("10.0.0.1"))
    for _ in range(5):
        clock.now += 10
        with pytest.raises(RateLimitExceededError):
            await limiter(_request("10.0.0.1"))
    clock.now += 10
    await limiter(_request("10.0.0.1"))


@pytest.mark.asyncio
async def test_only_configured_groups_are_rate_limited(make_settings, client_for) -> None:
    settings = make_settings(rate_limit_requests=2, rate_limited_groups=["product"])
    app = create_app(settings=settings)

    async with client_for(app) as client:
        assert (await client.get("/v1/api/product")).status_code == 200
        assert (await client.get("/v1/api/product")).status_code == 200

        r = await client.get("/v1/api/product")
        assert r.status_code == 429
        assert r.json()["status"] == "fail"
        assert int(r.headers["retry-after"]) >= 1

        for _ in range(5):
            assert (await client.get("/v1/api/review")).status_code == 200

    assert set(app.state.rate_limiters) == {"product"}


@pytest.mark.asyncio
async def test_rate_limit_applies_before_the_role_gate(make_settings, client_for) -> None:
    settings = make_settings(
        rate_limit_requests=1,
        rate_limited_groups=["review"],
        route_roles={"review": ["admin"]},
    )
    app = create_app(settings=settings)

    async with client_for(app) as client:
        assert (await client.get("/v1/api/review")).status_code == 403
        assert (await client.get("/v1/api/review")).status_code == 429
