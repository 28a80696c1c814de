"""
commerce_gateway.middleware.rate_limit

Per-client sliding-window rate limiter, usable as a route-group stage.

Responsibilities:
- Count requests per client IP within a window, one limiter per route group.
- Raise `RateLimitExceededError` (429 + Retry-After) once the limit is hit.
- Serialize counter updates across concurrent requests.
"""

from __future__ import annotations

import asyncio
import math
import time
from collections import deque
from collections.abc import Callable

from fastapi import Request

from commerce_gateway.errors import RateLimitExceededError
from commerce_gateway.observability.logging import get_logger

log = get_logger(__name__)

_SWEEP_EVERY = 1000


class RateLimiter:
    def __init__(
        self,
        *,
        requests: int,
        window: float,
        name: str = "default",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.requests = requests
        self.window = window
        self.name = name
        self._clock = clock
        self._hits: dict[str, deque[float]] = {}
        self._lock = asyncio.Lock()
        self._calls = 0

    async def __call__(self, request: Request) -> None:
        client_ip = request.client.host if request.client else "unknown"
        async with self._lock:
            now = self._clock()
            window_start = now - self.window
            hits = self._hits.setdefault(client_ip, deque())
            while hits and hits[0] <= window_start:
                hits.popleft()

            if len(hits) >= self.requests:
                retry_after = max(1, math.ceil(hits[0] + self.window - now))
                log.warning(
                    "rate_limited",
                    group=self.name,
                    client_ip=client_ip,
                    hits=len(hits),
                    window=self.window,
                )
                raise RateLimitExceededError(retry_after)

            hits.append(now)
            self._calls += 1
            if self._calls % _SWEEP_EVERY == 0:
                self._sweep(window_start)

    def _sweep(self, window_start: float) -> None:
        # Drop clients with no hits left in the window.
        idle = [ip for ip, hits in self._hits.items() if not hits or hits[-1] <= window_start]
        for ip in idle:
            del self._hits[ip]


# --- Module Notes -----------------------------------------------------------
# In-memory state is per process. Multi-instance deployments need a shared
# backend (e.g. Redis INCR with TTL) behind the same callable interface.
