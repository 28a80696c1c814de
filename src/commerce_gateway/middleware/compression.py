"""
commerce_gateway.middleware.compression

Response compression with a per-request opt-out.

Responsibilities:
- Gzip responses above a size threshold (Starlette's GZipMiddleware).
- Skip compression entirely when the request carries `x-no-compression`.
"""

from __future__ import annotations

from starlette.datastructures import Headers
from starlette.middleware.gzip import GZipMiddleware
from starlette.types import Receive, Scope, Send

OPT_OUT_HEADER = "x-no-compression"


class SelectiveGZipMiddleware(GZipMiddleware):
    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        # Presence is what counts; any value (even empty) opts out.
        if scope["type"] == "http" and OPT_OUT_HEADER in Headers(scope=scope):
            await self.app(scope, receive, send)
            return
        await super().__call__(scope, receive, send)


# --- Module Notes -----------------------------------------------------------
# Clients that post-process raw bytes (streaming readers, some proxies) send the
# opt-out header; size and content type do not override it.
