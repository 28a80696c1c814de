"""
commerce_gateway.middleware.sanitize

Operator-injection sanitization stage.

Responsibilities:
- Remove keys starting with `$` or containing `.` from structured input
  (parsed body, multipart field names and query string), recursively.
- Rewrite the body so handlers only ever see the sanitized payload.
"""

from __future__ import annotations

import json
from typing import Any
from urllib.parse import unquote_plus, urlencode

from python_multipart.multipart import parse_options_header
from starlette.datastructures import Headers
from starlette.types import ASGIApp, Receive, Scope, Send

from commerce_gateway.middleware.body import MULTIPART_MEDIA_TYPE, is_json, multipart_boundary
from commerce_gateway.observability.logging import get_logger

log = get_logger(__name__)


def is_prohibited_key(key: str) -> bool:
    return key.startswith("$") or "." in key


def sanitize(value: Any) -> tuple[Any, list[str]]:
    """
    Return a copy of `value` without prohibited keys, plus the keys removed.
    """

    removed: list[str] = []

    def _clean(node: Any) -> Any:
        if isinstance(node, dict):
            cleaned = {}
            for key, item in node.items():
                if isinstance(key, str) and is_prohibited_key(key):
                    removed.append(key)
                    continue
                cleaned[key] = _clean(item)
            return cleaned
        if isinstance(node, list):
            return [_clean(item) for item in node]
        return node

    return _clean(value), removed


def strip_query(query_string: bytes) -> tuple[bytes, list[str]]:
    """
    Drop `key=value` pairs with a prohibited key. Kept pairs are not re-encoded.
    """

    kept: list[bytes] = []
    removed: list[str] = []
    for pair in query_string.split(b"&"):
        key = unquote_plus(pair.split(b"=", 1)[0].decode("latin-1"), encoding="latin-1")
        if is_prohibited_key(key):
            removed.append(key)
        else:
            kept.append(pair)
    return b"&".join(kept), removed


def _part_name(segment: bytes) -> str | None:
    head = segment.split(b"\r\n\r\n", 1)[0]
    for line in head.split(b"\r\n"):
        field, _, value = line.partition(b":")
        if field.strip().lower() == b"content-disposition":
            _, params = parse_options_header(value.strip())
            name = params.get(b"name")
            return name.decode("utf-8", "replace") if name is not None else None
    return None


def strip_multipart_fields(body: bytes, boundary: bytes) -> tuple[bytes, list[str]]:
    """
    Drop whole parts whose field name is prohibited. Other parts, file content
    included, are kept byte for byte.
    """

    delimiter = b"--" + boundary
    segments = body.split(delimiter)
    if len(segments) < 3:
        return body, []

    # segments[0] is the preamble, segments[-1] the closing "--" and epilogue.
    kept = [segments[0]]
    removed: list[str] = []
    for segment in segments[1:-1]:
        name = _part_name(segment)
        if name is not None and is_prohibited_key(name):
            removed.append(name)
            continue
        kept.append(segment)
    kept.append(segments[-1])
    return delimiter.join(kept), removed


def _encode_body(media_type: str, payload: Any) -> bytes:
    if is_json(media_type):
        return json.dumps(payload, separators=(",", ":")).encode("utf-8")
    return urlencode(payload, doseq=True).encode("utf-8")


class SanitizeMiddleware:
    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        removed = self._sanitize_query(scope) + self._sanitize_body(scope)
        if removed:
            log.warning("sanitized_input", removed_keys=sorted(set(removed)))
        await self.app(scope, receive, send)

    @staticmethod
    def _sanitize_query(scope: Scope) -> list[str]:
        query_string, removed = strip_query(scope.get("query_string", b""))
        if removed:
            scope["query_string"] = query_string
        return removed

    @staticmethod
    def _sanitize_body(scope: Scope) -> list[str]:
        state = scope.get("state", {})
        if state.get("payload") is None:
            return []
        payload, removed = sanitize(state["payload"])
        if not removed:
            return []

        media_type = state["body_media_type"]
        if media_type == MULTIPART_MEDIA_TYPE:
            boundary = multipart_boundary(Headers(scope=scope))
            body, removed = strip_multipart_fields(state["raw_body"], boundary)
        else:
            body = _encode_body(media_type, payload)
        state["payload"] = payload
        state["raw_body"] = body
        scope["headers"] = [
            (name, value) for name, value in scope["headers"] if name != b"content-length"
        ] + [(b"content-length", str(len(body)).encode("latin-1"))]
        return removed


# --- Module Notes -----------------------------------------------------------
# Payloads are document-store shaped: a `$where`/`$gt` key or a dotted path in
# user input would otherwise reach query builders in the route groups.
