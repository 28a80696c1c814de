"""
commerce_gateway.middleware.body

Body parsing stage.

Responsibilities:
- Buffer JSON, urlencoded and multipart request bodies once, enforcing a size limit.
- Publish the parsed payload on request state for later stages.
- Replay the (possibly rewritten) bytes to downstream handlers.
"""

from __future__ import annotations

import json
from collections.abc import AsyncGenerator, Iterable
from typing import Any
from urllib.parse import parse_qsl

from python_multipart.multipart import parse_options_header
from starlette.datastructures import Headers, UploadFile
from starlette.formparsers import MultiPartException, MultiPartParser
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from commerce_gateway.errors import BadRequestError, PayloadTooLargeError

JSON_MEDIA_TYPE = "application/json"
FORM_MEDIA_TYPE = "application/x-www-form-urlencoded"
MULTIPART_MEDIA_TYPE = "multipart/form-data"


def media_type_of(headers: Headers) -> str:
    return headers.get("content-type", "").split(";", 1)[0].strip().lower()


def is_json(media_type: str) -> bool:
    return media_type == JSON_MEDIA_TYPE or media_type.endswith("+json")


def multipart_boundary(headers: Headers) -> bytes | None:
    _, params = parse_options_header(headers.get("content-type"))
    return params.get(b"boundary") or None


def _collect(pairs: Iterable[tuple[str, Any]]) -> dict[str, Any]:
    # Repeated names collapse into a list, in arrival order.
    form: dict[str, Any] = {}
    for key, value in pairs:
        if key in form:
            existing = form[key]
            form[key] = [*existing, value] if isinstance(existing, list) else [existing, value]
        else:
            form[key] = value
    return form


def parse_form(text: str) -> dict[str, Any]:
    return _collect(parse_qsl(text, keep_blank_values=True))


def parse_payload(media_type: str, body: bytes) -> Any:
    if not body:
        return None
    try:
        text = body.decode("utf-8")
        if is_json(media_type):
            return json.loads(text)
        return parse_form(text)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise BadRequestError(context={"media_type": media_type, "error": str(e)}) from e


async def parse_multipart(headers: Headers, body: bytes) -> dict[str, Any]:
    """
    Parse a buffered multipart body. Text fields keep their value; file parts
    are published by filename only, their content stays in the raw bytes.
    """

    if multipart_boundary(headers) is None:
        raise BadRequestError(context={"media_type": MULTIPART_MEDIA_TYPE, "error": "missing boundary"})

    async def stream() -> AsyncGenerator[bytes, None]:
        yield body

    try:
        form = await MultiPartParser(headers, stream()).parse()
    except MultiPartException as e:
        raise BadRequestError(context={"media_type": MULTIPART_MEDIA_TYPE, "error": e.message}) from e
    try:
        return _collect(
            (key, value.filename if isinstance(value, UploadFile) else value)
            for key, value in form.multi_items()
        )
    finally:
        await form.close()


class BodyParserMiddleware:
    """
    Pure ASGI so the body can be replaced before the route reads it. Other
    media types (binary uploads, streams) pass through untouched.
    """

    def __init__(self, app: ASGIApp, *, max_body_bytes: int, max_multipart_bytes: int) -> None:
        self.app = app
        self.max_body_bytes = max_body_bytes
        self.max_multipart_bytes = max_multipart_bytes

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = Headers(scope=scope)
        media_type = media_type_of(headers)
        if media_type == MULTIPART_MEDIA_TYPE:
            limit = self.max_multipart_bytes
        elif is_json(media_type) or media_type == FORM_MEDIA_TYPE:
            limit = self.max_body_bytes
        else:
            await self.app(scope, receive, send)
            return

        declared = headers.get("content-length")
        if declared and declared.isdigit() and int(declared) > limit:
            raise PayloadTooLargeError(limit)

        body = await self._read_body(receive, limit)
        if body is None:
            # Client went away before the body arrived; nobody to answer.
            return

        state = scope.setdefault("state", {})
        state["body_media_type"] = media_type
        state["raw_body"] = body
        if media_type == MULTIPART_MEDIA_TYPE:
            state["payload"] = await parse_multipart(headers, body) if body else None
        else:
            state["payload"] = parse_payload(media_type, body)
        await self.app(scope, _replay(scope, receive), send)

    @staticmethod
    async def _read_body(receive: Receive, limit: int) -> bytes | None:
        chunks: list[bytes] = []
        size = 0
        while True:
            message = await receive()
            if message["type"] == "http.disconnect":
                return None
            chunk = message.get("body", b"")
            size += len(chunk)
            if size > limit:
                raise PayloadTooLargeError(limit)
            chunks.append(chunk)
            if not message.get("more_body", False):
                return b"".join(chunks)


def _replay(scope: Scope, receive: Receive) -> Receive:
    delivered = False

    async def replay() -> Message:
        nonlocal delivered
        if not delivered:
            delivered = True
            # Read at call time: later stages may have rewritten the body.
            return {"type": "http.request", "body": scope["state"]["raw_body"], "more_body": False}
        return await receive()

    return replay


# --- Module Notes -----------------------------------------------------------
# `middleware.sanitize` depends on the `payload`/`raw_body` state keys set here,
# which is why the pipeline validator requires this stage to run first.
