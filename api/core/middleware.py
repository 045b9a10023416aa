"""
Request middleware installed by `api/main.py`.

`JSONBodyMiddleware` decodes JSON request bodies once, up front, and exposes
the result as `request.state.json`. It is written as a plain ASGI app so the
body can be replayed to downstream handlers unchanged.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import Request
from starlette.datastructures import MutableHeaders
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from .config import DEFAULT_JSON_BODY_LIMIT

logger = logging.getLogger(__name__)

MALFORMED_JSON_DETAIL = "Malformed JSON request body."
BODY_TOO_LARGE_DETAIL = "Request body too large."


def is_json_content_type(content_type: str | None) -> bool:
    media_type = (content_type or "").split(";", 1)[0].strip().lower()
    return media_type == "application/json" or (
        media_type.startswith("application/") and media_type.endswith("+json")
    )


def get_json_body(request: Request) -> Any:
    """
    FastAPI dependency: the decoded JSON body, or None when there was none.
    """
    return getattr(request.state, "json", None)


def _reject_constant(name: str) -> Any:
    # NaN, Infinity and -Infinity are not JSON.
    raise ValueError(f"Invalid JSON constant {name!r}")


class _BodyTooLarge(Exception):
    pass


class _ClientDisconnected(Exception):
    pass


class JSONBodyMiddleware:
    def __init__(self, app: ASGIApp, *, max_body_size: int = DEFAULT_JSON_BODY_LIMIT) -> None:
        self.app = app
        self.max_body_size = max_body_size

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        scope.setdefault("state", {})["json"] = None
        request = Request(scope)
        if not is_json_content_type(request.headers.get("content-type")):
            await self.app(scope, receive, send)
            return

        try:
            body = await self._read_body(request, receive)
        except _BodyTooLarge:
            response = JSONResponse(status_code=413, content={"detail": BODY_TOO_LARGE_DETAIL})
            await response(scope, receive, send)
            return
        except _ClientDisconnected:
            return

        if body:
            try:
                scope["state"]["json"] = json.loads(body, parse_constant=_reject_constant)
            except ValueError as exc:
                # JSONDecodeError and UnicodeDecodeError are both ValueErrors.
                logger.info(
                    "json_body_rejected method=%s path=%s error=%s",
                    scope.get("method"),
                    scope.get("path"),
                    exc,
                )
                response = JSONResponse(status_code=400, content={"detail": MALFORMED_JSON_DETAIL})
                await response(scope, receive, send)
                return

        replayed = False

        async def replay() -> Message:
            nonlocal replayed
            if not replayed:
                replayed = True
                return {"type": "http.request", "body": body, "more_body": False}
            return await receive()

        await self.app(scope, replay, send)

    async def _read_body(self, request: Request, receive: Receive) -> bytes:
        declared = request.headers.get("content-length", "")
        if declared.isdigit() and int(declared) > self.max_body_size:
            raise _BodyTooLarge()

        chunks: list[bytes] = []
        size = 0
        more_body = True
        while more_body:
            message = await receive()
            if message["type"] == "http.disconnect":
                raise _ClientDisconnected()
            chunk = message.get("body", b"")
            size += len(chunk)
            if size > self.max_body_size:
                raise _BodyTooLarge()
            chunks.append(chunk)
            more_body = message.get("more_body", False)
        return b"".join(chunks)


class AllowAnyOriginMiddleware:
    """
    Adds `Access-Control-Allow-Origin: *` to every HTTP response that lacks it.

    CORSMiddleware only answers requests carrying an `Origin` header.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        async def send_with_origin(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = MutableHeaders(scope=message)
                if "access-control-allow-origin" not in headers:
                    headers["Access-Control-Allow-Origin"] = "*"
            await send(message)

        await self.app(scope, receive, send_with_origin)
