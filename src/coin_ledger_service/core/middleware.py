"""ASGI middleware for request validation."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any, cast

from fastapi.responses import JSONResponse

if TYPE_CHECKING:
    from starlette.types import ASGIApp, Message, Receive, Scope, Send


# (method, path) pairs whose handlers read a JSON body
_JSON_BODY_ROUTES: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("POST", re.compile(r"^/accounts$")),
    ("POST", re.compile(r"^/tasks$")),
    ("PATCH", re.compile(r"^/tasks/[^/]+$")),
    ("POST", re.compile(r"^/tasks/[^/]+/submissions$")),
    ("POST", re.compile(r"^/withdrawals$")),
    ("POST", re.compile(r"^/top-ups$")),
)


def _takes_json_body(method: str, path: str) -> bool:
    return any(
        method == route_method and pattern.match(path)
        for route_method, pattern in _JSON_BODY_ROUTES
    )


def _error(status_code: int, error: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "message": message, "details": {}},
    )


class RequestValidationMiddleware:
    """
    Rejects malformed JSON requests before they reach a router.

    Only routes listed in ``_JSON_BODY_ROUTES`` are checked: a
    Content-Type other than ``application/json`` gets 415, and a body
    larger than ``max_body_size`` gets 413. Body-less actions such as
    ``POST /tasks/{id}/cancel`` pass straight through.
    """

    def __init__(self, app: ASGIApp, max_body_size: int) -> None:
        self.app = app
        self.max_body_size = max_body_size

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or not _takes_json_body(
            cast("str", scope.get("method", "GET")),
            cast("str", scope.get("path", "")),
        ):
            await self.app(scope, receive, send)
            return

        headers = dict(cast("list[tuple[bytes, bytes]]", scope.get("headers", [])))
        content_type = headers.get(b"content-type", b"").decode().lower()
        if not content_type.startswith("application/json"):
            response = _error(
                415, "UNSUPPORTED_MEDIA_TYPE", "Content-Type must be application/json"
            )
            await response(scope, receive, send)
            return

        body = await self._read_body(receive)
        if body is None:
            response = _error(413, "PAYLOAD_TOO_LARGE", "Request body exceeds maximum allowed size")
            await response(scope, receive, send)
            return

        await self.app(scope, self._replay(body), send)

    async def _read_body(self, receive: Receive) -> bytes | None:
        """Buffer the request body; None once it grows past the limit."""
        chunks: list[bytes] = []
        size = 0
        more_body = True
        while more_body:
            message = cast("dict[str, Any]", await receive())
            chunk = cast("bytes", message.get("body", b""))
            size += len(chunk)
            if size > self.max_body_size:
                return None
            chunks.append(chunk)
            more_body = bool(message.get("more_body", False))
        return b"".join(chunks)

    @staticmethod
    def _replay(body: bytes) -> Receive:
        delivered = False

        async def receive() -> Message:
            nonlocal delivered
            if delivered:
                return {"type": "http.disconnect"}
            delivered = True
            return {"type": "http.request", "body": body, "more_body": False}

        return receive
