from __future__ import annotations

import uuid

from starlette.types import ASGIApp, Receive, Scope, Send

HEADER = "x-correlation-id"


class CorrelationIdMiddleware:
    """
    Assigns every HTTP request a correlation id, taken from X-Correlation-ID
    when the caller sends one, exposes it as ``request.state.correlation_id``
    and echoes it on the response.

    Add via: app.add_middleware(CorrelationIdMiddleware)
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send):
        if scope["type"] != "http":
            return await self.app(scope, receive, send)

        req_headers = {k.decode().lower(): v.decode() for k, v in scope.get("headers", [])}
        correlation_id = req_headers.get(HEADER) or str(uuid.uuid4())
        scope.setdefault("state", {})["correlation_id"] = correlation_id

        async def send_wrapper(message):
            if message["type"] == "http.response.start":
                headers = list(message.get("headers", [])) + [(HEADER.encode(), correlation_id.encode())]
                message = {**message, "headers": headers}
            await send(message)

        await self.app(scope, receive, send_wrapper)
