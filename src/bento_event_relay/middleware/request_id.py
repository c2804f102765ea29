"""Request ID middleware — unique ID per request or WebSocket handshake.

Learn: Every HTTP request and every WebSocket connection gets a UUID,
either from the incoming X-Request-ID header or auto-generated. The ID is
bound to structlog's contextvars, so the auth gate's and the endpoint's
log entries for one handshake share it. HTTP responses echo it back.

Written as plain ASGI (not BaseHTTPMiddleware) so it also sees
websocket scopes.
"""

import uuid

import structlog
from starlette.datastructures import Headers, MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

REQUEST_ID_HEADER = "X-Request-ID"


class RequestIdMiddleware:
    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] not in ("http", "websocket"):
            await self.app(scope, receive, send)
            return

        request_id = Headers(scope=scope).get(REQUEST_ID_HEADER) or str(uuid.uuid4())

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        async def send_with_request_id(message: Message) -> None:
            if message["type"] == "http.response.start":
                MutableHeaders(scope=message)[REQUEST_ID_HEADER] = request_id
            await send(message)

        await self.app(scope, receive, send_with_request_id)
