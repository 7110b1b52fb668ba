"""
Request ID middleware for request tracing.

Generates or propagates an X-Request-ID for every HTTP request and every
WebSocket connection, so all log lines produced while serving it carry
the same id.
"""

import logging
import uuid
from typing import Callable, Optional

from starlette.datastructures import Headers, MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from logging_config import request_id_var

logger = logging.getLogger(__name__)


class RequestIDMiddleware:
    """
    ASGI middleware for request ID generation and propagation.

    - Extracts X-Request-ID from incoming headers (HTTP or WebSocket handshake)
    - Generates a new UUID if not present
    - Sets request_id in the logging context var for the lifetime of the call
    - Adds X-Request-ID to HTTP response headers
    """

    def __init__(
        self,
        app: ASGIApp,
        header_name: str = "X-Request-ID",
        generator: Optional[Callable[[], str]] = None,
    ):
        self.app = app
        self.header_name = header_name
        self.generator = generator or (lambda: str(uuid.uuid4()))

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] not in ("http", "websocket"):
            await self.app(scope, receive, send)
            return

        request_id = Headers(scope=scope).get(self.header_name) or self.generator()
        scope.setdefault("state", {})["request_id"] = request_id
        token = request_id_var.set(request_id)

        async def send_with_request_id(message: Message) -> None:
            if message["type"] == "http.response.start":
                MutableHeaders(scope=message)[self.header_name] = request_id
            await send(message)

        try:
            await self.app(scope, receive, send_with_request_id)
        finally:
            request_id_var.reset(token)
