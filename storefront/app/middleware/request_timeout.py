"""Request timeout middleware.

Bounds the total time a request may spend in the application, including
reading an upload body before validation. Requests that run over are
cancelled and answered with HTTP 504 when no response has started yet.
"""

import asyncio
import json
from typing import Optional

from starlette.types import Message, Receive, Scope, Send

from storefront.app.core.logging import get_logger

logger = get_logger(__name__)


class RequestTimeoutMiddleware:
    """ASGI middleware that cancels requests exceeding a time budget.

    Usage:
        app.add_middleware(RequestTimeoutMiddleware, timeout_seconds=30)
    """

    def __init__(self, app, timeout_seconds: float = 30.0):
        """Initialize the middleware.

        Args:
            app: The ASGI application
            timeout_seconds: Maximum seconds a request may take
        """
        self.app = app
        self.timeout_seconds = timeout_seconds

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        response_started = False

        async def send_wrapper(message: Message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            await asyncio.wait_for(
                self.app(scope, receive, send_wrapper), timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"Request timed out after {self.timeout_seconds}s",
                extra={"path": scope.get("path"), "method": scope.get("method")},
            )
            if not response_started:
                await self._send_504_response(send)

    async def _send_504_response(self, send: Send, detail: Optional[str] = None) -> None:
        """Send a 504 Gateway Timeout response."""
        body = json.dumps({
            "error": "request_timeout",
            "message": detail or "The request took too long to complete. Please try again.",
        }).encode()

        await send(
            {
                "type": "http.response.start",
                "status": 504,
                "headers": [
                    [b"content-type", b"application/json"],
                    [b"content-length", str(len(body)).encode()],
                ],
            }
        )
        await send({"type": "http.response.body", "body": body})
