"""
Access logging middleware for ASGI applications.

Renders one line per HTTP request with the owning ``Logger``'s formats and
writes it to a stream. The middleware is plain ASGI rather than
``BaseHTTPMiddleware`` because it needs to see every ``send`` message: the
``http.response.start`` message marks headers as sent (and the time to first
byte), and each ``http.response.body`` message is tallied for
``:res[content-length]`` when the app does not declare a length.
"""

from __future__ import annotations

import atexit
import sys
import time
from collections.abc import Callable
from typing import IO, TYPE_CHECKING, Any

from starlette.types import ASGIApp, Message, Receive, Scope, Send

from logline.buffer import BufferedStream
from logline.config import DEFAULT_BUFFER_DURATION
from logline.exchange import LOG_ERROR, RequestView, ResponseView, content_length, headers_from_raw, route_path_of
from logline.formats import Renderer
from logline.logging_config import get_logger

if TYPE_CHECKING:
    from logline.logger import Logger

SkipPredicate = Callable[[RequestView, ResponseView], bool]
RequestCallback = Callable[[str, Any], None]


class AccessLogMiddleware:
    """
    Log each HTTP request through a named format.

    Format selection on completion, first match wins:
    the status code (``"404"``), ``"<method>:<route>:<status>"``, an explicit
    ``None`` registered for ``"<method>:<route>"`` (suppress), the plain
    ``"<method>:<route>"`` key, then ``format``.
    """

    def __init__(
        self,
        app: ASGIApp,
        logger: Logger,
        format: str | Renderer | None = "combined",  # noqa: A002
        *,
        immediate: bool = False,
        skip: SkipPredicate | None = None,
        stream: IO[str] | None = None,
        buffer: bool | int = False,
        request_callback: RequestCallback | None = None,
    ) -> None:
        self.app = app
        self.logger = logger
        self.format_line = logger.resolve_request_format(format)
        self.immediate = immediate
        self.skip = skip
        self.request_callback = request_callback

        target = stream or sys.stdout
        if buffer:
            interval = DEFAULT_BUFFER_DURATION if buffer is True else int(buffer)
            target = BufferedStream(target, interval)
            atexit.register(target.close)
        self.stream = target

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = RequestView.from_scope(scope, start_at=time.perf_counter())
        response = ResponseView()

        if self.request_callback is not None:
            self.request_callback("request", request)

        async def receive_wrapper() -> Message:
            message = await receive()
            if message["type"] == "http.request":
                request.received_bytes += len(message.get("body", b"") or b"")
            return message

        async def send_wrapper(message: Message) -> None:
            if message["type"] == "http.response.start":
                response.status_code = message["status"]
                response.headers = headers_from_raw(message.get("headers"))
                response.headers_sent = True
                response.start_at = _elapsed(request)
            elif message["type"] == "http.response.body":
                response.sent_bytes += len(message.get("body", b"") or b"")
            await send(message)

        if self.immediate:
            self.log_request(scope, request, response)
            await self.app(scope, receive_wrapper, send_wrapper)
            return

        try:
            await self.app(scope, receive_wrapper, send_wrapper)
        except Exception as exc:
            response.error = exc
            get_logger(__name__).exception(
                "Request failed with exception",
                method=request.method,
                path=scope.get("path", ""),
                duration_ms=round(_elapsed(request) * 1000, 2),
            )
            self.log_request(scope, request, response)
            raise

        self.log_request(scope, request, response)

    def select_format(self, request: RequestView, response: ResponseView) -> Renderer | None:
        """Pick the renderer for this request, or None to suppress the line."""
        formats = self.logger.formats
        status = str(response.status_code) if response.status_code else None
        route = f"{request.method.lower()}:{request.route_path}" if request.route_path else None

        if response.headers_sent and status and formats.is_defined(status):
            return self.logger.get_format_function(status)
        if route and status and formats.is_defined(f"{route}:{status}"):
            return self.logger.get_format_function(f"{route}:{status}")
        if route and formats.is_suppressed(route):
            return None
        if route and formats.is_defined(route):
            return self.logger.get_format_function(route)
        return self.format_line

    def log_request(self, scope: Scope, request: RequestView, response: ResponseView) -> None:
        """Render and write the line for one request."""
        if self.skip is not None and self.skip(request, response):
            return

        # routing fills these in after the view was built
        request.route_path = route_path_of(scope)
        request.fields["params"] = scope.get("path_params", {})
        if response.error is None:
            response.error = scope.get(LOG_ERROR)
        if response.start_at is None:
            response.start_at = _elapsed(request)

        if self.request_callback is not None:
            self.request_callback(
                "response",
                {
                    "verb": request.method,
                    "url": request.route_path or "unknown",
                    "status_code": str(response.status_code) if response.status_code else "unknown",
                    "time": response.start_at,
                    "bytes_in": content_length(request),
                    "bytes_out": content_length(response),
                },
            )

        renderer = self.select_format(request, response)
        line = renderer(self.logger.tokens, request, response) if renderer is not None else None
        if line is None:
            return

        if self.request_callback is not None:
            self.request_callback("logs", line)
        self.stream.write(line + "\n")


def _elapsed(request: RequestView) -> float:
    return time.perf_counter() - request.start_at if request.start_at is not None else 0.0
