"""
Demo FastAPI application with logline access logging.

Endpoints:
- GET /                 : Hello World response
- GET /ping             : Health check, suppressed from the access log
- GET /items/{item_id}  : Item lookup; unknown ids get their own 404 line
- GET /invalid          : Attaches a ValueError to the request and returns 400
- GET /stream           : Streamed body whose length comes from the byte tally
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from asgi_correlation_id import CorrelationIdMiddleware
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import StreamingResponse

from logline.config import LoggerOptions
from logline.exchange import attach_error
from logline.logger import Logger
from logline.logging_config import configure_logging, get_logger

ITEMS: dict[int, str] = {1: "hammer", 2: "chisel", 42: "towel"}

DEMO_FORMATS: dict[str, Any] = {
    "get:/ping": None,
    "get:/items/{item_id}:404": ":method :url :status item not found",
    "400": ":request-id :method :url :status - :error[message]",
}


def create_app(access_logger: Logger | None = None, options: LoggerOptions | None = None) -> FastAPI:
    """Build the demo app with ``access_logger`` installed as request middleware."""
    access_logger = access_logger or Logger()
    options = options or LoggerOptions.from_settings(use_format="tiny")

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:  # pyright: ignore[reportUnusedParameter]
        configure_logging(json_output=False)
        get_logger(__name__).info("Application started")
        access_logger.info("Application started")

        yield

        access_logger.info("Application shutting down")

    app = FastAPI(
        title="logline demo",
        description="Demo API for token-template access logging",
        version="0.1.0",
        lifespan=lifespan,
    )

    access_logger.init(app, options, formats={**DEMO_FORMATS, **options.formats})
    app.add_middleware(CorrelationIdMiddleware)
    app.state.access_logger = access_logger

    @app.get("/")
    async def read_root() -> dict[str, str]:
        """Return Hello World response."""
        return {"Hello": "World"}

    @app.get("/ping")
    async def health_check() -> str:
        """Health check endpoint."""
        return "pong"

    @app.get("/items/{item_id}")
    async def read_item(item_id: int) -> dict[str, Any]:
        """Read an item by ID."""
        if item_id not in ITEMS:
            raise HTTPException(status_code=404, detail="Item not found")
        return {"item_id": item_id, "name": ITEMS[item_id]}

    @app.get("/invalid")
    async def invalid_endpoint(request: Request) -> dict[str, str]:
        """Attach a ValueError for the access line and answer 400."""
        error = ValueError("This is an intentional error for testing")
        attach_error(request, error)
        access_logger.warn(error)
        raise HTTPException(status_code=400, detail=str(error))

    @app.get("/stream")
    async def stream() -> StreamingResponse:
        """Stream a body without a Content-Length header."""

        async def chunks() -> AsyncIterator[bytes]:
            yield b"ab"
            yield b"cde"

        return StreamingResponse(chunks(), media_type="text/plain")

    return app


app = create_app()
