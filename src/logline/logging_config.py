"""
Diagnostics for logline itself.

Request lines never pass through here; the middleware writes them straight to
its stream. What does pass through here is what logline has to say about its
own operation: a request format that does not exist, a request whose app
raised, a buffered flush that failed. Those events go through structlog so
they carry the asgi-correlation-id request id and the OpenTelemetry span of
the request that caused them.

Records are queued by the emitting thread and rendered by a QueueListener
thread, so the event loop never waits on the terminal.
"""

from __future__ import annotations

import atexit
import logging
import logging.config
import sys
from logging.handlers import QueueHandler, QueueListener
from queue import Queue
from typing import IO, Any, Final

import structlog
from asgi_correlation_id import correlation_id
from opentelemetry import trace

# Loggers whose records are routed through the diagnostics queue
QUEUED_LOGGERS: Final = ("logline", "uvicorn", "uvicorn.error")

# logline level names that the stdlib does not know
_LEVEL_ALIASES: Final = {"ALL": "DEBUG", "TRACE": "DEBUG", "MARK": "CRITICAL", "OFF": "CRITICAL"}

_queue_listener: QueueListener | None = None
_log_queue: Queue[logging.LogRecord] | None = None


class NonFormattingQueueHandler(QueueHandler):
    """Enqueue records untouched so the listener's ProcessorFormatter still sees the event dict."""

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        return record


def add_correlation_id(
    logger: logging.Logger,  # pyright: ignore[reportUnusedParameter]
    method_name: str,  # pyright: ignore[reportUnusedParameter]
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Tag the event with the id of the request being served, if any."""
    if request_id := correlation_id.get():
        event_dict["request_id"] = request_id
    return event_dict


def add_open_telemetry_spans(
    logger: logging.Logger,  # pyright: ignore[reportUnusedParameter]
    method_name: str,  # pyright: ignore[reportUnusedParameter]
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Tag the event with the trace and span ids of a recording span."""
    span = trace.get_current_span()
    if not span.is_recording():
        return event_dict

    ctx = span.get_span_context()
    event_dict["trace_id"] = trace.format_trace_id(ctx.trace_id)
    event_dict["span_id"] = trace.format_span_id(ctx.span_id)
    if parent := getattr(span, "parent", None):
        event_dict["parent_span_id"] = trace.format_span_id(parent.span_id)
    return event_dict


def get_shared_processors() -> list[structlog.types.Processor]:
    """Processors run for structlog events and for stdlib records from uvicorn."""
    return [  # pyright: ignore[reportReturnType]
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        add_correlation_id,
        add_open_telemetry_spans,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]


def diagnostics_level(name: str) -> int:
    """
    Translate a level name into a stdlib level.

    Accepts stdlib names and logline's own (``TRACE``, ``WARN``, ``FATAL``,
    ``MARK``) in any case. Anything else is ``INFO``.
    """
    name = name.strip().upper()
    level = getattr(logging, _LEVEL_ALIASES.get(name, name), None)
    return level if isinstance(level, int) else logging.INFO


def _build_handler(json_output: bool, level: int, stream: IO[str] | None) -> logging.Handler:
    if json_output:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
        exc_processor: structlog.types.Processor = structlog.processors.format_exc_info
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)
        exc_processor = structlog.dev.set_exc_info

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                exc_processor,
                renderer,
            ],
            foreign_pre_chain=get_shared_processors(),
        )
    )
    handler.setLevel(level)
    return handler


def configure_logging(
    json_output: bool = False,
    log_level: str = "INFO",
    stream: IO[str] | None = None,
) -> None:
    """
    Route logline and uvicorn diagnostics through a queue to ``stream``.

    Calling it again replaces the previous listener.

    Args:
        json_output: Render diagnostics as JSON instead of coloured console text.
        log_level: stdlib or logline level name; unknown names mean INFO.
        stream: Destination for rendered diagnostics, stderr by default.
    """
    global _queue_listener, _log_queue

    stop_queue_listener()

    level = diagnostics_level(log_level)
    _log_queue = Queue(-1)

    loggers: dict[str, dict[str, Any]] = {
        name: {"handlers": ["queue"], "level": logging.getLevelName(level), "propagate": False}
        for name in QUEUED_LOGGERS
    }
    # request lines come from the access middleware, not uvicorn
    loggers["uvicorn.access"] = {"handlers": [], "level": "WARNING", "propagate": False}

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "handlers": {
                "queue": {
                    "class": "logline.logging_config.NonFormattingQueueHandler",
                    "queue": _log_queue,
                },
            },
            "loggers": loggers,
        }
    )

    _queue_listener = QueueListener(_log_queue, _build_handler(json_output, level, stream), respect_handler_level=True)
    _queue_listener.start()
    atexit.register(stop_queue_listener)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *get_shared_processors(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def stop_queue_listener() -> None:
    """Drain pending diagnostics and stop the listener thread. Safe to repeat."""
    global _queue_listener, _log_queue
    if _queue_listener is not None:
        _queue_listener.stop()
        _queue_listener = None
    _log_queue = None


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
