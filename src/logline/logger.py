"""
The access logger facade.

A ``Logger`` owns one token registry and one format registry. It renders
request lines through ``AccessLogMiddleware`` and also serves as a small
level-gated logger of its own, so that ``logger.info("ready")`` comes out in the
same stream and template language as the request lines.
"""

from __future__ import annotations

import socket
import sys
import traceback
from collections.abc import Callable, Mapping
from typing import Any, Final

from starlette.types import ASGIApp

from logline.colors import CYAN, RESET, AnsiStyle, color_for
from logline.config import LoggerOptions
from logline.errors import UnknownFormatError
from logline.exchange import ABSENT, LOG_ERROR, RequestView, ResponseView, attach_error
from logline.formats import (
    BUILTIN_FORMATS,
    DevFormat,
    FormatRegistry,
    FormatSpec,
    Renderer,
    Segment,
    compile_format,
)
from logline.levels import LogLevel, resolve_level
from logline.logging_config import get_logger
from logline.middleware import AccessLogMiddleware
from logline.tokens import BUILTIN_TOKENS, Token, TokenRegistry, clfdate

HOSTNAME: Final = socket.gethostname()

MISSING_ERROR: Final = "no response or no error in res.LOG_ERROR"
NO_MESSAGE: Final = "no message found"


def error_field(error: BaseException, name: str | None) -> Any:
    """Read ``name`` off an exception, with ``message``/``name``/``stack`` aliases."""
    if name == "message":
        return str(error)
    if name == "name":
        return type(error).__name__
    if name == "stack":
        return "".join(traceback.format_exception(error))
    if not name or name.startswith("_"):
        return ABSENT
    return getattr(error, name, ABSENT)


def missing_error_stack() -> str:
    return f"Error: {MISSING_ERROR}\n" + "".join(traceback.format_stack()[:-1])


class Logger:
    """Token/format registries, direct logging and the request middleware factory."""

    LOG_ERROR: Final = LOG_ERROR

    def __init__(self) -> None:
        self.tokens = TokenRegistry(BUILTIN_TOKENS)
        self.formats = FormatRegistry()
        self.options = LoggerOptions()
        self.log_format = "direct"
        self.pretty_errors: Callable[[BaseException], str] | None = None
        self.ready = False
        self._level = LogLevel.INFO

        for name, template in BUILTIN_FORMATS.items():
            self.format(name, template)
        self.format("dev", DevFormat(self.colored))

        self.token("on", lambda req, res, arg=None: self.colored(res.status_code).open if res.headers_sent else "")
        self.token("off", lambda req, res, arg=None: RESET.open if res.headers_sent else "")
        self.token("note", lambda req, res, arg=None: CYAN.open)
        self.token("auth", lambda req, res, arg=None: "")
        self.token("host", lambda req, res, arg=None: HOSTNAME)
        self.token("env", lambda req, res, arg=None: self.options.env)
        self.token("level", lambda req, res, arg=None: self.level)
        self.token("msg", lambda req, res, arg=None: res.error and self.describe(res.error))
        self.token("error", self._error_token)

    @property
    def level(self) -> str:
        return self._level.name

    @level.setter
    def level(self, value: str | int) -> None:
        self._level = resolve_level(value)

    def token(self, name: str, fn: Token) -> Logger:
        """Define (or replace) the token ``name``."""
        self.tokens.register(name, fn)
        return self

    def format(self, name: str | int, fmt: FormatSpec) -> Logger:
        """
        Define the format ``name``.

        ``fmt`` may be a template string, a renderer callable, a list of parsed
        segments, or None to suppress lines for a route key.
        """
        self.formats.define(name, fmt)
        return self

    def compile(self, segments: list[Segment]) -> Renderer:
        return compile_format(segments)

    def get_format_function(self, name: str | int) -> Renderer:
        return self.formats.get(name)

    def colored(self, status: int | None) -> AnsiStyle:
        return color_for(status)

    clfdate = staticmethod(clfdate)
    attach_error = staticmethod(attach_error)

    def describe(self, msg: Any) -> str:
        """Text for a log message: strings as is, exceptions via ``pretty_errors``."""
        if isinstance(msg, str):
            return msg
        if isinstance(msg, BaseException):
            if self.pretty_errors is not None:
                return self.pretty_errors(msg)
            return str(msg) or type(msg).__name__
        return getattr(msg, "message", None) or getattr(msg, "name", None) or NO_MESSAGE

    def _error_token(self, req: RequestView, res: ResponseView, field: str | None = None) -> Any:
        error = res.error
        if error is not None:
            if field == "message" and self.pretty_errors is not None:
                return self.pretty_errors(error)
            return error_field(error, field)
        if field == "stack":
            return missing_error_stack()
        return MISSING_ERROR

    def log(self, level: str | int, msg: Any) -> None:
        """
        Write ``msg`` through the direct log format if ``level`` passes the threshold.

        The per-call ``msg`` and ``level`` tokens shadow the registry for this
        render only. Unknown level names rank below every threshold and are dropped.
        """
        try:
            requested = resolve_level(level)
        except ValueError:
            return
        if requested < self._level:
            return

        call_tokens: Mapping[str, Token] = {
            "msg": lambda req, res, arg=None: self.describe(msg),
            "level": lambda req, res, arg=None: requested.name,
        }
        renderer = self.get_format_function(self.log_format)
        line = renderer(self.tokens.overlay(call_tokens), RequestView(), ResponseView())
        if line is None:
            return

        stream = self.options.stream or sys.stdout
        stream.write(line.strip() + "\n")

    def all(self, msg: Any) -> None:
        self.log(LogLevel.ALL, msg)

    def trace(self, msg: Any) -> None:
        self.log(LogLevel.TRACE, msg)

    def debug(self, msg: Any) -> None:
        self.log(LogLevel.DEBUG, msg)

    def info(self, msg: Any) -> None:
        self.log(LogLevel.INFO, msg)

    def warn(self, msg: Any) -> None:
        self.log(LogLevel.WARN, msg)

    def error(self, msg: Any) -> None:
        self.log(LogLevel.ERROR, msg)

    def fatal(self, msg: Any) -> None:
        self.log(LogLevel.FATAL, msg)

    def mark(self, msg: Any) -> None:
        self.log(LogLevel.MARK, msg)

    def init(self, app: Any = None, options: LoggerOptions | None = None, **overrides: Any) -> Logger:
        """
        Apply options and, when ``app`` is given, install the request middleware.

        Without ``options`` the defaults come from ``LOGLINE_*`` settings.
        """
        opts = self.options = (options or LoggerOptions.from_settings()).merged(**overrides)

        if opts.pretty_errors is not None:
            self.pretty_errors = opts.pretty_errors
        for name, fn in opts.tokens.items():
            self.token(name, fn)
        for name, fmt in opts.formats.items():
            self.format(name, fmt)

        self.log_format = opts.log_format or "direct"
        self.level = opts.log_level if opts.log_level is not None else LogLevel.TRACE

        if app is not None:
            self.hook(app)
        self.ready = True

        get_logger(__name__).debug(
            "Access logger initialised",
            level=self.level,
            log_format=self.log_format,
            use_format=opts.use_format if isinstance(opts.use_format, str) else "<callable>",
        )
        return self

    def _middleware_kwargs(self) -> dict[str, Any]:
        opts = self.options
        return {
            "immediate": opts.immediate,
            "skip": opts.skip,
            "stream": opts.stream,
            "buffer": opts.buffer_interval or False,
            "request_callback": opts.request_callback,
        }

    def hook(self, app: Any) -> None:
        """Add ``AccessLogMiddleware`` to a Starlette or FastAPI application."""
        self.resolve_request_format(self.options.use_format)
        app.add_middleware(
            AccessLogMiddleware,
            logger=self,
            format=self.options.use_format,
            **self._middleware_kwargs(),
        )
        self.ready = True

    def middleware(self, app: ASGIApp, format: str | Renderer | None = None) -> AccessLogMiddleware:  # noqa: A002
        """Wrap a bare ASGI app; ``format`` defaults to the configured request format."""
        return AccessLogMiddleware(
            app,
            logger=self,
            format=format if format is not None else self.options.use_format,
            **self._middleware_kwargs(),
        )

    def resolve_request_format(self, fmt: str | Renderer | None) -> Renderer:
        """Look up the request format, terminating the process if it is undefined."""
        if fmt is None:
            get_logger(__name__).critical("undefined logging format: specify a format")
            sys.exit(1)
        if callable(fmt):
            return fmt
        try:
            return self.get_format_function(fmt)
        except UnknownFormatError:
            get_logger(__name__).critical("undefined logging format", format=fmt)
            sys.exit(1)
