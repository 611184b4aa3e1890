"""Tests for the Logger facade: direct logging, registries and initialisation."""

from __future__ import annotations

import io
import re
import socket
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from logline.config import LoggerOptions
from logline.exchange import RequestView, ResponseView
from logline.logger import MISSING_ERROR, NO_MESSAGE, Logger

DIRECT_LINE = re.compile(r"\x1b\[36m\d{4}-\d\d-\d\dT\d\d:\d\d:\d\d\.\d{3}Z \[(?P<level>[A-Z]+)\] - (?P<msg>.*)\n")


@pytest.fixture
def stream() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def logger(stream: io.StringIO) -> Logger:
    """A logger writing to an in-memory stream at TRACE."""
    return Logger().init(options=LoggerOptions(stream=stream))


class TestDirectLogging:
    """Tests for level-gated direct log calls."""

    def test_direct_line_shape(self, logger: Logger, stream: io.StringIO) -> None:
        """The direct format writes a coloured ISO timestamp, the level and the message."""
        logger.error("boom")

        match = DIRECT_LINE.fullmatch(stream.getvalue())
        assert match is not None
        assert match["level"] == "ERROR"
        assert match["msg"] == "boom"

    def test_below_threshold_writes_nothing(self, logger: Logger, stream: io.StringIO) -> None:
        """Calls under the threshold never touch the stream."""
        logger.level = "WARN"
        mock_stream = MagicMock()
        logger.options.stream = mock_stream

        logger.trace("a")
        logger.debug("b")
        logger.info("c")

        mock_stream.write.assert_not_called()

    def test_at_and_above_threshold(self, logger: Logger, stream: io.StringIO) -> None:
        """The threshold level itself and everything above it are written."""
        logger.level = "WARN"

        logger.warn("one")
        logger.fatal("two")
        logger.mark("three")

        levels = [m["level"] for m in DIRECT_LINE.finditer(stream.getvalue())]
        assert levels == ["WARN", "FATAL", "MARK"]

    def test_all_and_trace_pass_at_all(self, logger: Logger, stream: io.StringIO) -> None:
        """At ALL every call is written."""
        logger.level = "all"
        logger.all("x")
        logger.trace("y")
        assert stream.getvalue().count("\n") == 2

    def test_exception_message(self, logger: Logger, stream: io.StringIO) -> None:
        """Exceptions are written by message, or by class name when empty."""
        logger.error(ValueError("bad input"))
        logger.error(RuntimeError())

        msgs = [m["msg"] for m in DIRECT_LINE.finditer(stream.getvalue())]
        assert msgs == ["bad input", "RuntimeError"]

    def test_pretty_errors(self, stream: io.StringIO) -> None:
        """A configured error formatter is used for exceptions."""
        logger = Logger().init(options=LoggerOptions(stream=stream, pretty_errors=lambda e: f"!! {e} !!"))
        logger.error(KeyError("k"))
        assert stream.getvalue().endswith("- !! 'k' !!\n")

    def test_objects_without_message(self, logger: Logger, stream: io.StringIO) -> None:
        """Objects use their message or name attribute, else a placeholder."""
        logger.info(SimpleNamespace(message="from attr"))
        logger.info(SimpleNamespace(name="named"))
        logger.info(42)

        msgs = [m["msg"] for m in DIRECT_LINE.finditer(stream.getvalue())]
        assert msgs == ["from attr", "named", NO_MESSAGE]

    def test_custom_direct_format(self, stream: io.StringIO) -> None:
        """log_format selects the template for direct calls; lines are trimmed."""
        logger = Logger().init(
            options=LoggerOptions(stream=stream, log_format="plain", formats={"plain": "  [:level] :msg  "}),
        )
        logger.info("hello")
        assert stream.getvalue() == "[INFO] hello\n"

    def test_suppressed_direct_format(self, stream: io.StringIO) -> None:
        """A renderer that yields None writes nothing."""
        logger = Logger().init(options=LoggerOptions(stream=stream, log_format="quiet", formats={"quiet": None}))
        logger.fatal("unseen")
        assert stream.getvalue() == ""

    def test_per_call_tokens_do_not_leak(self, logger: Logger) -> None:
        """After a call the registry's msg and level tokens are unchanged."""
        msg_token = logger.tokens["msg"]
        level_token = logger.tokens["level"]

        logger.error("boom")

        assert logger.tokens["msg"] is msg_token
        assert logger.tokens["level"] is level_token
        assert logger.tokens["level"](RequestView(), ResponseView()) == "TRACE"


class TestLevel:
    """Tests for the level property."""

    def test_default_before_init(self) -> None:
        """A fresh logger starts at INFO."""
        assert Logger().level == "INFO"

    def test_names_and_indexes(self, logger: Logger) -> None:
        """Names in any case and numeric indexes are accepted."""
        logger.level = "debug"
        assert logger.level == "DEBUG"
        logger.level = 5
        assert logger.level == "ERROR"

    def test_unknown_level(self, logger: Logger) -> None:
        """Unknown names are rejected and the old level kept."""
        logger.level = "WARN"
        with pytest.raises(ValueError):
            logger.level = "loud"
        assert logger.level == "WARN"

    def test_log_with_unknown_level_is_dropped(self, logger: Logger, stream: io.StringIO) -> None:
        """A message at an unknown level is gated out, even at the lowest threshold."""
        logger.level = "ALL"

        logger.log("VERBOSE", "hi")

        assert stream.getvalue() == ""
        assert logger.level == "ALL"


class TestRegistries:
    """Tests for defining tokens and formats through the facade."""

    def test_format_and_render(self, logger: Logger) -> None:
        """A user format renders against request and response views."""
        fn = logger.format("mine", ":method :status").get_format_function("mine")
        line = fn(logger.tokens, RequestView(method="GET"), ResponseView(status_code=200, headers_sent=True))
        assert line == "GET 200"

    def test_token_is_chainable_and_late_bound(self, logger: Logger) -> None:
        """Tokens defined after a format is compiled are still picked up."""
        fn = logger.format("greet", "hi :who").get_format_function("greet")
        logger.token("who", lambda req, res: "there")
        assert fn(logger.tokens, RequestView(), ResponseView()) == "hi there"

    def test_compile(self, logger: Logger) -> None:
        """Segments compile to a renderer."""
        fn = logger.compile(["x=", ["method"]])
        assert fn(logger.tokens, RequestView(method="PUT"), ResponseView()) == "x=PUT"

    def test_builtin_formats_are_registered(self, logger: Logger) -> None:
        """All shipped formats, including dev, are available."""
        for name in ("standard", "direct", "combined", "common", "default", "short", "tiny", "dev"):
            assert logger.formats.is_defined(name)

    def test_standard_format(self, logger: Logger) -> None:
        """The standard format colours the status and shows the mount path."""
        line = logger.get_format_function("standard")(
            logger.tokens,
            RequestView(method="GET", url="/x", fields={"baseUrl": "/api"}),
            ResponseView(status_code=404, headers_sent=True),
        )
        assert line is not None
        assert line.startswith("\x1b[33m")
        assert line.endswith("[] [404]\x1b[0m - /api | GET /x")

    def test_clfdate_alias(self) -> None:
        """The date helper is reachable from the logger."""
        assert Logger.clfdate("2020-01-02T03:04:05Z") == "02/Jan/2020:03:04:05 +0000"


class TestErrorTokens:
    """Tests for :error[...] and :msg on request lines."""

    def test_error_fields(self, logger: Logger) -> None:
        """message, name and stack read from the attached exception."""
        fn = logger.format("e", ":error[name]: :error[message]").get_format_function("e")
        res = ResponseView(error=ValueError("nope"))
        assert fn(logger.tokens, RequestView(), res) == "ValueError: nope"

    def test_error_stack(self, logger: Logger) -> None:
        """The stack is the formatted traceback."""
        try:
            raise RuntimeError("deep")
        except RuntimeError as exc:
            error = exc

        stack = logger.tokens["error"](RequestView(), ResponseView(error=error), "stack")
        assert "Traceback" in stack
        assert "RuntimeError: deep" in stack

    def test_missing_error(self, logger: Logger) -> None:
        """Without an error a fixed placeholder is rendered."""
        assert logger.tokens["error"](RequestView(), ResponseView(), "message") == MISSING_ERROR
        stack = logger.tokens["error"](RequestView(), ResponseView(), "stack")
        assert stack.startswith(f"Error: {MISSING_ERROR}\n")

    def test_pretty_error_message(self, stream: io.StringIO) -> None:
        """pretty_errors also formats :error[message]."""
        logger = Logger().init(options=LoggerOptions(stream=stream, pretty_errors=lambda e: "pretty"))
        assert logger.tokens["error"](RequestView(), ResponseView(error=ValueError("x")), "message") == "pretty"

    def test_msg_token_on_request_lines(self, logger: Logger) -> None:
        """:msg describes the request's error, and is empty without one."""
        msg = logger.tokens["msg"]
        assert msg(RequestView(), ResponseView(error=ValueError("bad"))) == "bad"
        assert not msg(RequestView(), ResponseView())


class TestInit:
    """Tests for Logger.init."""

    def test_options_applied(self, stream: io.StringIO) -> None:
        """Tokens, formats, level and format names come from the options."""
        logger = Logger().init(
            options=LoggerOptions(
                stream=stream,
                log_level="ERROR",
                tokens={"app": lambda req, res: "demo"},
                formats={"mine": ":app"},
            ),
        )

        assert logger.ready is True
        assert logger.level == "ERROR"
        assert logger.get_format_function("mine")(logger.tokens, RequestView(), ResponseView()) == "demo"

    def test_overrides_win(self, stream: io.StringIO) -> None:
        """Keyword overrides replace option values."""
        logger = Logger().init(options=LoggerOptions(stream=stream), log_level="MARK")
        assert logger.level == "MARK"

    def test_defaults_from_environment(self, monkeypatch: pytest.MonkeyPatch, stream: io.StringIO) -> None:
        """Without options the LOGLINE_ environment is read."""
        monkeypatch.setenv("LOGLINE_LOG_LEVEL", "warn")
        monkeypatch.setenv("LOGLINE_ENV", "staging")

        logger = Logger().init(stream=stream)

        assert logger.level == "WARN"
        assert logger.tokens["env"](RequestView(), ResponseView()) == "staging"

    def test_host_token(self, logger: Logger) -> None:
        """:host is the machine's hostname."""
        assert logger.tokens["host"](RequestView(), ResponseView()) == socket.gethostname()

    def test_hook_installs_middleware(self, stream: io.StringIO) -> None:
        """With an app, init adds the access middleware to it."""
        app = MagicMock()
        logger = Logger().init(app, LoggerOptions(stream=stream, use_format="tiny", immediate=True))

        app.add_middleware.assert_called_once()
        args, kwargs = app.add_middleware.call_args
        assert args[0].__name__ == "AccessLogMiddleware"
        assert kwargs["logger"] is logger
        assert kwargs["format"] == "tiny"
        assert kwargs["immediate"] is True
        assert kwargs["buffer"] is False


class TestUndefinedFormat:
    """A missing request format stops the process at startup."""

    def test_none_format_exits(self) -> None:
        """No format at all is fatal."""
        with patch("logline.logger.get_logger") as mock_get_logger:
            mock_logger = MagicMock()
            mock_get_logger.return_value = mock_logger

            with pytest.raises(SystemExit) as exc_info:
                Logger().resolve_request_format(None)

        assert exc_info.value.code == 1
        mock_logger.critical.assert_called_once()

    def test_unknown_format_exits(self) -> None:
        """An unknown name is fatal and reported with the name."""
        with patch("logline.logger.get_logger") as mock_get_logger:
            mock_logger = MagicMock()
            mock_get_logger.return_value = mock_logger

            with pytest.raises(SystemExit):
                Logger().resolve_request_format("nope")

        assert mock_logger.critical.call_args.kwargs["format"] == "nope"

    def test_hook_with_unknown_format_exits(self, stream: io.StringIO) -> None:
        """init refuses to install middleware with an unknown request format."""
        app = MagicMock()
        with pytest.raises(SystemExit):
            Logger().init(app, LoggerOptions(stream=stream, use_format="nope"))
        app.add_middleware.assert_not_called()

    def test_callable_format_is_returned(self) -> None:
        """A renderer function needs no lookup."""

        def render(tokens: object, req: RequestView, res: ResponseView) -> str:
            return "x"

        assert Logger().resolve_request_format(render) is render

    def test_get_format_function_unknown(self) -> None:
        """Direct lookups of unknown names raise KeyError."""
        with pytest.raises(KeyError):
            Logger().get_format_function("nope")
