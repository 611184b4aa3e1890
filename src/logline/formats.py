"""
Format templates: parsing, compilation and the named format registry.

A template such as ``:method :url :res[content-length]`` is split into literal
text and token references. Compiling the segments yields a renderer
``fn(tokens, req, res) -> str | None`` that looks each token up by name in the
mapping it is given at call time.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping, Sequence
from typing import Any, Final, NamedTuple, TypeAlias

from logline.colors import RESET, AnsiStyle
from logline.errors import UnknownFormatError, UnknownTokenError
from logline.exchange import RequestView, ResponseView
from logline.tokens import Token


class TokenRef(NamedTuple):
    name: str
    arg: str | None = None


Segment: TypeAlias = "str | TokenRef"
Renderer: TypeAlias = Callable[[Mapping[str, Token], RequestView, ResponseView], str | None]
FormatSpec: TypeAlias = "str | Renderer | Sequence[Segment] | None"

_TOKEN_SPLIT = re.compile(r"(:[-\w]{2,}(?:\[[^\]]+\])?)", re.ASCII)
_TOKEN_PARTS = re.compile(r":([-\w]{2,})(?:\[([^\]]+)\])?", re.ASCII)

BUILTIN_FORMATS: Final[Mapping[str, str]] = {
    # request logging with the status coloured by class
    "standard": ":on:date[iso] [:level] [:auth] [:status]:off - :request[baseUrl] | :method :url",
    # direct logging, log.info("...")
    "direct": ":note:date[iso] [:level]:off - :msg",
    # Apache combined log format
    "combined": (
        ':remote-addr - :remote-user [:date[clf]] ":method :url HTTP/:http-version"'
        ' :status :res[content-length] ":referrer" ":user-agent"'
    ),
    # Apache common log format
    "common": (
        ':remote-addr - :remote-user [:date[clf]] ":method :url HTTP/:http-version"'
        " :status :res[content-length]"
    ),
    "default": (
        ':remote-addr - :remote-user [:date] ":method :url HTTP/:http-version"'
        ' :status :res[content-length] ":referrer" ":user-agent"'
    ),
    "short": (
        ":remote-addr :remote-user :method :url HTTP/:http-version"
        " :status :res[content-length] - :response-time ms"
    ),
    "tiny": ":method :url :status :res[content-length] - :response-time ms",
}


def parse_format(template: str) -> list[Segment]:
    """Split a template into literal strings and ``TokenRef`` segments."""
    segments: list[Segment] = []
    # split() puts captured tokens at odd indices and literal text between them
    for index, piece in enumerate(_TOKEN_SPLIT.split(template)):
        if not piece:
            continue
        match = _TOKEN_PARTS.fullmatch(piece) if index % 2 else None
        if match is None:
            segments.append(piece)
        else:
            segments.append(TokenRef(match.group(1), match.group(2)))
    return segments


def compile_format(segments: Sequence[Segment]) -> Renderer:
    """
    Turn parsed segments into a renderer.

    Falsy token values render as an empty string.

    Raises:
        TypeError: if ``segments`` is not a list or tuple of segments.
    """
    if not isinstance(segments, (list, tuple)):
        raise TypeError("argument format must be a sequence of segments")

    pieces = tuple(TokenRef(*piece) if isinstance(piece, (list, tuple)) else piece for piece in segments)

    def render(tokens: Mapping[str, Token], req: RequestView, res: ResponseView) -> str:
        out: list[str] = []
        for piece in pieces:
            if isinstance(piece, str):
                out.append(piece)
                continue
            fn = tokens.get(piece.name)
            if fn is None:
                raise UnknownTokenError(piece.name)
            value = fn(req, res) if piece.arg is None else fn(req, res, piece.arg)
            out.append(str(value) if value else "")
        return "".join(out)

    return render


def _suppress(tokens: Mapping[str, Token], req: RequestView, res: ResponseView) -> None:
    return None


class FormatRegistry:
    """Named formats, compiled to renderers on first use."""

    def __init__(self) -> None:
        self._formats: dict[str, Any] = {}
        self._compiled: dict[str, Renderer] = {}

    def define(self, name: str | int, fmt: FormatSpec) -> None:
        key = str(name)
        self._compiled.pop(key, None)
        if isinstance(fmt, str):
            self._formats[key] = parse_format(fmt)
        else:
            self._formats[key] = fmt

    def __contains__(self, name: object) -> bool:
        return str(name) in self._formats

    def is_defined(self, name: str) -> bool:
        """True for a usable format, False for unknown names and suppressions."""
        return self._formats.get(name) is not None

    def is_suppressed(self, name: str) -> bool:
        return name in self._formats and self._formats[name] is None

    def segments(self, name: str) -> Any:
        try:
            return self._formats[str(name)]
        except KeyError:
            raise UnknownFormatError(str(name)) from None

    def get(self, name: str | int) -> Renderer:
        key = str(name)
        compiled = self._compiled.get(key)
        if compiled is not None:
            return compiled

        fmt = self.segments(key)
        if fmt is None:
            renderer: Renderer = _suppress
        elif callable(fmt):
            renderer = fmt
        else:
            renderer = compile_format(fmt)
        self._compiled[key] = renderer
        return renderer

    def names(self) -> list[str]:
        return list(self._formats)


class DevFormat:
    """
    Concise coloured output for development.

    The status column is coloured by class, so one renderer is compiled per
    status code and kept in ``cache``.
    """

    def __init__(self, colored: Callable[[int | None], AnsiStyle]) -> None:
        self._colored = colored
        self.cache: dict[int | None, Renderer] = {}

    def template(self, status: int | None) -> str:
        color = self._colored(status)
        return (
            f"{RESET.open}:method :url {color.open}:status {color.close}"
            f"{RESET.open}:response-time ms - :res[content-length]{RESET.open}"
        )

    def __call__(self, tokens: Mapping[str, Token], req: RequestView, res: ResponseView) -> str | None:
        status = res.status_code if res.headers_sent else None
        renderer = self.cache.get(status)
        if renderer is None:
            renderer = self.cache[status] = compile_format(parse_format(self.template(status)))
        return renderer(tokens, req, res)
