"""
Token registry and the request/response tokens that need no logger state.

A token is ``fn(request, response, arg=None)``. Templates only record token
names, so the registry is consulted at render time and re-registering a name
changes every format that uses it.
"""

from __future__ import annotations

from collections import ChainMap
from collections.abc import Callable, Iterator, Mapping
from datetime import datetime, timezone
from email.utils import format_datetime
from typing import Any, Final

from asgi_correlation_id import correlation_id
from opentelemetry import trace

from logline.exchange import ABSENT, RequestView, ResponseView, content_length
from logline.resolver import resolve_client_address

Token = Callable[..., Any]

CLF_MONTH: Final = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

DEFAULT_RESPONSE_TIME_DIGITS: Final = 3


class TokenRegistry(Mapping[str, Token]):
    """Token name to extraction function. Later registrations win."""

    def __init__(self, tokens: Mapping[str, Token] | None = None) -> None:
        self._tokens: dict[str, Token] = dict(tokens or {})

    def register(self, name: str, fn: Token) -> None:
        self._tokens[name] = fn

    def lookup(self, name: str) -> Token | None:
        return self._tokens.get(name)

    def overlay(self, tokens: Mapping[str, Token]) -> Mapping[str, Token]:
        """A view with ``tokens`` shadowing the registry for a single render."""
        return ChainMap(dict(tokens), self._tokens)

    def __getitem__(self, name: str) -> Token:
        return self._tokens[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._tokens)

    def __len__(self) -> int:
        return len(self._tokens)


def pretty(value: Any) -> Any:
    if isinstance(value, list):
        return ", ".join(value)
    return value


def clfdate(moment: datetime | str) -> str:
    """Format a timestamp in Apache common log format, always in UTC."""
    if isinstance(moment, str):
        moment = datetime.fromisoformat(moment)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)

    month = CLF_MONTH[moment.month - 1]
    return (
        f"{moment.day:02d}/{month}/{moment.year}:"
        f"{moment.hour:02d}:{moment.minute:02d}:{moment.second:02d} +0000"
    )


def isodate(moment: datetime) -> str:
    """ISO-8601 in UTC with millisecond precision and a ``Z`` suffix."""
    moment = moment.astimezone(timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def method_token(req: RequestView, res: ResponseView, arg: str | None = None) -> Any:
    return req.method


def url_token(req: RequestView, res: ResponseView, arg: str | None = None) -> Any:
    return req.url


def status_token(req: RequestView, res: ResponseView, arg: str | None = None) -> Any:
    if res.headers_sent and res.status_code:
        return str(res.status_code)
    return ABSENT


def response_time_token(req: RequestView, res: ResponseView, digits: str | int | None = None) -> Any:
    if res.start_at is None:
        return ABSENT
    if isinstance(digits, int):
        places = digits
    elif isinstance(digits, str) and digits.isdigit():
        places = int(digits)
    else:
        places = DEFAULT_RESPONSE_TIME_DIGITS
    return f"{res.start_at * 1e3:.{places}f}"


def date_token(req: RequestView, res: ResponseView, style: str | None = None) -> Any:
    now = _now()
    if style == "clf":
        return clfdate(now)
    if style == "web":
        return format_datetime(now, usegmt=True)
    return isodate(now)


def referrer_token(req: RequestView, res: ResponseView, arg: str | None = None) -> Any:
    return req.get_header("referer") or req.get_header("referrer")


def remote_addr_token(req: RequestView, res: ResponseView, arg: str | None = None) -> Any:
    return resolve_client_address(req)


def remote_user_token(req: RequestView, res: ResponseView, arg: str | None = None) -> Any:
    return req.user


def http_version_token(req: RequestView, res: ResponseView, arg: str | None = None) -> Any:
    return req.http_version


def user_agent_token(req: RequestView, res: ResponseView, arg: str | None = None) -> Any:
    return req.get_header("user-agent")


def req_header_token(req: RequestView, res: ResponseView, name: str | None = None) -> Any:
    if not name:
        return ABSENT
    if name.lower() == "content-length":
        return pretty(content_length(req))
    return pretty(req.get_header(name))


def res_header_token(req: RequestView, res: ResponseView, name: str | None = None) -> Any:
    if not res.headers_sent or not name:
        return ""
    if name.lower() == "content-length":
        return pretty(content_length(res))
    return pretty(res.get_header(name))


def request_field_token(req: RequestView, res: ResponseView, path: str | None = None) -> Any:
    return pretty(req.get_field(path)) if path else ABSENT


def response_field_token(req: RequestView, res: ResponseView, path: str | None = None) -> Any:
    return pretty(res.get_field(path)) if path else ABSENT


def request_id_token(req: RequestView, res: ResponseView, arg: str | None = None) -> Any:
    return correlation_id.get()


def trace_id_token(req: RequestView, res: ResponseView, arg: str | None = None) -> Any:
    ctx = trace.get_current_span().get_span_context()
    if not ctx.is_valid:
        return ABSENT
    return format(ctx.trace_id, "032x")


BUILTIN_TOKENS: Final[Mapping[str, Token]] = {
    "method": method_token,
    "url": url_token,
    "status": status_token,
    "response-time": response_time_token,
    "date": date_token,
    "referrer": referrer_token,
    "remote-addr": remote_addr_token,
    "remote-user": remote_user_token,
    "http-version": http_version_token,
    "user-agent": user_agent_token,
    "req": req_header_token,
    "res": res_header_token,
    "request": request_field_token,
    "response": response_field_token,
    "request-id": request_id_token,
    "trace-id": trace_id_token,
}
