"""
Request and response views read by tokens.

Tokens never touch the ASGI scope directly. The middleware builds a
``RequestView`` from the scope and a ``ResponseView`` that it fills in as the
response is sent; direct log calls render against empty views. Lookups that
find nothing return ``ABSENT``, which is falsy and therefore renders as an
empty string.
"""

from __future__ import annotations

import base64
import binascii
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass, field
from typing import Any, Final, Protocol

from starlette.requests import HTTPConnection
from starlette.types import Scope

# Scope key under which handlers attach an error for ``:error[...]``
LOG_ERROR: Final = "logline.error"

HeaderValue = str | list[str]


class _Absent:
    _instance: _Absent | None = None

    def __new__(cls) -> _Absent:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "ABSENT"


ABSENT: Final = _Absent()


class FieldSource(Protocol):
    """What a token may ask of a request or response."""

    def get_header(self, name: str) -> HeaderValue | _Absent: ...

    def get_field(self, path: str) -> Any: ...


def _normalize_headers(headers: Mapping[str, HeaderValue]) -> dict[str, HeaderValue]:
    return {name.lower(): value for name, value in headers.items()}


def headers_from_raw(raw: list[tuple[bytes, bytes]] | None) -> dict[str, HeaderValue]:
    """Decode ASGI header pairs, collecting repeated names into a list."""
    headers: dict[str, HeaderValue] = {}
    for key, value in raw or []:
        name = key.decode("latin-1").lower()
        text = value.decode("latin-1")
        existing = headers.get(name)
        if existing is None:
            headers[name] = text
        elif isinstance(existing, list):
            existing.append(text)
        else:
            headers[name] = [existing, text]
    return headers


def _walk(root: Any, path: str) -> Any:
    current = root
    for key in path.split("."):
        if current is None or current is ABSENT:
            return ABSENT
        if isinstance(current, Mapping):
            current = current.get(key, ABSENT)
        elif key.startswith("_"):
            return ABSENT
        else:
            current = getattr(current, key, ABSENT)
    return current


class _FieldAccess:
    fields: dict[str, Any]
    headers: dict[str, HeaderValue]

    def get_header(self, name: str) -> HeaderValue | _Absent:
        return self.headers.get(name.lower(), ABSENT)

    def get_field(self, path: str) -> Any:
        """Dotted lookup, checking ``fields`` before attributes for the first key."""
        first, _, rest = path.partition(".")
        if first in self.fields:
            root = self.fields[first]
        elif first.startswith("_"):
            return ABSENT
        else:
            root = getattr(self, first, ABSENT)
        return _walk(root, rest) if rest else root


@dataclass
class RequestView(_FieldAccess):
    method: str = ""
    url: str = ""
    http_version: str = ""
    headers: dict[str, HeaderValue] = field(default_factory=dict)
    ip: str | None = None
    remote_address: str | None = None
    route_path: str | None = None
    user: str | None = None
    start_at: float | None = None
    received_bytes: int = 0
    fields: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.headers = _normalize_headers(self.headers)

    @classmethod
    def from_scope(cls, scope: Scope, start_at: float | None = None) -> RequestView:
        connection = HTTPConnection(scope)
        client = scope.get("client")
        peer = client[0] if client else None
        root_path = scope.get("root_path", "")
        url = root_path + scope.get("path", "")
        if query := scope.get("query_string", b""):
            url += "?" + query.decode("latin-1")

        headers = headers_from_raw(scope.get("headers"))
        return cls(
            method=scope.get("method", ""),
            url=url,
            http_version=scope.get("http_version", ""),
            headers=headers,
            ip=peer,
            remote_address=peer,
            route_path=route_path_of(scope),
            user=user_of(scope, headers),
            start_at=start_at,
            fields={
                "baseUrl": root_path,
                "path": scope.get("path", ""),
                "query": dict(connection.query_params),
                "params": scope.get("path_params", {}),
                "scheme": scope.get("scheme", ""),
                "scope": scope,
            },
        )


@dataclass
class ResponseView(_FieldAccess):
    status_code: int | None = None
    headers: dict[str, HeaderValue] = field(default_factory=dict)
    headers_sent: bool = False
    sent_bytes: int = 0
    # seconds from request arrival to the headers being sent
    start_at: float | None = None
    error: BaseException | None = None
    fields: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.headers = _normalize_headers(self.headers)


def content_length(view: RequestView | ResponseView) -> HeaderValue | int:
    """The ``content-length`` header if present, else the tallied byte count."""
    declared = view.get_header("content-length")
    if declared:
        return declared
    if isinstance(view, RequestView):
        return view.received_bytes
    return view.sent_bytes


def route_path_of(scope: Scope) -> str | None:
    route = scope.get("route")
    return getattr(route, "path", None) if route is not None else None


def user_of(scope: Scope, headers: Mapping[str, HeaderValue]) -> str | None:
    """Authenticated user name, falling back to the Basic auth user."""
    user = scope.get("user")
    if user is not None and getattr(user, "is_authenticated", False):
        return user.display_name

    authorization = headers.get("authorization")
    if not isinstance(authorization, str):
        return None
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() != "basic":
        return None
    try:
        decoded = base64.b64decode(credentials, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    name, sep, _ = decoded.partition(":")
    return name if sep else None


def attach_error(target: HTTPConnection | MutableMapping[str, Any], error: BaseException) -> None:
    """Make ``error`` visible to ``:error[...]`` and ``:msg`` for this request."""
    scope = target.scope if isinstance(target, HTTPConnection) else target
    scope[LOG_ERROR] = error
