"""Pick the real client address out of proxy headers and peer addresses."""

from __future__ import annotations

import re
from typing import Final

from logline.exchange import RequestView
from logline.ip import is_private, is_reserved_ipv6

# Scan order is trust priority among the common proxy conventions.
FORWARDING_HEADERS: Final = (
    "x-forwarded-for",
    "forwarded-for",
    "forwarded",
    "x-client-ip",
    "x-real-ip",
    "client-ip",
    "real-ip",
    "x-forwarded",
    "cluster-client-ip",
    "remote-addr",
)

_TRAILING_QUAD = re.compile(r".*?(\d+\.\d+\.\d+\.\d+)", re.ASCII)


def is_internal(address: str) -> bool:
    """Classify an IPv4 or IPv6 address; unparseable input counts as public."""
    if "." in address:
        return is_private(address)
    return is_reserved_ipv6(address)


def header_candidate(value: object) -> str | None:
    """The dotted quad ending the first entry of a forwarding header, if any."""
    if isinstance(value, list):
        value = value[0] if value else None
    if not isinstance(value, str):
        return None
    match = _TRAILING_QUAD.fullmatch(value.split(",")[0].strip())
    return match.group(1) if match else None


def resolve_client_address(request: RequestView) -> str | None:
    """
    Return the first public address found, else the first private one seen.

    Candidates are the forwarding headers in ``FORWARDING_HEADERS`` order, then
    the framework peer address, then the transport peer address.
    """
    fallback: str | None = None

    candidates = [header_candidate(request.get_header(name)) for name in FORWARDING_HEADERS]
    candidates.extend((request.ip, request.remote_address))

    for address in candidates:
        if not address:
            continue
        if not is_internal(address):
            return address
        if fallback is None:
            fallback = address

    return fallback
