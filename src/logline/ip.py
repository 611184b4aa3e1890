"""
Private and reserved address classification.

The resolver only needs one question answered quickly: is this address a
routable public client, or an internal hop? The IPv4 answer is hardcoded as a
cascade of shift-and-compare tests over the blocks below, which is equivalent
to a CIDR membership loop but avoids building network objects per request.

IPv4 blocks treated as private/reserved:

    0.0.0.0/8          "this" network
    10.0.0.0/8         private network (RFC 1918)
    100.64.0.0/10      carrier-grade NAT (RFC 6598)
    127.0.0.0/8        loopback
    169.254.0.0/16     link-local (RFC 3927)
    172.16.0.0/12      private network (RFC 1918)
    192.0.0.0/24       IANA special purpose registry (RFC 5736)
    192.0.2.0/24       TEST-NET-1 (RFC 5737)
    192.168.0.0/16     private network (RFC 1918)
    198.18.0.0/15      benchmarking (RFC 2544)
    198.51.100.0/24    TEST-NET-2 (RFC 5737)
    203.0.113.0/24     TEST-NET-3 (RFC 5737)
    224.0.0.0/4        multicast (RFC 1112)
    240.0.0.0/4        reserved for future use (RFC 6890)
    255.255.255.255/32 limited broadcast

IPv6 uses a generic prefix match against the reserved, 6to4 and Teredo tables.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from typing import NamedTuple

IPV4_PRIVATE_BLOCKS: tuple[str, ...] = (
    "0.0.0.0/8",
    "10.0.0.0/8",
    "100.64.0.0/10",
    "127.0.0.0/8",
    "169.254.0.0/16",
    "172.16.0.0/12",
    "192.0.0.0/24",
    "192.0.2.0/24",
    "192.168.0.0/16",
    "198.18.0.0/15",
    "198.51.100.0/24",
    "203.0.113.0/24",
    "224.0.0.0/4",
    "240.0.0.0/4",
    "255.255.255.255/32",
)

IPV6_RESERVED_BLOCKS: tuple[str, ...] = (
    "::/128",
    "::1/128",
    "::ffff:0:0/96",
    "::/96",
    "100::/64",
    "2001:10::/28",
    "2001:db8::/32",
    "fc00::/7",
    "fe80::/10",
    "fec0::/10",
    "ff00::/8",
)

# 6to4 embeddings of the private IPv4 blocks
IPV6_6TO4_BLOCKS: tuple[str, ...] = (
    "2002::/24",
    "2002:a00::/24",
    "2002:7f00::/24",
    "2002:a9fe::/32",
    "2002:ac10::/28",
    "2002:c000::/40",
    "2002:c000:200::/40",
    "2002:c0a8::/32",
    "2002:c612::/31",
    "2002:c633:6400::/40",
    "2002:cb00:7100::/40",
    "2002:e000::/20",
    "2002:f000::/20",
    "2002:ffff:ffff::/48",
)

# Teredo embeddings of the private IPv4 blocks
IPV6_TEREDO_BLOCKS: tuple[str, ...] = (
    "2001::/40",
    "2001:0:a00::/40",
    "2001:0:7f00::/40",
    "2001:0:a9fe::/48",
    "2001:0:ac10::/44",
    "2001:0:c000::/56",
    "2001:0:c000:200::/56",
    "2001:0:c0a8::/48",
    "2001:0:c612::/47",
    "2001:0:c633:6400::/56",
    "2001:0:cb00:7100::/56",
    "2001:0:e000::/36",
    "2001:0:f000::/36",
    "2001:0:ffff:ffff::/64",
)

# Global-scope multicast is routable even though ff00::/8 is listed above
IPV6_PUBLIC_EXCEPTION = "ff0e::/16"

IPV4_MAPPED_PREFIX = "::ffff:"

_DOTTED_QUAD = re.compile(r"(\d{1,3})\.(\d{1,3})\.(\d{1,3})\.(\d{1,3})", re.ASCII)
_HEXTET = re.compile(r"[0-9a-f]{1,4}", re.ASCII | re.IGNORECASE)

_BITS_TO_PREFIX = {255: 8, 254: 7, 252: 6, 248: 5, 240: 4, 224: 3, 192: 2, 128: 1, 0: 0}


class IPv4Block(NamedTuple):
    """A parsed IPv4 address with an optional prefix length."""

    address: str
    number: int
    octets: tuple[int, int, int, int]
    subnet_mask: int
    net_masked: int
    normalized: int
    subnet_size: int
    prefix: int
    host_bits: int


def ip4_number(address: str) -> int:
    """Pack a dotted quad into an unsigned 32-bit integer, big-endian."""
    match = _DOTTED_QUAD.fullmatch(address)
    if match is None:
        raise ValueError(f"Bad IPv4 format: {address!r}")

    number = 0
    for octet in match.groups():
        value = int(octet)
        if value > 255:
            raise ValueError(f"Bad IPv4 format: {address!r}")
        number = (number << 8) | value
    return number


def parse_ipv4(address: str) -> IPv4Block:
    """
    Strictly parse ``a.b.c.d`` or ``a.b.c.d/prefix``.

    Raises:
        ValueError: if the input is not a string, is too short to be a
            dotted quad, or has an out of range octet or prefix.
    """
    if not isinstance(address, str) or len(address) < 7:
        raise ValueError("Bad IPv4 format")

    prefix = 32
    if "/" in address:
        address, _, bits = address.partition("/")
        if not bits.isdigit() or int(bits) > 32:
            raise ValueError(f"Bad IPv4 prefix: {bits!r}")
        prefix = int(bits)

    number = ip4_number(address)
    host_bits = 32 - prefix
    mask = (0xFFFFFFFF << host_bits) & 0xFFFFFFFF

    return IPv4Block(
        address=address,
        number=number,
        octets=(number >> 24, (number >> 16) & 0xFF, (number >> 8) & 0xFF, number & 0xFF),
        subnet_mask=mask,
        net_masked=number & mask,
        normalized=number >> host_bits,
        subnet_size=1 << host_bits,
        prefix=prefix,
        host_bits=host_bits,
    )


def prefix_from_subnet_mask(mask: str | Sequence[int]) -> int:
    """Convert a dotted netmask such as ``255.255.240.0`` to its prefix length."""
    octets = mask.split(".") if isinstance(mask, str) else list(mask)
    if len(octets) != 4:
        raise ValueError(f"Bad subnet mask: {mask!r}")

    prefix = 0
    partial = False
    for octet in octets:
        try:
            bits = _BITS_TO_PREFIX[int(octet)]
        except (KeyError, ValueError):
            raise ValueError(f"Bad subnet mask: {mask!r}") from None
        if partial and bits:
            raise ValueError(f"Non-contiguous subnet mask: {mask!r}")
        partial = partial or bits < 8
        prefix += bits
    return prefix


def is_private(address: object) -> bool:
    """
    Return True when ``address`` is an IPv4 address in a private/reserved block.

    This is a predicate, not a validator: anything that is not a well formed
    dotted quad (optionally ``::ffff:`` mapped) is reported as not private.
    """
    if not isinstance(address, str) or len(address) < 7:
        return False

    if address.startswith(IPV4_MAPPED_PREFIX):
        address = address[len(IPV4_MAPPED_PREFIX):]

    try:
        ip = ip4_number(address)
    except ValueError:
        return False

    # 255.255.255.255/32
    if ip == 0xFFFFFFFF:
        return True

    # 224.0.0.0/4, 240.0.0.0/4
    if ip & 0xF0000000 >= 0xE0000000:
        return True

    s = ip >> 8

    # 203.0.113.0/24, 198.51.100.0/24, 192.0.2.0/24, 192.0.0.0/24
    if s in (0xCB0071, 0xC63364, 0xC00002, 0xC00000):
        return True

    s >>= 8

    # 192.168.0.0/16, 169.254.0.0/16
    if s in (0xC0A8, 0xA9FE):
        return True

    s >>= 1

    # 198.18.0.0/15
    if s == 0x6309:
        return True

    s >>= 3

    # 172.16.0.0/12
    if s == 0xAC1:
        return True

    s >>= 2

    # 100.64.0.0/10
    if s == 0x191:
        return True

    s >>= 2

    # 127.0.0.0/8, 10.0.0.0/8, 0.0.0.0/8
    return s in (127, 10, 0)


def _hextets(part: str, allow_ipv4: bool) -> list[int]:
    if not part:
        return []

    pieces = part.split(":")
    groups: list[int] = []
    for index, piece in enumerate(pieces):
        if allow_ipv4 and index == len(pieces) - 1 and "." in piece:
            number = ip4_number(piece)
            groups.extend((number >> 16, number & 0xFFFF))
        elif _HEXTET.fullmatch(piece):
            groups.append(int(piece, 16))
        else:
            raise ValueError(f"Bad IPv6 format: {part!r}")
    return groups


def parse_ipv6(address: str) -> tuple[int, ...]:
    """
    Parse colon-hex notation into its eight 16-bit groups.

    Supports ``::`` compression and a trailing embedded IPv4 address.
    """
    if not isinstance(address, str) or len(address) < 2 or address.count("::") > 1:
        raise ValueError("Bad IPv6 format")

    head, compressed, tail = address.partition("::")
    left = _hextets(head, allow_ipv4=not compressed)
    right = _hextets(tail, allow_ipv4=True)

    if compressed:
        missing = 8 - len(left) - len(right)
        if missing < 1:
            raise ValueError(f"Bad IPv6 format: {address!r}")
        groups = left + [0] * missing + right
    else:
        groups = left

    if len(groups) != 8:
        raise ValueError(f"Bad IPv6 format: {address!r}")
    return tuple(groups)


def ipv6_number(address: str) -> int:
    number = 0
    for group in parse_ipv6(address):
        number = (number << 16) | group
    return number


def _ipv6_block(cidr: str) -> tuple[int, int]:
    base, _, bits = cidr.partition("/")
    prefix = int(bits)
    return ipv6_number(base) >> (128 - prefix), prefix


_IPV6_BLOCKS = tuple(
    _ipv6_block(cidr) for cidr in (*IPV6_RESERVED_BLOCKS, *IPV6_6TO4_BLOCKS, *IPV6_TEREDO_BLOCKS)
)
_IPV6_EXCEPTION = _ipv6_block(IPV6_PUBLIC_EXCEPTION)


def is_reserved_ipv6(address: object) -> bool:
    """Return True when ``address`` is an IPv6 address in a reserved block."""
    if not isinstance(address, str):
        return False

    try:
        number = ipv6_number(address)
    except ValueError:
        return False

    network, prefix = _IPV6_EXCEPTION
    if number >> (128 - prefix) == network:
        return False

    return any(number >> (128 - prefix) == network for network, prefix in _IPV6_BLOCKS)
