"""IPv4 address helpers for object ids and discovery ranges."""

from __future__ import annotations

import ipaddress
import re

_U32 = 0xFFFFFFFF
_INTEGER = re.compile(r"[+-]?[0-9]+")


def _octet(text: str) -> int:
    if not _INTEGER.fullmatch(text):
        return 0
    number = int(text)
    if not -(1 << 63) <= number < 1 << 63:
        return 0
    return number & _U32


def ip_to_numeric(ip: str) -> int:
    """Pack a dotted IPv4 address into a 32-bit integer.

    Octets that are not integers count as 0.
    """
    parts = ip.split(".")
    if len(parts) > 4:
        raise ValueError(f"too many octets in {ip!r}")
    value = 0
    for position, part in enumerate(parts):
        value |= (_octet(part) << ((3 - position) * 8)) & _U32
    return value


def numeric_to_ip(value: int) -> str:
    """Return the dotted form of a 32-bit address."""
    if not 0 <= value <= _U32:
        raise ValueError(f"address out of range: {value}")
    return ".".join(str((value >> shift) & 0xFF) for shift in (24, 16, 8, 0))


def cidr_hosts(cidr: str) -> list[str]:
    """Return the host addresses of an IPv4 network, without network and broadcast."""
    address, separator, prefix = cidr.partition("/")
    if not separator:
        raise ValueError(f"missing prefix length in {cidr!r}")
    if not _INTEGER.fullmatch(prefix) or not 0 <= int(prefix) <= 32:
        raise ValueError(f"invalid prefix length in {cidr!r}")
    bits = int(prefix)
    mask = (_U32 << (32 - bits)) & _U32
    network = ip_to_numeric(address) & mask
    return [numeric_to_ip(network + offset) for offset in range(1, (1 << (32 - bits)) - 1)]


def _parse_address(text: str) -> ipaddress.IPv4Address | ipaddress.IPv6Address | None:
    if "%" in text:
        return None
    try:
        return ipaddress.ip_address(text)
    except ValueError:
        return None


def is_valid_cidr(cidr: str) -> bool:
    """Tell whether text is an address with a numeric prefix length."""
    address, separator, prefix = cidr.partition("/")
    if not separator or not (prefix.isascii() and prefix.isdigit()):
        return False
    parsed = _parse_address(address)
    if parsed is None:
        return False
    return int(prefix) <= parsed.max_prefixlen


def is_valid_ip(address: str) -> bool:
    """Tell whether text is an IPv4 or IPv6 address."""
    return _parse_address(address) is not None