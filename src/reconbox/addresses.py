"""CIDR expansion and port range parsing."""
from __future__ import annotations

import ipaddress
import socket
from typing import Iterator

from .errors import InvalidPortRange, InvalidRangeSpec

_ALL_ONES = 0xFFFFFFFF
MAX_PORT = 65535


def parse_cidr(spec: str) -> ipaddress.IPv4Network:
    """Return the IPv4 network described by ``spec``.

    Host bits are masked off, so ``"10.0.0.7/30"`` yields ``10.0.0.4/30``.
    A prefix length is mandatory; bare addresses, IPv6 and anything else
    malformed raise :class:`InvalidRangeSpec`.
    """

    text = spec.strip() if isinstance(spec, str) else ""
    if "/" not in text:
        raise InvalidRangeSpec(str(spec), "missing prefix length")
    try:
        network = ipaddress.ip_network(text, strict=False)
    except ValueError as exc:
        raise InvalidRangeSpec(spec, str(exc)) from exc
    if not isinstance(network, ipaddress.IPv4Network):
        raise InvalidRangeSpec(spec, "only IPv4 ranges are supported")
    return network


def _bounds(network: ipaddress.IPv4Network) -> tuple[int, int]:
    mask = int(network.netmask)
    start = int(network.network_address) & mask
    finish = start | (mask ^ _ALL_ONES)
    return start, finish


def address_count(spec: str) -> int:
    """Return how many addresses ``spec`` covers, ``2 ** (32 - prefix)``."""

    start, finish = _bounds(parse_cidr(spec))
    return finish - start + 1


def iter_addresses(spec: str) -> Iterator[ipaddress.IPv4Address]:
    """Yield every address of ``spec`` in ascending order.

    The network and broadcast addresses are included.
    """

    start, finish = _bounds(parse_cidr(spec))
    for value in range(start, finish + 1):
        yield ipaddress.IPv4Address(value)


def expand_cidr(spec: str) -> list[ipaddress.IPv4Address]:
    """Return the addresses of ``spec`` as a list."""

    return list(iter_addresses(spec))


def validate_port_range(start: int, end: int) -> None:
    """Raise :class:`InvalidPortRange` unless ``0 <= start <= end <= 65535``."""

    if not (0 <= start <= MAX_PORT and 0 <= end <= MAX_PORT):
        raise InvalidPortRange(f"ports must be within 0-{MAX_PORT}: {start}-{end}")
    if start > end:
        raise InvalidPortRange(f"start port {start} is greater than end port {end}")


def _get_port_number(value: str) -> int:
    value = value.strip()
    if value.isdigit():
        return int(value)
    try:
        return socket.getservbyname(value, "tcp")
    except OSError as exc:
        raise InvalidPortRange(f"unknown port or service: {value!r}") from exc


def parse_port_range(port_str: str) -> tuple[int, int]:
    """Parse ``"20-25"``, ``"80"`` or a service name into ``(start, end)``."""

    if "-" in port_str:
        start_s, end_s = port_str.split("-", 1)
        start, end = _get_port_number(start_s), _get_port_number(end_s)
    else:
        start = end = _get_port_number(port_str)
    validate_port_range(start, end)
    return start, end


__all__ = [
    "MAX_PORT",
    "address_count",
    "expand_cidr",
    "iter_addresses",
    "parse_cidr",
    "parse_port_range",
    "validate_port_range",
]
