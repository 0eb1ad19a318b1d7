"""Exception hierarchy shared by the scanning engines."""
from __future__ import annotations

from typing import Any, Sequence


class ReconError(Exception):
    """Base class for every error raised by reconbox."""


class InvalidRangeSpec(ReconError, ValueError):
    """Raised when a CIDR string cannot be parsed as an IPv4 network."""

    def __init__(self, spec: str, reason: str | None = None) -> None:
        self.spec = spec
        self.reason = reason
        message = f"invalid CIDR range {spec!r}"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class InvalidPortRange(ReconError, ValueError):
    """Raised for port bounds outside ``0..65535`` or reversed ranges."""


class TransportUnavailable(ReconError, OSError):
    """Raised when the ICMP socket cannot be opened.

    This is almost always a privilege problem: raw sockets need root (or
    ``CAP_NET_RAW``) and unprivileged ping sockets must be enabled through
    ``net.ipv4.ping_group_range``.
    """


class OperationCancelled(ReconError):
    """Raised when a caller's cancel event stops a scan early.

    ``partial`` holds whatever results had completed before cancellation.
    """

    def __init__(self, partial: Sequence[Any] = ()) -> None:
        self.partial = list(partial)
        super().__init__(f"operation cancelled after {len(self.partial)} results")


__all__ = [
    "InvalidPortRange",
    "InvalidRangeSpec",
    "OperationCancelled",
    "ReconError",
    "TransportUnavailable",
]
