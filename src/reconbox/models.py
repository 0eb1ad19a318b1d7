"""Result and signal types produced by the scanning engines."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from ipaddress import IPv4Address
from typing import Any, Dict

UNKNOWN_HOSTNAME = "unknown"


class PortState(str, Enum):
    """Outcome of a single TCP connect attempt.

    Refused, timed out and unreachable all collapse into ``CLOSED``.
    """

    OPEN = "Open"
    CLOSED = "Closed"


class HostState(str, Enum):
    """State of a discovered host.

    There is deliberately no ``DOWN`` member: a host that never answers is
    simply absent from the discovery result.
    """

    UP = "Up"


class LifecycleSignal(Enum):
    """Control messages passed over the discovery queue."""

    IDLE = auto()
    TERMINATE = auto()


@dataclass(frozen=True)
class PortProbeResult:
    """Result for one port of a connect scan."""

    port: int
    state: PortState
    protocol: str = "tcp"

    @property
    def is_open(self) -> bool:
        return self.state is PortState.OPEN


@dataclass(frozen=True)
class EchoReply:
    """An echo reply observed by the sender, ``rtt`` in seconds."""

    address: IPv4Address
    rtt: float


@dataclass(frozen=True)
class HostRecord:
    """A host that answered an echo request during a sweep.

    ``hostnames`` holds every name from the reverse lookup, or the single
    sentinel ``"unknown"`` when the lookup failed.
    """

    address: IPv4Address
    hostnames: tuple[str, ...] = (UNKNOWN_HOSTNAME,)
    response_time: float = 0.0
    state: HostState = HostState.UP

    @property
    def hostname_known(self) -> bool:
        return self.hostnames != (UNKNOWN_HOSTNAME,)


def port_result_to_dict(result: PortProbeResult) -> Dict[str, Any]:
    """Return a JSON-serialisable mapping for ``result``."""

    return {
        "port": result.port,
        "state": result.state.value,
        "protocol": result.protocol,
    }


def host_record_to_dict(record: HostRecord) -> Dict[str, Any]:
    """Return a JSON-serialisable mapping for ``record``.

    ``response_time`` is reported in milliseconds.
    """

    return {
        "address": str(record.address),
        "state": record.state.value,
        "hostnames": list(record.hostnames),
        "response_time": round(record.response_time * 1000, 3),
    }


__all__ = [
    "UNKNOWN_HOSTNAME",
    "EchoReply",
    "HostRecord",
    "HostState",
    "LifecycleSignal",
    "PortProbeResult",
    "PortState",
    "host_record_to_dict",
    "port_result_to_dict",
]
