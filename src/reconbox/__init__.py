"""Public package interface for reconbox."""

from __future__ import annotations

__version__ = "0.3.0"

from .addresses import address_count, expand_cidr, iter_addresses, parse_cidr
from .config import ScanSettings, load_settings
from .discovery import HostDiscoveryEngine, discover_hosts
from .errors import (
    InvalidPortRange,
    InvalidRangeSpec,
    OperationCancelled,
    ReconError,
    TransportUnavailable,
)
from .models import (
    HostRecord,
    HostState,
    LifecycleSignal,
    PortProbeResult,
    PortState,
)
from .portscan import PortScanEngine, scan_ports

__all__ = [
    "HostDiscoveryEngine",
    "HostRecord",
    "HostState",
    "InvalidPortRange",
    "InvalidRangeSpec",
    "LifecycleSignal",
    "OperationCancelled",
    "PortProbeResult",
    "PortScanEngine",
    "PortState",
    "ReconError",
    "ScanSettings",
    "TransportUnavailable",
    "address_count",
    "discover_hosts",
    "expand_cidr",
    "iter_addresses",
    "load_settings",
    "parse_cidr",
    "scan_ports",
]
