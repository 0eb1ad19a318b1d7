"""Bounded-concurrency TCP connect scanner."""
from __future__ import annotations

import asyncio
import logging
import socket
import time
from typing import Iterable, List

from .addresses import validate_port_range
from .config import ScanSettings
from .errors import OperationCancelled
from .models import PortProbeResult, PortState
from .pool import AdmissionGate, BoundedPool, ProgressCallback

logger = logging.getLogger(__name__)

PROTOCOL = "tcp"


async def _resolve_host(host: str) -> tuple[str, int]:
    """Resolve ``host`` once, preferring IPv4.

    On failure the literal name is returned so every dial fails on its own
    and the port is reported closed.
    """

    loop = asyncio.get_running_loop()
    try:
        infos = await loop.getaddrinfo(host, None, type=socket.SOCK_STREAM)
    except (OSError, UnicodeError) as exc:
        logger.warning("Could not resolve %s: %s", host, exc)
        return host, socket.AF_UNSPEC
    ipv4 = next((i for i in infos if i[0] == socket.AF_INET), None)
    family, _, _, _, sockaddr = ipv4 or infos[0]
    return sockaddr[0], family


class PortScanEngine:
    """TCP connect scan of one host over a contiguous port range.

    Each port gets exactly one connection attempt. A completed handshake is
    ``Open``; refusal, timeout and unreachable all count as ``Closed``.
    """

    def __init__(self, settings: ScanSettings | None = None) -> None:
        self.settings = settings or ScanSettings()
        self.last_gate: AdmissionGate | None = None

    async def _dial(self, addr: str, port: int, family: int) -> None:
        conn = asyncio.open_connection(addr, port, family=family)
        _reader, writer = await asyncio.wait_for(conn, timeout=self.settings.dial_timeout)
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass

    async def probe(self, addr: str, port: int, family: int = socket.AF_UNSPEC) -> PortProbeResult:
        """Attempt one connection to ``addr:port`` and classify it."""

        start_ts = time.perf_counter()
        try:
            await self._dial(addr, port, family)
        except (OSError, asyncio.TimeoutError, UnicodeError) as exc:
            logger.debug("%s:%d closed (%s)", addr, port, exc.__class__.__name__)
            return PortProbeResult(port, PortState.CLOSED, PROTOCOL)
        logger.debug("%s:%d open in %.1fms", addr, port, (time.perf_counter() - start_ts) * 1000)
        return PortProbeResult(port, PortState.OPEN, PROTOCOL)

    async def scan(
        self,
        host: str,
        start_port: int,
        end_port: int,
        concurrency_cap: int | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
        progress: ProgressCallback | None = None,
    ) -> List[PortProbeResult]:
        """Probe every port in ``start_port..end_port`` on ``host``.

        Returns one result per port sorted by port number. At most
        ``concurrency_cap`` dials (default from settings) are outstanding
        at any moment. If ``cancel_event`` is set before the batch
        completes, :class:`OperationCancelled` is raised with the sorted
        partial results.
        """

        validate_port_range(start_port, end_port)
        cap = self.settings.concurrency_cap if concurrency_cap is None else concurrency_cap
        if cap < 1:
            raise ValueError(f"concurrency cap must be at least 1, got {cap}")

        addr, family = await _resolve_host(host)
        total = end_port - start_port + 1
        logger.info(
            "Scanning %s (%s) ports %d-%d, %d dials at a time",
            host, addr, start_port, end_port, min(cap, total),
        )

        async def worker(port: int) -> PortProbeResult:
            return await self.probe(addr, port, family)

        pool: BoundedPool[int, PortProbeResult] = BoundedPool(
            worker, cap, cancel_event=cancel_event, progress=progress
        )
        self.last_gate = pool.gate
        try:
            results = await pool.map(range(start_port, end_port + 1))
        except OperationCancelled as exc:
            raise OperationCancelled(sort_results(exc.partial)) from None

        ordered = sort_results(results)
        logger.info(
            "Scan of %s finished: %d open of %d", host, len(open_ports(ordered)), total
        )
        return ordered


def sort_results(results: Iterable[PortProbeResult]) -> List[PortProbeResult]:
    return sorted(results, key=lambda r: r.port)


def open_ports(results: Iterable[PortProbeResult]) -> List[PortProbeResult]:
    """Return only the ``Open`` entries of ``results``."""

    return [r for r in results if r.is_open]


def scan_ports(
    host: str,
    start_port: int,
    end_port: int,
    concurrency_cap: int | None = None,
    *,
    settings: ScanSettings | None = None,
    progress: ProgressCallback | None = None,
) -> List[PortProbeResult]:
    """Synchronous wrapper around :meth:`PortScanEngine.scan`."""

    engine = PortScanEngine(settings)
    return asyncio.run(
        engine.scan(host, start_port, end_port, concurrency_cap, progress=progress)
    )


__all__ = ["PROTOCOL", "PortScanEngine", "open_ports", "scan_ports", "sort_results"]
