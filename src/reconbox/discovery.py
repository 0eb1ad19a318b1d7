"""LAN host discovery: ICMP echo sweep plus reverse DNS enrichment.

Only hosts that answer show up in the result. A host that stays silent for
the whole sweep is indistinguishable from one that was never probed;
absence from the output is the only "down" signal.
"""
from __future__ import annotations

import asyncio
import logging
import socket
from enum import Enum, auto
from ipaddress import IPv4Address
from typing import Any, Callable, List

from .addresses import expand_cidr
from .config import ScanSettings
from .icmp import EchoSender, EchoTransport, IcmpSocket
from .models import UNKNOWN_HOSTNAME, EchoReply, HostRecord, LifecycleSignal
from .progress import ProgressReporter

logger = logging.getLogger(__name__)

Resolver = Callable[[str], Any]
RecordCallback = Callable[[HostRecord], None]


class SweepState(Enum):
    SENDING = auto()
    EMITTING = auto()
    IDLE = auto()


async def reverse_lookup(
    address: IPv4Address | str,
    *,
    resolver: Resolver = socket.gethostbyaddr,
    timeout: float = 2.0,
) -> tuple[str, ...]:
    """Return the names of ``address`` or ``("unknown",)`` when none resolve.

    ``resolver`` follows the :func:`socket.gethostbyaddr` contract and runs
    in the default executor.
    """

    loop = asyncio.get_running_loop()
    try:
        name, aliases, _addrs = await asyncio.wait_for(
            loop.run_in_executor(None, resolver, str(address)), timeout
        )
    except (OSError, asyncio.TimeoutError, UnicodeError) as exc:
        logger.debug("Reverse lookup for %s failed: %s", address, exc)
        return (UNKNOWN_HOSTNAME,)
    names = tuple(dict.fromkeys(n for n in (name, *aliases) if n))
    return names or (UNKNOWN_HOSTNAME,)


class HostDiscoveryEngine:
    """Sweep a CIDR range with echo requests and collect the hosts that answer.

    ``transport_factory`` opens the ICMP transport (an :class:`IcmpSocket`
    by default) and ``resolver`` performs reverse lookups; both exist so
    the engine can run against simulated networks.
    """

    def __init__(
        self,
        settings: ScanSettings | None = None,
        *,
        transport_factory: Callable[[], EchoTransport] | None = None,
        resolver: Resolver = socket.gethostbyaddr,
    ) -> None:
        self.settings = settings or ScanSettings()
        self.transport_factory = transport_factory or IcmpSocket.open
        self.resolver = resolver
        self.state: SweepState | None = None
        self.last_sender: EchoSender | None = None

    async def _emit(
        self,
        reply: EchoReply,
        records: List[HostRecord],
        on_record: RecordCallback | None,
    ) -> None:
        hostnames = await reverse_lookup(
            reply.address, resolver=self.resolver, timeout=self.settings.dns_timeout
        )
        record = HostRecord(reply.address, hostnames, reply.rtt)
        records.append(record)
        if on_record is not None:
            try:
                on_record(record)
            except Exception:
                logger.exception("Record callback failed for %s", reply.address)

    @staticmethod
    async def _forward_cancel(cancel_event: asyncio.Event, signals: asyncio.Queue) -> None:
        await cancel_event.wait()
        await signals.put(LifecycleSignal.TERMINATE)

    async def discover(
        self,
        cidr: str,
        sweep_duration: float | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
        reporter: ProgressReporter | None = None,
        on_record: RecordCallback | None = None,
    ) -> List[HostRecord]:
        """Return a record for every host in ``cidr`` that answered.

        The call ends when the sender raises its idle signal, roughly
        ``sweep_duration`` seconds (default from settings) after the sweep
        starts. Records come back in arrival order and are also handed to
        ``on_record`` as soon as their reverse lookup completes.

        Setting ``cancel_event`` stops the sweep early and returns the
        records completed so far. :class:`InvalidRangeSpec` and
        :class:`TransportUnavailable` are raised before anything is sent.
        """

        duration = self.settings.sweep_duration if sweep_duration is None else sweep_duration
        addresses = expand_cidr(cidr)
        transport = self.transport_factory()

        signals: asyncio.Queue = asyncio.Queue()
        sender = EchoSender(
            addresses,
            signals,
            transport=transport,
            sweep_duration=duration,
            settings=self.settings,
        )
        self.last_sender = sender
        self.state = SweepState.SENDING
        logger.info("Sweeping %s (%d addresses) for %ss", cidr, len(addresses), duration)

        records: List[HostRecord] = []
        lookups: set[asyncio.Task[None]] = set()

        def sender_done(task: asyncio.Task[None]) -> None:
            if not task.cancelled() and task.exception() is not None:
                signals.put_nowait(LifecycleSignal.TERMINATE)

        sender_task = asyncio.create_task(sender.run())
        sender_task.add_done_callback(sender_done)
        background: list[asyncio.Task[Any]] = [sender_task]
        if reporter is not None:
            background.append(asyncio.create_task(reporter.run()))
        if cancel_event is not None:
            background.append(asyncio.create_task(self._forward_cancel(cancel_event, signals)))

        try:
            while True:
                item = await signals.get()
                if isinstance(item, EchoReply):
                    self.state = SweepState.EMITTING
                    task = asyncio.create_task(self._emit(item, records, on_record))
                    lookups.add(task)
                    task.add_done_callback(lookups.discard)
                elif item is LifecycleSignal.IDLE:
                    self.state = SweepState.IDLE
                    if lookups:
                        await asyncio.gather(*lookups)
                    break
                elif item is LifecycleSignal.TERMINATE:
                    if sender_task.done() and not sender_task.cancelled():
                        exc = sender_task.exception()
                        if exc is not None:
                            raise exc
                    logger.info("Sweep of %s cancelled", cidr)
                    break
        finally:
            pending = [t for t in (*background, *lookups) if not t.done()]
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            sender.close()

        logger.info("Sweep of %s finished: %d hosts up", cidr, len(records))
        return records


def discover_hosts(
    cidr: str,
    sweep_duration: float | None = None,
    *,
    settings: ScanSettings | None = None,
    reporter: ProgressReporter | None = None,
) -> List[HostRecord]:
    """Synchronous wrapper around :meth:`HostDiscoveryEngine.discover`."""

    engine = HostDiscoveryEngine(settings)
    return asyncio.run(engine.discover(cidr, sweep_duration, reporter=reporter))


__all__ = [
    "HostDiscoveryEngine",
    "SweepState",
    "discover_hosts",
    "reverse_lookup",
]
