"""ICMP echo transport and the sweep-wide echo sender."""
from __future__ import annotations

import asyncio
import itertools
import logging
import random
import socket
import struct
import time
from dataclasses import dataclass
from ipaddress import IPv4Address
from typing import Iterable, Protocol

from .config import ScanSettings
from .errors import TransportUnavailable
from .models import EchoReply, LifecycleSignal
from .pool import AdmissionGate, BoundedPool

logger = logging.getLogger(__name__)

ICMP_ECHO_REPLY = 0
ICMP_ECHO_REQUEST = 8
_HEADER = struct.Struct("!BBHHH")


@dataclass
class ICMPPacket:
    type: int
    code: int
    checksum: int
    identifier: int
    sequence: int
    payload: bytes = b""

    def pack(self) -> bytes:
        header = _HEADER.pack(self.type, self.code, 0, self.identifier, self.sequence)
        checksum = self._calculate_checksum(header + self.payload)
        header = _HEADER.pack(self.type, self.code, checksum, self.identifier, self.sequence)
        return header + self.payload

    @classmethod
    def unpack(cls, data: bytes) -> "ICMPPacket":
        if len(data) < _HEADER.size:
            raise ValueError(f"ICMP message too short: {len(data)} bytes")
        type_, code, checksum, identifier, sequence = _HEADER.unpack_from(data)
        return cls(type_, code, checksum, identifier, sequence, bytes(data[_HEADER.size:]))

    @staticmethod
    def _calculate_checksum(data: bytes) -> int:
        if len(data) % 2:
            data += b"\x00"
        res = sum(struct.unpack("!%dH" % (len(data) // 2), data))
        res = (res >> 16) + (res & 0xFFFF)
        res += res >> 16
        return ~res & 0xFFFF


class EchoTransport(Protocol):
    """What :class:`EchoSender` needs from the network."""

    async def send_echo(self, address: str, identifier: int, sequence: int) -> None: ...

    async def recv_reply(self, identifier: int) -> tuple[str, int]: ...

    def close(self) -> None: ...


class IcmpSocket:
    """Asyncio wrapper around a single ICMP socket.

    A raw socket is preferred. Without the privilege for one, the Linux
    unprivileged ping socket (``SOCK_DGRAM``) is used instead; the kernel
    rewrites the identifier on those, so replies are not filtered by it.
    """

    def __init__(self, sock: socket.socket, *, raw: bool) -> None:
        self.sock = sock
        self.raw = raw
        sock.setblocking(False)

    @classmethod
    def open(cls) -> "IcmpSocket":
        """Open an ICMP socket or raise :class:`TransportUnavailable`."""

        try:
            return cls(socket.socket(socket.AF_INET, socket.SOCK_RAW, socket.IPPROTO_ICMP), raw=True)
        except OSError as raw_exc:
            logger.debug("Raw ICMP socket unavailable (%s), trying ping socket", raw_exc)
        try:
            return cls(socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_ICMP), raw=False)
        except OSError as exc:
            raise TransportUnavailable(
                exc.errno,
                "cannot open an ICMP socket; run as root or enable "
                "net.ipv4.ping_group_range",
            ) from exc

    async def send_echo(self, address: str, identifier: int, sequence: int) -> None:
        packet = ICMPPacket(
            type=ICMP_ECHO_REQUEST,
            code=0,
            checksum=0,
            identifier=identifier,
            sequence=sequence,
            payload=struct.pack("!d", time.time()),
        )
        loop = asyncio.get_running_loop()
        await loop.sock_sendto(self.sock, packet.pack(), (address, 0))

    async def recv_reply(self, identifier: int) -> tuple[str, int]:
        """Return ``(address, sequence)`` of the next echo reply for us."""

        loop = asyncio.get_running_loop()
        while True:
            data, (address, _port) = await loop.sock_recvfrom(self.sock, 1024)
            if self.raw:
                data = data[(data[0] & 0x0F) * 4:]
            try:
                packet = ICMPPacket.unpack(data)
            except ValueError:
                continue
            if packet.type != ICMP_ECHO_REPLY:
                continue
            if self.raw and packet.identifier != identifier:
                continue
            return address, packet.sequence

    def close(self) -> None:
        self.sock.close()


class EchoSender:
    """Sends one echo request per address and reports replies on ``signals``.

    Replies are put on the queue as :class:`EchoReply` the moment they
    arrive. Sends are admitted through a gate of ``echo_concurrency``
    slots; a slot is freed as soon as its request has left the socket.
    Once ``sweep_duration`` seconds have elapsed since :meth:`run` started
    (and every request has been sent), :attr:`LifecycleSignal.IDLE` is put
    on the queue, exactly once. Replies are accepted until then.
    """

    def __init__(
        self,
        addresses: Iterable[IPv4Address],
        signals: asyncio.Queue,
        *,
        transport: EchoTransport,
        sweep_duration: float,
        settings: ScanSettings | None = None,
    ) -> None:
        self.addresses = list(addresses)
        self.signals = signals
        self.transport = transport
        self.sweep_duration = sweep_duration
        self.settings = settings or ScanSettings()
        self.identifier = random.randint(0, 0xFFFF)
        self.gate: AdmissionGate | None = None
        self._sequence = itertools.count(random.randint(0, 0xFFFF))
        self._sent_at: dict[IPv4Address, float] = {}
        self._answered: set[IPv4Address] = set()
        self._idle_sent = False

    @property
    def idle_sent(self) -> bool:
        return self._idle_sent

    async def run(self) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.sweep_duration
        receiver = asyncio.create_task(self._receive())
        sweep = asyncio.create_task(self._sweep(deadline))
        try:
            done, _ = await asyncio.wait({receiver, sweep}, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                task.result()
        finally:
            for task in (receiver, sweep):
                task.cancel()
            await asyncio.gather(receiver, sweep, return_exceptions=True)

    async def _sweep(self, deadline: float) -> None:
        pool: BoundedPool[IPv4Address, bool] = BoundedPool(
            self._send, self.settings.echo_concurrency
        )
        self.gate = pool.gate
        sent = await pool.map(self.addresses)
        logger.debug("Sent %d of %d echo requests", sum(sent), len(sent))
        remaining = deadline - asyncio.get_running_loop().time()
        if remaining > 0:
            await asyncio.sleep(remaining)
        self._signal_idle()

    async def _send(self, address: IPv4Address) -> bool:
        self._sent_at[address] = asyncio.get_running_loop().time()
        try:
            await self.transport.send_echo(
                str(address), self.identifier, next(self._sequence) & 0xFFFF
            )
        except OSError as exc:
            logger.debug("Echo request to %s failed: %s", address, exc)
            self._sent_at.pop(address, None)
            return False
        return True

    async def _receive(self) -> None:
        loop = asyncio.get_running_loop()
        while True:
            source, _sequence = await self.transport.recv_reply(self.identifier)
            try:
                address = IPv4Address(source)
            except ValueError:
                continue
            sent_at = self._sent_at.get(address)
            if sent_at is None or address in self._answered:
                continue
            self._answered.add(address)
            rtt = loop.time() - sent_at
            logger.debug("Echo reply from %s in %.1fms", address, rtt * 1000)
            await self.signals.put(EchoReply(address, rtt))

    def _signal_idle(self) -> None:
        if self._idle_sent:
            return
        self._idle_sent = True
        self.signals.put_nowait(LifecycleSignal.IDLE)

    def close(self) -> None:
        self.transport.close()


__all__ = [
    "ICMP_ECHO_REPLY",
    "ICMP_ECHO_REQUEST",
    "EchoSender",
    "EchoTransport",
    "ICMPPacket",
    "IcmpSocket",
]
