import asyncio

import pytest

import reconbox.portscan as portscan
from reconbox.config import ScanSettings
from reconbox.errors import InvalidPortRange, OperationCancelled
from reconbox.models import PortProbeResult, PortState
from reconbox.portscan import PortScanEngine, open_ports, scan_ports


class ScriptedEngine(PortScanEngine):
    """Engine whose dials succeed only for ``open_set``."""

    def __init__(self, open_set=(), delay=0.0, settings=None):
        super().__init__(settings)
        self.open_set = set(open_set)
        self.delay = delay
        self.active = 0
        self.highest = 0
        self.dialled: list[int] = []

    async def _dial(self, addr, port, family):
        self.active += 1
        self.highest = max(self.highest, self.active)
        self.dialled.append(port)
        try:
            await asyncio.sleep(self.delay)
            if port not in self.open_set:
                raise ConnectionRefusedError(111, "Connection refused")
        finally:
            self.active -= 1


def test_listening_port_is_open(tcp_listener):
    engine = PortScanEngine()
    result = asyncio.run(engine.scan("127.0.0.1", tcp_listener, tcp_listener))
    assert result == [PortProbeResult(tcp_listener, PortState.OPEN, "tcp")]


def test_closed_port_is_closed_every_time(free_port):
    engine = PortScanEngine()
    first = asyncio.run(engine.scan("127.0.0.1", free_port, free_port))
    second = asyncio.run(engine.scan("127.0.0.1", free_port, free_port))
    assert first == second == [PortProbeResult(free_port, PortState.CLOSED, "tcp")]


def test_hundred_ports_with_one_listener():
    engine = ScriptedEngine(open_set={50})
    results = asyncio.run(engine.scan("127.0.0.1", 1, 100))

    assert len(results) == 100
    assert [r.port for r in results] == list(range(1, 101))
    assert open_ports(results) == [PortProbeResult(50, PortState.OPEN, "tcp")]
    assert sum(1 for r in results if r.state is PortState.CLOSED) == 99
    assert sorted(engine.dialled) == list(range(1, 101))


@pytest.mark.parametrize("start,end", [(0, 0), (1, 1), (10, 37), (65500, 65535)])
def test_results_cover_range_exactly_once(start, end):
    engine = ScriptedEngine(open_set={start, end})
    results = asyncio.run(engine.scan("127.0.0.1", start, end))
    ports = [r.port for r in results]
    assert ports == list(range(start, end + 1))
    assert len(set(ports)) == end - start + 1


def test_in_flight_dials_never_exceed_cap():
    engine = ScriptedEngine(delay=0.005)
    results = asyncio.run(engine.scan("127.0.0.1", 1, 60, concurrency_cap=5))

    assert len(results) == 60
    assert engine.highest <= 5
    assert engine.last_gate is not None
    assert engine.last_gate.peak == 5
    assert engine.last_gate.in_flight == 0


def test_default_cap_comes_from_settings():
    engine = ScriptedEngine(delay=0.005)
    asyncio.run(engine.scan("127.0.0.1", 1, 200))
    assert engine.last_gate.limit == 50
    assert engine.highest <= 50

    engine = ScriptedEngine(delay=0.005, settings=ScanSettings(concurrency_cap=3))
    asyncio.run(engine.scan("127.0.0.1", 1, 20))
    assert engine.highest <= 3


def test_timeouts_are_reported_closed():
    class SlowEngine(PortScanEngine):
        async def _dial(self, addr, port, family):
            raise asyncio.TimeoutError()

    results = asyncio.run(SlowEngine().scan("127.0.0.1", 5, 6))
    assert [r.state for r in results] == [PortState.CLOSED, PortState.CLOSED]


def test_real_dial_timeout_applies(monkeypatch):
    async def hang(*args, **kwargs):
        await asyncio.sleep(5)

    monkeypatch.setattr(portscan.asyncio, "open_connection", hang)
    engine = PortScanEngine(ScanSettings(dial_timeout=0.05))
    assert asyncio.run(engine.scan("127.0.0.1", 9, 9)) == [
        PortProbeResult(9, PortState.CLOSED, "tcp")
    ]


@pytest.mark.parametrize("start,end", [(10, 5), (-1, 10), (1, 65536)])
def test_invalid_port_ranges(start, end):
    with pytest.raises(InvalidPortRange):
        asyncio.run(PortScanEngine().scan("127.0.0.1", start, end))


def test_invalid_cap():
    with pytest.raises(ValueError):
        asyncio.run(ScriptedEngine().scan("127.0.0.1", 1, 2, concurrency_cap=0))


def test_cancel_returns_sorted_partial():
    class StallingEngine(ScriptedEngine):
        async def _dial(self, addr, port, family):
            if port > 3:
                await asyncio.sleep(10)
            raise ConnectionRefusedError()

    async def run():
        cancel = asyncio.Event()
        asyncio.get_running_loop().call_later(0.1, cancel.set)
        engine = StallingEngine()
        with pytest.raises(OperationCancelled) as info:
            await engine.scan("127.0.0.1", 1, 100, concurrency_cap=10, cancel_event=cancel)
        return info.value.partial

    partial = asyncio.run(run())
    assert [r.port for r in partial] == [1, 2, 3]


def test_progress_callback():
    calls: list[float | None] = []
    asyncio.run(ScriptedEngine().scan("127.0.0.1", 1, 4, progress=calls.append))
    assert calls[-1] is None
    assert calls[-2] == 1.0


def test_scan_ports_sync_wrapper(tcp_listener):
    results = scan_ports("127.0.0.1", tcp_listener, tcp_listener)
    assert results == [PortProbeResult(tcp_listener, PortState.OPEN, "tcp")]


@pytest.mark.parametrize("host", ["a..b", "x" * 64 + ".example"])
def test_malformed_hostname_reports_closed(host):
    results = asyncio.run(PortScanEngine(ScanSettings(dial_timeout=1.0)).scan(host, 1, 2))
    assert results == [
        PortProbeResult(1, PortState.CLOSED, "tcp"),
        PortProbeResult(2, PortState.CLOSED, "tcp"),
    ]
