import asyncio

import pytest

from reconbox.errors import OperationCancelled
from reconbox.pool import AdmissionGate, BoundedPool


def test_admission_gate_rejects_zero():
    with pytest.raises(ValueError):
        AdmissionGate(0)


def test_pool_returns_one_result_per_item():
    async def double(x: int) -> int:
        await asyncio.sleep(0)
        return x * 2

    async def run():
        pool = BoundedPool(double, 4)
        return await pool.map(range(25))

    assert sorted(asyncio.run(run())) == [x * 2 for x in range(25)]


def test_pool_never_exceeds_limit():
    active = 0
    highest = 0

    async def worker(x: int) -> int:
        nonlocal active, highest
        active += 1
        highest = max(highest, active)
        await asyncio.sleep(0.002)
        active -= 1
        return x

    async def run():
        pool = BoundedPool(worker, 7)
        results = await pool.map(range(200))
        return pool, results

    pool, results = asyncio.run(run())
    assert sorted(results) == list(range(200))
    assert highest <= 7
    assert pool.gate.peak == 7
    assert pool.gate.in_flight == 0


def test_pool_empty_batch():
    async def worker(x):
        return x

    assert asyncio.run(BoundedPool(worker, 3).map([])) == []


def test_pool_reports_progress():
    calls: list[float | None] = []

    async def worker(x):
        return x

    asyncio.run(BoundedPool(worker, 2, progress=calls.append).map(range(4)))
    assert calls == [0.25, 0.5, 0.75, 1.0, None]


def test_pool_propagates_worker_errors():
    async def worker(x):
        if x == 3:
            raise RuntimeError("boom")
        await asyncio.sleep(0.01)
        return x

    async def run():
        await BoundedPool(worker, 2).map(range(10))

    with pytest.raises(RuntimeError, match="boom"):
        asyncio.run(run())


def test_pool_cancellation_returns_partial_and_cleans_up():
    async def worker(x):
        await asyncio.sleep(0.01 if x < 3 else 10)
        return x

    async def run():
        cancel = asyncio.Event()
        asyncio.get_running_loop().call_later(0.2, cancel.set)
        pool = BoundedPool(worker, 5, cancel_event=cancel)
        with pytest.raises(OperationCancelled) as info:
            await pool.map(range(20))
        leftover = [t for t in asyncio.all_tasks() if t is not asyncio.current_task()]
        return info.value.partial, leftover, pool.gate.in_flight

    partial, leftover, in_flight = asyncio.run(run())
    assert sorted(partial) == [0, 1, 2]
    assert leftover == []
    assert in_flight == 0


def test_pool_cancelled_before_start():
    async def worker(x):
        return x

    async def run():
        cancel = asyncio.Event()
        cancel.set()
        with pytest.raises(OperationCancelled) as info:
            await BoundedPool(worker, 2, cancel_event=cancel).map([1, 2])
        return info.value.partial

    assert asyncio.run(run()) == []
