"""Bounded fan-out/fan-in used by both scanning engines.

A dispatcher admits work through an :class:`AdmissionGate`, each worker
releases its slot as soon as the guarded operation resolves and hands its
result to a collector over an :class:`asyncio.Queue`. The collector waits
for exactly one result per item, so nothing dispatched is ever dropped.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Generic, Iterable, Optional, TypeVar

from .errors import OperationCancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

ProgressCallback = Callable[[Optional[float]], None]


def _cancelled(event: Any) -> bool:
    """Return ``True`` if the optional *event* is set."""

    try:
        return bool(event and event.is_set())
    except Exception:
        return False


class AdmissionGate:
    """Counting gate bounding how many operations are outstanding.

    ``in_flight`` and ``peak`` are kept for instrumentation; ``peak`` never
    exceeds ``limit``.
    """

    def __init__(self, limit: int) -> None:
        if limit < 1:
            raise ValueError(f"admission limit must be at least 1, got {limit}")
        self.limit = limit
        self._sem = asyncio.Semaphore(limit)
        self.in_flight = 0
        self.peak = 0

    async def acquire(self) -> None:
        await self._sem.acquire()
        self.in_flight += 1
        if self.in_flight > self.peak:
            self.peak = self.in_flight

    def release(self) -> None:
        self.in_flight -= 1
        self._sem.release()

    async def __aenter__(self) -> "AdmissionGate":
        await self.acquire()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.release()


class BoundedPool(Generic[T, R]):
    """Run ``worker`` over a batch of items with at most ``limit`` in flight.

    ``progress`` receives the completed fraction after every result and
    ``None`` once the batch is done. Setting ``cancel_event`` stops the
    batch: outstanding workers are cancelled and awaited, then
    :class:`OperationCancelled` is raised with the results gathered so far.
    """

    def __init__(
        self,
        worker: Callable[[T], Awaitable[R]],
        limit: int,
        *,
        cancel_event: asyncio.Event | None = None,
        progress: ProgressCallback | None = None,
    ) -> None:
        self.worker = worker
        self.gate = AdmissionGate(limit)
        self.cancel_event = cancel_event
        self.progress = progress
        self._collected: list[R] = []
        self._workers: set[asyncio.Task[None]] = set()
        self._holding: set[asyncio.Task[None]] = set()

    async def _run_one(self, item: T, results: asyncio.Queue) -> None:
        try:
            outcome: tuple[bool, Any] = (True, await self.worker(item))
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            outcome = (False, exc)
        finally:
            self._release_slot(asyncio.current_task())
        await results.put(outcome)

    def _release_slot(self, task: asyncio.Task[Any] | None) -> None:
        if task in self._holding:
            self._holding.discard(task)
            self.gate.release()

    def _on_worker_done(self, task: asyncio.Task[None]) -> None:
        # A worker cancelled before its first step never reaches its finally.
        self._workers.discard(task)
        self._release_slot(task)

    async def _dispatch(self, items: list[T], results: asyncio.Queue) -> None:
        for item in items:
            await self.gate.acquire()
            task = asyncio.create_task(self._run_one(item, results))
            self._holding.add(task)
            self._workers.add(task)
            task.add_done_callback(self._on_worker_done)

    async def _collect(self, results: asyncio.Queue, expected: int) -> list[R]:
        for completed in range(1, expected + 1):
            ok, value = await results.get()
            if not ok:
                raise value
            self._collected.append(value)
            if self.progress is not None:
                self.progress(completed / expected)
        return list(self._collected)

    async def map(self, items: Iterable[T]) -> list[R]:
        """Return one worker result per item, in completion order."""

        batch = list(items)
        self._collected = []
        if _cancelled(self.cancel_event):
            raise OperationCancelled([])

        results: asyncio.Queue = asyncio.Queue()
        collector = asyncio.create_task(self._collect(results, len(batch)))
        dispatcher = asyncio.create_task(self._dispatch(batch, results))
        stopper: asyncio.Task[Any] | None = None
        waiters: set[asyncio.Task[Any]] = {collector}
        if self.cancel_event is not None:
            stopper = asyncio.create_task(self.cancel_event.wait())
            waiters.add(stopper)

        try:
            done, _ = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
            if collector in done:
                collected = collector.result()
                await dispatcher
                if self.progress is not None:
                    self.progress(None)
                return collected
            logger.debug(
                "Batch cancelled with %d of %d results", len(self._collected), len(batch)
            )
            raise OperationCancelled(self._collected)
        finally:
            await self._shutdown(dispatcher, collector, stopper)

    async def _shutdown(self, *tasks: asyncio.Task[Any] | None) -> None:
        pending = [t for t in (*tasks, *self._workers) if t is not None and not t.done()]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)


__all__ = ["AdmissionGate", "BoundedPool"]
