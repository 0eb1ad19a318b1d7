"""Cosmetic progress bar shown while a discovery sweep runs."""
from __future__ import annotations

import asyncio

from rich.console import Console
from rich.progress import BarColumn, Progress, TextColumn, TimeRemainingColumn


class ProgressReporter:
    """Advance a rich progress bar once per ``interval`` for ``duration`` ticks.

    It has no influence on when a sweep ends or what it returns; the
    discovery engine simply cancels it once the sweep is over.
    """

    def __init__(
        self,
        duration: int,
        *,
        interval: float = 1.0,
        console: Console | None = None,
        disable: bool = False,
        description: str = "Sweeping",
    ) -> None:
        self.duration = max(0, int(duration))
        self.interval = interval
        self.console = console
        self.disable = disable
        self.description = description
        self.ticks = 0

    async def run(self) -> None:
        with Progress(
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TimeRemainingColumn(),
            console=self.console,
            disable=self.disable,
            transient=True,
        ) as progress:
            task = progress.add_task(self.description, total=self.duration)
            for _ in range(self.duration):
                await asyncio.sleep(self.interval)
                progress.advance(task)
                self.ticks += 1


__all__ = ["ProgressReporter"]
