"""Single-flight periodic runner for the background loops.

`start()` runs a first cycle, then one cycle every `interval_seconds`.
A trigger that arrives while a cycle is still running is skipped, not
queued. `stop()` ends the timer and waits for the in-flight cycle; it never
cancels a cycle midway.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)


class PeriodicTask:
    def __init__(
        self,
        name: str,
        interval_seconds: float,
        cycle: Callable[[], Awaitable[Any]],
    ) -> None:
        self.name = name
        self._interval = interval_seconds
        self._cycle = cycle
        self._in_flight = False
        self._stopping = asyncio.Event()
        self._loop_task: asyncio.Task[None] | None = None
        self.cycles_run = 0
        self.cycles_skipped = 0

    @property
    def running(self) -> bool:
        return self._loop_task is not None

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    async def trigger(self) -> bool:
        """Run one cycle now. False when a cycle was already in flight."""
        if self._in_flight:
            self.cycles_skipped += 1
            logger.warning("%s: previous cycle still running, skipping", self.name)
            return False
        self._in_flight = True
        try:
            await self._cycle()
        except Exception:
            logger.exception("%s: cycle failed", self.name)
        finally:
            self._in_flight = False
            self.cycles_run += 1
        return True

    async def start(self) -> None:
        if self._loop_task is not None:
            logger.info("%s already running", self.name)
            return
        logger.info("Starting %s (interval %.1fs)", self.name, self._interval)
        self._stopping.clear()
        await self.trigger()
        self._loop_task = asyncio.create_task(self._run(), name=self.name)

    async def _run(self) -> None:
        while not self._stopping.is_set():
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                await self.trigger()

    async def stop(self) -> None:
        if self._loop_task is None:
            return
        logger.info("Stopping %s", self.name)
        self._stopping.set()
        await self._loop_task
        self._loop_task = None
