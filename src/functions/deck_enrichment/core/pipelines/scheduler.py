"""Polling scheduler that feeds eligible units to the state machine."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, List, Optional, Set

from ..contracts import Unit
from ..db.unit_store import UnitStore

logger = logging.getLogger(__name__)


class PipelineScheduler:
    """Bounded-concurrency dispatcher over the shared unit collection.

    Each poll picks units whose stage has an automatic next step, in document
    order, until ``max_concurrent`` advancements are in flight. A unit id stays
    in the in-flight set until its advancement finishes, so it is never
    dispatched twice at once.
    """

    def __init__(
        self,
        store: UnitStore,
        state_machine: Any,
        *,
        max_concurrent: int = 3,
        poll_interval: float = 0.5,
        on_settled: Optional[Callable[[Unit], None]] = None,
    ) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        if poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        self.store = store
        self.state_machine = state_machine
        self.max_concurrent = max_concurrent
        self.poll_interval = poll_interval
        self._on_settled = on_settled
        self._in_flight: Set[str] = set()
        self._tasks: Set[asyncio.Task] = set()
        self._loop_task: Optional[asyncio.Task] = None
        self.peak_in_flight = 0
        self.dispatched = 0

    @property
    def in_flight(self) -> Set[str]:
        return set(self._in_flight)

    @property
    def is_running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    def eligible(self) -> List[Unit]:
        return [
            unit
            for unit in self.store.snapshot()
            if unit.stage.is_auto_eligible and unit.id not in self._in_flight
        ]

    def is_idle(self) -> bool:
        return not self._in_flight and not self.eligible()

    def tick(self) -> List[str]:
        """Run one poll; returns the ids dispatched by it."""
        free = self.max_concurrent - len(self._in_flight)
        if free <= 0:
            return []

        started: List[str] = []
        for unit in self.eligible()[:free]:
            self._in_flight.add(unit.id)
            self.peak_in_flight = max(self.peak_in_flight, len(self._in_flight))
            task = asyncio.get_running_loop().create_task(self._run(unit.id))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            started.append(unit.id)

        if started:
            self.dispatched += len(started)
            logger.debug("Dispatched %s (%d in flight)", started, len(self._in_flight))
        return started

    async def _run(self, unit_id: str) -> None:
        try:
            await self.state_machine.advance(unit_id)
        except Exception:  # noqa: BLE001
            logger.exception("Advancing unit %s failed", unit_id)
        finally:
            self._in_flight.discard(unit_id)
            if self._on_settled is not None:
                unit = self.store.get(unit_id)
                if unit is not None:
                    self._on_settled(unit)

    async def _loop(self) -> None:
        while True:
            self.tick()
            await asyncio.sleep(self.poll_interval)

    def start(self) -> None:
        """Start the fixed-interval polling loop on the running event loop."""
        if self.is_running:
            return
        self._loop_task = asyncio.get_running_loop().create_task(self._loop())
        logger.info(
            "Scheduler started (max_concurrent=%d, poll_interval=%.2fs)",
            self.max_concurrent,
            self.poll_interval,
        )

    async def stop(self, *, wait: bool = True) -> None:
        """Stop polling; with *wait*, let in-flight advancements finish."""
        if self._loop_task is not None:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None
        if wait and self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        logger.info("Scheduler stopped (peak in flight: %d)", self.peak_in_flight)

    async def run_until_idle(self, timeout: Optional[float] = None) -> None:
        """Poll until nothing is eligible and nothing is in flight.

        Raises:
            asyncio.TimeoutError: If *timeout* seconds pass first
        """
        deadline = time.monotonic() + timeout if timeout is not None else None
        while True:
            self.tick()
            if not self._in_flight and not self._tasks and not self.eligible():
                return
            if deadline is not None and time.monotonic() >= deadline:
                raise asyncio.TimeoutError(f"Pipeline still busy after {timeout}s")
            await asyncio.sleep(self.poll_interval)
