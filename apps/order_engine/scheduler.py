"""
Fixed-interval asyncio scheduler.

Each periodic service owns its own ``PeriodicScheduler``; there is no shared
module-level running flag. The scheduler runs one tick immediately on
``start()`` and then one tick per interval until ``stop()``.

Stop semantics:
    ``stop()`` only stops new ticks from being scheduled. A tick already in
    flight is shielded from cancellation and is allowed to finish and apply
    its writes. Callers that need to wait for it use ``shutdown()``.

A tick that raises is logged and counted; the loop keeps going. Only
``stop()`` ends it.

Example:
    >>> scheduler = PeriodicScheduler("market_simulator", 60, simulator.run_tick)
    >>> scheduler.start()
    True
    >>> scheduler.start()  # already running
    False
    >>> await scheduler.shutdown()
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections.abc import Awaitable, Callable
from typing import Any

from apps.order_engine.metrics import (
    scheduler_last_tick_timestamp,
    scheduler_running,
    scheduler_tick_errors_total,
)
from libs.common.logging import trace_scope

logger = logging.getLogger(__name__)


class PeriodicScheduler:
    """Run an async tick function on a fixed interval."""

    def __init__(
        self,
        name: str,
        interval_seconds: float,
        tick: Callable[[], Awaitable[Any]],
    ) -> None:
        """
        Initialize scheduler.

        Args:
            name: Scheduler name used in logs and metric labels
            interval_seconds: Delay between the end of one tick and the next
            tick: Coroutine function run on every tick
        """
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be > 0, got {interval_seconds}")

        self.name = name
        self.interval_seconds = interval_seconds
        self._tick = tick

        self._running = threading.Event()
        self._state_lock = threading.Lock()
        self._task: asyncio.Task[None] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._inflight: set[asyncio.Task[Any]] = set()

        scheduler_running.labels(scheduler=name).set(0)

    def is_running(self) -> bool:
        return self._running.is_set()

    def start(self) -> bool:
        """Start ticking. Must be called from a running event loop.

        Returns:
            True if started, False if already running
        """
        with self._state_lock:
            if self._running.is_set():
                logger.info("Scheduler already running", extra={"scheduler": self.name})
                return False

            loop = asyncio.get_running_loop()
            self._loop = loop
            self._running.set()
            self._task = loop.create_task(self._run(), name=f"{self.name}-scheduler")

        scheduler_running.labels(scheduler=self.name).set(1)
        logger.info(
            "Scheduler started",
            extra={"scheduler": self.name, "interval_seconds": self.interval_seconds},
        )
        return True

    def stop(self) -> bool:
        """Stop scheduling new ticks. Safe to call from any thread.

        Returns:
            True if stopped, False if it was not running
        """
        with self._state_lock:
            if not self._running.is_set():
                logger.info("Scheduler not running", extra={"scheduler": self.name})
                return False

            self._running.clear()
            task, loop = self._task, self._loop
            self._task = None

        if task is not None and loop is not None and not task.done():
            loop.call_soon_threadsafe(task.cancel)

        scheduler_running.labels(scheduler=self.name).set(0)
        logger.info("Scheduler stopped", extra={"scheduler": self.name})
        return True

    async def shutdown(self) -> None:
        """Stop and wait for any in-flight tick to finish."""
        self.stop()
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)

    async def run_once(self) -> Any:
        """Run a single tick now, under its own trace id.

        Returns:
            The tick's return value, or None if it raised
        """
        with trace_scope():
            try:
                result = await self._tick()
            except Exception as exc:
                scheduler_tick_errors_total.labels(scheduler=self.name).inc()
                logger.error(
                    "Scheduler tick failed",
                    exc_info=True,
                    extra={"scheduler": self.name, "error": str(exc)},
                )
                return None
        scheduler_last_tick_timestamp.labels(scheduler=self.name).set(time.time())
        return result

    async def _run(self) -> None:
        try:
            while self._running.is_set():
                inflight = asyncio.ensure_future(self.run_once())
                self._inflight.add(inflight)
                inflight.add_done_callback(self._inflight.discard)

                await asyncio.shield(inflight)

                if not self._running.is_set():
                    break
                await asyncio.sleep(self.interval_seconds)
        except asyncio.CancelledError:
            logger.debug("Scheduler loop cancelled", extra={"scheduler": self.name})
            raise
