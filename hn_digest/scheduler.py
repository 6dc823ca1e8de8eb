"""
Time trigger for pipeline ticks.

Ticks are started on a fixed interval without waiting for the previous one
to finish. Overlapping ticks are safe because every state change goes
through the store's compare-and-swap transitions.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from .core.errors import SystemicError
from .pipeline.orchestrator import TickReport
from .utils.logging import log_event

logger = logging.getLogger("hn_digest.scheduler")


class Scheduler:
    """Fires ``tick`` every ``interval_seconds``.

    Args:
        tick: Coroutine function running one orchestrator pass
        interval_seconds: Seconds between tick starts
    """

    def __init__(self, tick: Callable[[], Awaitable[TickReport]], interval_seconds: float):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.tick = tick
        self.interval_seconds = interval_seconds
        self._stop = asyncio.Event()
        self._running: set[asyncio.Task] = set()
        self.ticks_started = 0
        self.ticks_failed = 0

    async def run_once(self) -> TickReport | None:
        """Run a single tick; failures are logged and reported as None."""
        try:
            return await self.tick()
        except SystemicError as exc:
            self.ticks_failed += 1
            log_event(
                logger,
                "Tick aborted by systemic error",
                level=logging.ERROR,
                event="tick_failed",
                error=str(exc),
                error_type=type(exc).__name__,
            )
        except Exception:  # noqa: BLE001
            self.ticks_failed += 1
            logger.exception("Tick crashed", extra={"event": "tick_crashed"})
        return None

    async def run_forever(self, max_ticks: int | None = None) -> None:
        """Start ticks on the interval until ``stop`` is called or ``max_ticks`` is reached."""
        self._stop.clear()
        log_event(
            logger,
            "Scheduler started",
            event="scheduler_start",
            interval_seconds=self.interval_seconds,
        )
        try:
            while not self._stop.is_set():
                self._start_tick()
                if max_ticks is not None and self.ticks_started >= max_ticks:
                    break
                try:
                    await asyncio.wait_for(self._stop.wait(), timeout=self.interval_seconds)
                except asyncio.TimeoutError:
                    pass
        finally:
            if self._running:
                await asyncio.gather(*self._running, return_exceptions=True)
            log_event(
                logger,
                "Scheduler stopped",
                event="scheduler_stop",
                ticks_started=self.ticks_started,
                ticks_failed=self.ticks_failed,
            )

    def stop(self) -> None:
        self._stop.set()

    def _start_tick(self) -> None:
        if self._running:
            log_event(
                logger,
                "Previous tick still running; starting overlapping tick",
                level=logging.WARNING,
                event="tick_overlap",
                running=len(self._running),
            )
        self.ticks_started += 1
        task = asyncio.create_task(self.run_once())
        self._running.add(task)
        task.add_done_callback(self._running.discard)
