"""Countdown tickers.

A clock delivers a callback once per interval while it is running and is the
single time source (``now()``) for a session. ``Clock`` schedules its ticks on
the running asyncio loop; ``ManualClock`` only ticks when advanced explicitly.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

logger = logging.getLogger(__name__)

TickCallback = Callable[[], None]


class Clock:
    """Repeating ticker on the running event loop."""

    def __init__(self, interval: float = 1.0):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.interval = interval
        self._on_tick: Optional[TickCallback] = None
        self._task: Optional[asyncio.Task] = None
        self._running = False

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    @property
    def running(self) -> bool:
        return self._running

    def start(self, on_tick: TickCallback) -> None:
        """Start ticking. Must be called from inside the event loop."""
        if self._running:
            return
        loop = asyncio.get_running_loop()
        self._on_tick = on_tick
        self._running = True
        self._task = loop.create_task(self._run())

    def stop(self) -> None:
        """Stop ticking. Safe to call repeatedly, including from a tick."""
        self._running = False
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _run(self) -> None:
        while self._running:
            await asyncio.sleep(self.interval)
            if not self._running:
                break
            self._on_tick()


class ManualClock(Clock):
    """Clock whose time only moves when ``advance`` is called.

    Virtual time keeps moving while the clock is stopped; ticks are only
    delivered while it is running.
    """

    def __init__(self, interval: float = 1.0, start_at: Optional[datetime] = None):
        super().__init__(interval)
        self._now = start_at or datetime(2024, 1, 1, tzinfo=timezone.utc)
        self._since_tick = 0.0

    def now(self) -> datetime:
        return self._now

    def start(self, on_tick: TickCallback) -> None:
        if self._running:
            return
        self._on_tick = on_tick
        self._running = True
        self._since_tick = 0.0

    def stop(self) -> None:
        self._running = False

    def advance(self, seconds: float) -> int:
        """Move time forward by ``seconds``; returns the number of ticks delivered."""
        if seconds < 0:
            raise ValueError("cannot move time backwards")
        delivered = 0
        left = float(seconds)
        while left > 0:
            step = min(left, self.interval - self._since_tick)
            self._now += timedelta(seconds=step)
            self._since_tick += step
            left -= step
            if self._since_tick >= self.interval:
                self._since_tick = 0.0
                if self._running:
                    delivered += 1
                    self._on_tick()
        return delivered

    def tick(self) -> None:
        """Deliver exactly one tick (advancing time by one interval)."""
        self.advance(self.interval - self._since_tick)
