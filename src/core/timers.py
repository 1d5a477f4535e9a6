"""Keyed, cancellable timers for debounce and delayed follow-ups."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Hashable, Optional

LOGGER = logging.getLogger(__name__)

TimerCallback = Callable[[], Awaitable[None]]


class TimerHandle:
    """A scheduled callback that can be cancelled before it fires."""

    def __init__(self, key: Hashable, delay: float) -> None:
        self.key = key
        self.delay = delay
        self._handle: Optional[asyncio.TimerHandle] = None
        self.fired = False
        self.cancelled = False

    def _attach(self, handle: asyncio.TimerHandle) -> None:
        self._handle = handle

    def cancel(self) -> None:
        if self.fired or self.cancelled:
            return
        self.cancelled = True
        if self._handle is not None:
            self._handle.cancel()


class TimerService:
    """Owns every pending timer so restarts and shutdown are explicit.

    Scheduling a key that already has a pending timer cancels the old one,
    which is what debounce needs.
    """

    def __init__(self) -> None:
        self._timers: dict[Hashable, TimerHandle] = {}
        self._running: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._timers)

    def is_pending(self, key: Hashable) -> bool:
        return key in self._timers

    def schedule(self, key: Hashable, delay: float, callback: TimerCallback) -> TimerHandle:
        """(Re)start the timer for ``key``."""

        self.cancel(key)
        loop = asyncio.get_running_loop()
        timer = TimerHandle(key, delay)
        timer._attach(loop.call_later(delay, self._fire, timer, callback))
        self._timers[key] = timer
        return timer

    def cancel(self, key: Hashable) -> bool:
        timer = self._timers.pop(key, None)
        if timer is None:
            return False
        timer.cancel()
        return True

    def cancel_all(self) -> int:
        count = 0
        for key in list(self._timers):
            if self.cancel(key):
                count += 1
        return count

    async def drain(self) -> None:
        """Wait for callbacks that already fired to finish."""

        if self._running:
            await asyncio.gather(*self._running, return_exceptions=True)

    def _fire(self, timer: TimerHandle, callback: TimerCallback) -> None:
        if self._timers.get(timer.key) is timer:
            del self._timers[timer.key]
        if timer.cancelled:
            return
        timer.fired = True
        task = asyncio.get_running_loop().create_task(self._run(timer.key, callback))
        self._running.add(task)
        task.add_done_callback(self._running.discard)

    @staticmethod
    async def _run(key: Hashable, callback: TimerCallback) -> None:
        try:
            await callback()
        except Exception:
            LOGGER.exception("Timer callback for %s failed", key)
