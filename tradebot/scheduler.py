"""
Delayed task scheduler.

Keyed single-shot timers on the running event loop. Scheduling a key that
already has a timer replaces it; cancelling a key that already fired is a
no-op. The key is released before the callback runs, so a callback may
reschedule or cancel its own key.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

TimerCallback = Callable[[], Awaitable[None]]


class DelayedTaskScheduler:
    """Single-shot timers keyed by string."""

    def __init__(self, name: str = "scheduler"):
        """
        Initialize the scheduler.

        Args:
            name: Prefix for task names
        """
        self._name = name
        self._timers: dict[str, asyncio.Task] = {}

    def schedule(self, key: str, delay_s: float, callback: TimerCallback) -> None:
        """
        Run `callback` after `delay_s` seconds.

        Args:
            key: Timer key (replaces any pending timer with the same key)
            delay_s: Delay in seconds
            callback: Coroutine function invoked when the timer fires
        """
        self.cancel(key)
        task = asyncio.get_running_loop().create_task(
            self._fire(key, max(0.0, delay_s), callback),
            name=f"{self._name}:{key}",
        )
        self._timers[key] = task

    async def _fire(self, key: str, delay_s: float, callback: TimerCallback) -> None:
        await asyncio.sleep(delay_s)

        if self._timers.get(key) is asyncio.current_task():
            del self._timers[key]

        try:
            await callback()
        except Exception as e:
            logger.error(f"{self._name}: timer {key} failed: {e}")

    def cancel(self, key: str) -> bool:
        """Cancel a pending timer. Returns True if one was pending."""
        task = self._timers.pop(key, None)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    def pending(self, key: str) -> bool:
        """Whether a timer is pending for `key`."""
        task: Optional[asyncio.Task] = self._timers.get(key)
        return task is not None and not task.done()

    def __len__(self) -> int:
        return sum(1 for task in self._timers.values() if not task.done())

    async def close(self) -> None:
        """Cancel every pending timer and wait for them to unwind."""
        tasks = list(self._timers.values())
        self._timers.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
