"""
Debounced trigger for automatic re-runs.
Each edit pushes the pending run back; only the last edit in a quiet window fires.
"""

import asyncio
from typing import Awaitable, Callable, Optional

from logger import playground_logger


class Debouncer:
    """
    Coalesces rapid `trigger()` calls into one call of `callback`,
    `delay` seconds after the most recent trigger.
    """

    def __init__(self, delay: float, callback: Callable[[], Awaitable[None]]):
        self.delay = delay
        self.callback = callback
        self._handle: Optional[asyncio.TimerHandle] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def trigger(self):
        """Schedule (or reschedule) the callback. Must be called on the event loop."""
        loop = asyncio.get_running_loop()
        self.cancel()
        self._handle = loop.call_later(self.delay, self._fire)

    def cancel(self):
        """Drop the pending call, if any. A callback already running is left alone."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self):
        self._handle = None
        self._task = asyncio.ensure_future(self.callback())
        self._task.add_done_callback(self._log_failure)

    @staticmethod
    def _log_failure(task: asyncio.Task):
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            playground_logger.error(f"Scheduled run failed: {error}", exc_info=error)

    async def wait_idle(self):
        """Wait for a callback that has already fired to finish."""
        if self._task is not None and not self._task.done():
            await self._task
