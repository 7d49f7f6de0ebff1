"""Timers and background tasks on the asyncio event loop.

The reconciler needs two kinds of deferred work: a one-shot timer (the push
channel's reconnect delay, the typing-stop debounce) and fire-and-forget
coroutines (a typing signal sent without blocking the caller). Both are
owned by a Scheduler so a session teardown can cancel everything that is
still pending in one call.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional, Set

logger = logging.getLogger(__name__)

AsyncCallback = Callable[[], Awaitable[None]]


class Timer:
    """Handle for a scheduled callback."""

    def __init__(self, delay: float) -> None:
        self.delay = delay
        self.cancelled = False
        self._handle: Optional[asyncio.TimerHandle] = None

    def cancel(self) -> None:
        self.cancelled = True
        if self._handle is not None:
            self._handle.cancel()


class Scheduler:
    """Runs delayed callbacks and background coroutines on the running loop."""

    def __init__(self) -> None:
        self._timers: Set[Timer] = set()
        self._tasks: Set[asyncio.Task] = set()

    def call_later(self, delay: float, callback: AsyncCallback) -> Timer:
        """Run ``callback()`` after ``delay`` seconds unless cancelled first."""
        timer = Timer(delay)

        def fire() -> None:
            self._timers.discard(timer)
            if not timer.cancelled:
                self.spawn(callback())

        timer._handle = asyncio.get_running_loop().call_later(delay, fire)
        self._timers.add(timer)
        return timer

    def spawn(self, coro: Awaitable[None]) -> asyncio.Task:
        """Run ``coro`` in the background; failures are logged, not raised."""
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background task failed: %s", exc, exc_info=exc)

    async def drain(self) -> None:
        """Wait until every spawned task has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def cancel_all(self) -> None:
        for timer in list(self._timers):
            timer.cancel()
        self._timers.clear()
        for task in list(self._tasks):
            task.cancel()

    @property
    def pending_timers(self) -> int:
        return len(self._timers)
