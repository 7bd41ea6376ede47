"""
Async Hygiene Tools
Supervised task management and injectable clocks for the
single-loop engine.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Optional, Set

logger = logging.getLogger(__name__)


class TaskSupervisor:
    """
    Tracks fire-and-forget tasks so failures are logged and shutdown can
    cancel whatever is still pending.
    """

    def __init__(self, name: str = "supervisor"):
        self.name = name
        self._tasks: Set[asyncio.Task] = set()

    def spawn(self, coro: Awaitable[Any], *, name: str) -> asyncio.Task:
        """
        Schedule a coroutine as a supervised task.

        Args:
            coro: The coroutine to run
            name: Name for the task (used in logs)

        Returns:
            The created task
        """
        task = asyncio.ensure_future(coro)
        task.set_name(name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.debug(f"[{self.name}] Task '{task.get_name()}' cancelled")
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"[{self.name}] Task '{task.get_name()}' failed: {exc}", exc_info=exc)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every currently tracked task to settle."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel all supervised tasks and wait for them to complete."""
        if not self._tasks:
            return

        logger.info(f"[{self.name}] Shutting down {len(self._tasks)} supervised tasks")
        tasks = list(self._tasks)
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()


class SystemClock:
    """Wall and monotonic time in seconds."""

    def time(self) -> float:
        return time.time()

    def monotonic(self) -> float:
        return time.monotonic()

    def now_ms(self) -> int:
        return int(self.time() * 1000)


class DeterministicClock(SystemClock):
    """A deterministic clock for testing that can be frozen and advanced."""

    def __init__(self, start_time: Optional[float] = None):
        self._time = time.time() if start_time is None else start_time
        self._mono = 0.0
        self._frozen = start_time is not None

    def time(self) -> float:
        """Get current time."""
        if self._frozen:
            return self._time
        return time.time()

    def monotonic(self) -> float:
        if self._frozen:
            return self._mono
        return time.monotonic()

    def freeze(self):
        """Freeze the clock at current time."""
        self._frozen = True
        self._time = time.time()
        self._mono = time.monotonic()

    def advance(self, seconds: float):
        """Advance the clock by the given number of seconds."""
        if not self._frozen:
            raise RuntimeError("Clock must be frozen to advance")
        self._time += seconds
        self._mono += seconds

    def unfreeze(self):
        """Unfreeze the clock to use real time."""
        self._frozen = False


system_clock = SystemClock()
