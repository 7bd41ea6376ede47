"""
Auto-refresh scheduler.

A cooperative countdown: one driver task sleeps a tick at a time and calls
``tick()``, which performs exactly one transition of the
Disabled / Counting / Busy / Suspended state machine and returns the delay
until the next tick.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, List, Optional

from pricewatch.observability.event_log import EventLog
from pricewatch.persistence.settings_store import AUTO_KEY
from pricewatch.protocols import KeyValueStore
from pricewatch.services.reorder_guard import ReorderGuard

logger = logging.getLogger(__name__)

CYCLE_SECONDS = 5
TICK_MS = 1000
RECHECK_MS = 250


class Phase(str, Enum):
    DISABLED = "disabled"
    COUNTING = "counting"
    BUSY = "busy"
    SUSPENDED = "suspended"


@dataclass(frozen=True)
class AutoRefreshState:
    enabled: bool
    remaining: int
    busy: bool
    suspended: bool

    @property
    def phase(self) -> Phase:
        if not self.enabled:
            return Phase.DISABLED
        if self.suspended:
            return Phase.SUSPENDED
        if self.busy:
            return Phase.BUSY
        return Phase.COUNTING


RefreshAction = Callable[[], Awaitable[None]]
Listener = Callable[["AutoRefreshScheduler"], None]


class AutoRefreshScheduler:
    """Countdown state machine triggering ``action`` once per cycle."""

    def __init__(self, action: RefreshAction, event_log: EventLog, store: Optional[KeyValueStore] = None,
                 guard: Optional[ReorderGuard] = None, cycle_seconds: int = CYCLE_SECONDS,
                 tick_ms: int = TICK_MS, recheck_ms: int = RECHECK_MS):
        self._action = action
        self.log = event_log
        self.store = store
        self.guard = guard if guard is not None else ReorderGuard()
        self.cycle_seconds = cycle_seconds
        self._tick_s = tick_ms / 1000
        self._recheck_s = recheck_ms / 1000

        self._enabled = False
        self._remaining = cycle_seconds
        self._busy = False
        self._running = False
        self._driver: Optional[asyncio.Task] = None
        self._wake = asyncio.Event()
        self._listeners: List[Listener] = []

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> AutoRefreshState:
        return AutoRefreshState(enabled=self._enabled, remaining=self._remaining,
                                busy=self._busy, suspended=self.guard.active)

    @property
    def phase(self) -> Phase:
        return self.state.phase

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def remaining(self) -> int:
        return self._remaining

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def label(self) -> str:
        shown = self._remaining if self._enabled else self.cycle_seconds
        return f"Auto refresh: {shown} s"

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def set_enabled(self, enabled: bool) -> None:
        """Enable (restart at a full cycle) or disable; the flag is persisted."""
        self._enabled = bool(enabled)
        if self.store is not None:
            self.store.set(AUTO_KEY, self._enabled)

        if not self._enabled:
            self._wake.set()
            self._notify()
            self.log.event(type="ui", action="update", message="Auto refresh disabled",
                           meta={"no_status": True})
            return

        self._remaining = self.cycle_seconds
        self._notify()
        self._kick()
        self.log.event(type="ui", action="update", message="Auto refresh enabled",
                       meta={"no_status": True})

    def enable(self) -> None:
        self.set_enabled(True)

    def disable(self) -> None:
        self.set_enabled(False)

    async def run_now(self) -> bool:
        """Manual refresh: run the action immediately; False when one is already running."""
        return await self._run_action()

    def resume(self) -> None:
        """Leave the suspended window: restart at a full cycle rather than mid-count."""
        if self._enabled:
            self._remaining = self.cycle_seconds
            self._notify()
            self._kick()

    # ------------------------------------------------------------------
    # Ticking
    # ------------------------------------------------------------------

    async def tick(self) -> Optional[float]:
        """
        One transition. Returns seconds until the next tick, or None once
        disabled.
        """
        if not self._enabled:
            return None
        if self._busy or self.guard.active:
            # wait loop, not a cancellation: the countdown is kept
            return self._recheck_s
        if self._remaining <= 0:
            self.log.info("Auto refresh fired")
            await self._run_action()
            return self._tick_s
        self._remaining -= 1
        self._notify()
        return self._tick_s

    async def _run_action(self) -> bool:
        if self._busy:
            return False
        self._busy = True
        self._notify()
        try:
            await self._action()
        except Exception as e:
            logger.error(f"Refresh action failed: {e}", exc_info=True)
        finally:
            self._busy = False
            if self._enabled and not self.guard.active:
                self._remaining = self.cycle_seconds
                self._kick()
            self._notify()
        return True

    def _kick(self) -> None:
        """(Re)start tick timing from a full tick."""
        if not self._running:
            return
        if self._driver is None or self._driver.done():
            self._driver = asyncio.ensure_future(self._drive())
            self._driver.set_name("auto-refresh")
        else:
            self._wake.set()

    async def _drive(self) -> None:
        delay = self._tick_s
        while self._enabled and self._running:
            self._wake.clear()
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=delay)
            except asyncio.TimeoutError:
                next_delay = await self.tick()
                if next_delay is None:
                    break
                delay = next_delay
            else:
                delay = self._tick_s

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        self._running = True
        if self._enabled:
            self._kick()

    async def stop(self) -> None:
        self._running = False
        driver, self._driver = self._driver, None
        if driver is not None and not driver.done():
            driver.cancel()
            await asyncio.gather(driver, return_exceptions=True)

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception as e:
                logger.error(f"Auto refresh listener failed: {e}")
