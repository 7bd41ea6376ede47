"""
Auto Refresh Scheduler Tests
The countdown is driven tick by tick; only the last test runs the driver.
"""

import asyncio

import pytest

from pricewatch.persistence.settings_store import AUTO_KEY
from pricewatch.services.auto_refresh import AutoRefreshScheduler, Phase
from pricewatch.services.reorder_guard import ReorderGuard


class RecordingAction:
    """Refresh action stand-in; optionally blocks on a gate."""

    def __init__(self):
        self.calls = 0
        self.gate = None
        self.fail = False

    async def __call__(self):
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise RuntimeError("refresh exploded")


@pytest.fixture
def action():
    return RecordingAction()


@pytest.fixture
def guard():
    return ReorderGuard()


@pytest.fixture
def scheduler(action, event_log, store, guard):
    return AutoRefreshScheduler(action, event_log, store=store, guard=guard)


async def run_down(scheduler, ticks):
    return [await scheduler.tick() for _ in range(ticks)]


class TestCountdown:

    def test_starts_disabled(self, scheduler):
        assert scheduler.phase is Phase.DISABLED
        assert scheduler.label == "Auto refresh: 5 s"

    async def test_disabled_tick_is_noop(self, scheduler, action):
        assert await scheduler.tick() is None
        assert action.calls == 0

    async def test_enable_persists_and_counts_from_five(self, scheduler, store, event_log):
        scheduler.enable()
        assert store.get(AUTO_KEY) is True
        assert scheduler.phase is Phase.COUNTING
        assert scheduler.remaining == 5
        # toggling auto refresh never touches the status line
        assert event_log.status == ""

    async def test_strictly_decreasing_then_fires_once(self, scheduler, action):
        scheduler.enable()
        seen = []
        for _ in range(5):
            assert await scheduler.tick() == 1.0
            seen.append(scheduler.remaining)
        assert seen == [4, 3, 2, 1, 0]
        assert action.calls == 0

        assert await scheduler.tick() == 1.0
        assert action.calls == 1
        assert scheduler.remaining == 5

    async def test_label_follows_countdown(self, scheduler):
        scheduler.enable()
        await run_down(scheduler, 2)
        assert scheduler.label == "Auto refresh: 3 s"

    async def test_disable_persists_and_resets_label(self, scheduler, store):
        scheduler.enable()
        await run_down(scheduler, 2)
        scheduler.disable()
        assert store.get(AUTO_KEY) is False
        assert scheduler.label == "Auto refresh: 5 s"
        assert await scheduler.tick() is None


class TestBusyAndSuspended:

    async def test_suspended_rechecks_without_decrementing(self, scheduler, guard):
        scheduler.enable()
        await run_down(scheduler, 2)
        guard.enter()

        assert scheduler.phase is Phase.SUSPENDED
        assert await run_down(scheduler, 3) == [0.25, 0.25, 0.25]
        assert scheduler.remaining == 3

    async def test_resume_restarts_full_cycle(self, scheduler, guard):
        scheduler.enable()
        await run_down(scheduler, 4)
        guard.enter()
        guard.exit()
        scheduler.resume()
        assert scheduler.remaining == 5

    async def test_busy_rechecks_and_rejects_second_run(self, scheduler, action, wait_until):
        scheduler.enable()
        action.gate = asyncio.Event()
        running = asyncio.ensure_future(scheduler.run_now())
        await wait_until(lambda: action.calls == 1)

        assert scheduler.phase is Phase.BUSY
        assert await scheduler.tick() == 0.25
        assert await scheduler.run_now() is False

        action.gate.set()
        assert await running is True
        assert action.calls == 1
        assert not scheduler.busy

    async def test_manual_refresh_resets_countdown(self, scheduler, action):
        scheduler.enable()
        await run_down(scheduler, 3)
        await scheduler.run_now()
        assert action.calls == 1
        assert scheduler.remaining == 5

    async def test_manual_refresh_while_suspended_keeps_countdown(self, scheduler, guard):
        scheduler.enable()
        await run_down(scheduler, 3)
        guard.enter()
        await scheduler.run_now()
        assert scheduler.remaining == 2

    async def test_failing_action_still_clears_busy(self, scheduler, action):
        scheduler.enable()
        action.fail = True
        await run_down(scheduler, 6)
        assert action.calls == 1
        assert not scheduler.busy
        assert scheduler.remaining == 5


class TestDriver:

    async def test_driver_fires_and_stops(self, action, event_log, store, wait_until):
        scheduler = AutoRefreshScheduler(action, event_log, store=store, cycle_seconds=1,
                                         tick_ms=10, recheck_ms=5)
        labels = []
        scheduler.subscribe(lambda s: labels.append(s.label))
        scheduler.enable()
        await scheduler.start()
        try:
            await wait_until(lambda: action.calls >= 2)
        finally:
            await scheduler.stop()

        calls = action.calls
        await asyncio.sleep(0.05)
        assert action.calls == calls
        assert "Auto refresh: 0 s" in labels

    async def test_disable_stops_driver(self, action, event_log, store):
        scheduler = AutoRefreshScheduler(action, event_log, store=store, cycle_seconds=1, tick_ms=10)
        await scheduler.start()
        scheduler.enable()
        scheduler.disable()
        await asyncio.sleep(0.05)
        await scheduler.stop()
        assert action.calls == 0
