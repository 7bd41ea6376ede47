"""
Price Cache Tests
Single-flight coalescing, TTL validity and stale-but-available failures
with a frozen clock.
"""

import asyncio

import pytest

from pricewatch.errors import HTTPStatusError
from pricewatch.services.market_data import MarketDataService
from pricewatch.services.price_cache import PriceCache
from pricewatch.services.reorder_guard import ReorderGuard
from pricewatch.services.request_coordinator import RequestCoordinator


@pytest.fixture
def guard():
    return ReorderGuard()


@pytest.fixture
async def cache(event_log, exchange, guard, clock):
    coordinator = RequestCoordinator(event_log, client=exchange.client(), guard=guard)
    yield PriceCache(MarketDataService(coordinator), ttl_ms=3000, guard=guard, clock=clock)
    await coordinator.client.aclose()


@pytest.mark.deterministic
class TestSingleFlight:

    async def test_concurrent_callers_share_one_request(self, cache, exchange, wait_until):
        exchange.gate = asyncio.Event()
        waiters = [asyncio.ensure_future(cache.preload_all(force=True)) for _ in range(5)]
        await wait_until(lambda: exchange.price_calls() == 1)
        assert cache.refreshing

        exchange.gate.set()
        await asyncio.gather(*waiters)

        assert exchange.price_calls() == 1
        assert cache.get_price("BTCUSDT") == 65000.5
        stats = cache.get_statistics()
        assert stats["fetches"] == 1
        assert stats["coalesced"] == 4
        assert not cache.refreshing

    async def test_cancelled_waiter_does_not_cancel_refresh(self, cache, exchange, wait_until):
        exchange.gate = asyncio.Event()
        first = asyncio.ensure_future(cache.preload_all())
        second = asyncio.ensure_future(cache.preload_all())
        await wait_until(lambda: exchange.price_calls() == 1)

        first.cancel()
        exchange.gate.set()
        await second

        assert first.cancelled()
        assert cache.get_price("ETHUSDT") == 3500.0

    async def test_every_waiter_sees_the_failure(self, cache, exchange, wait_until):
        exchange.status["/ticker/price"] = 503
        exchange.gate = asyncio.Event()
        waiters = [asyncio.ensure_future(cache.preload_all()) for _ in range(3)]
        await wait_until(lambda: exchange.price_calls() == 1)
        exchange.gate.set()

        results = await asyncio.gather(*waiters, return_exceptions=True)
        assert all(isinstance(r, HTTPStatusError) for r in results)
        assert exchange.price_calls() == 1

    async def test_abandoned_refresh_is_not_shared(self, cache, exchange, wait_until):
        exchange.gate = asyncio.Event()
        first = asyncio.ensure_future(cache.preload_all())
        await wait_until(lambda: exchange.price_calls() == 1)

        assert cache.abandon_pending() is True
        assert cache.abandon_pending() is False
        second = asyncio.ensure_future(cache.preload_all())
        await wait_until(lambda: exchange.price_calls() == 2)
        assert cache.refreshing

        exchange.gate.set()
        await asyncio.gather(first, second)
        assert cache.get_price("BTCUSDT") == 65000.5
        assert not cache.refreshing


@pytest.mark.deterministic
class TestValidity:

    async def test_fresh_cache_is_not_refetched(self, cache, exchange):
        await cache.ensure_fresh(["BTCUSDT"])
        await cache.ensure_fresh(["BTCUSDT", "ETHUSDT"])
        assert exchange.price_calls() == 1
        assert cache.is_valid(["BTCUSDT"])

    async def test_ttl_expiry(self, cache, exchange, clock):
        await cache.preload_all()
        clock.advance(2.5)
        assert cache.is_valid()
        clock.advance(0.5)
        assert not cache.is_valid()

        await cache.ensure_fresh([])
        assert exchange.price_calls() == 2

    async def test_missing_symbol_forces_refresh(self, cache, exchange):
        await cache.preload_all()
        await cache.ensure_fresh(["DOGEUSDT"])
        assert exchange.price_calls() == 2
        assert cache.get_price("DOGEUSDT") is None

    async def test_empty_cache_is_invalid(self, cache):
        assert not cache.is_valid()

    async def test_replacement_is_atomic(self, cache, exchange, clock):
        await cache.preload_all()
        exchange.prices = {"SOLUSDT": "150"}
        clock.advance(5)
        await cache.preload_all()
        assert cache.snapshot() == {"SOLUSDT": 150.0}


@pytest.mark.deterministic
class TestFailure:

    async def test_failure_keeps_stale_prices_and_allows_retry(self, cache, exchange, clock):
        await cache.preload_all()
        exchange.status["/ticker/price"] = 500
        clock.advance(5)

        with pytest.raises(HTTPStatusError):
            await cache.preload_all()
        assert cache.get_price("BTCUSDT") == 65000.5
        assert not cache.refreshing
        assert cache.get_statistics()["errors"] == 1

        del exchange.status["/ticker/price"]
        await cache.preload_all()
        assert exchange.price_calls() == 3

    async def test_guard_skips_network(self, cache, exchange, guard):
        guard.enter()
        await cache.ensure_fresh(["BTCUSDT"])
        await cache.preload_all(force=True)
        assert exchange.price_calls() == 0
        assert cache.get_price("BTCUSDT") is None
