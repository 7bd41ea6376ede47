"""
Market Data Tests
Payload parsing and shape errors for the three exchange endpoints.
"""

import pytest

from pricewatch.config import api_endpoints
from pricewatch.errors import NetworkError, ResponseShapeError
from pricewatch.services.market_data import MarketDataService
from pricewatch.services.request_coordinator import RequestCoordinator


@pytest.fixture
async def market(event_log, exchange):
    coordinator = RequestCoordinator(event_log, client=exchange.client())
    yield MarketDataService(coordinator, api_endpoints("https://api.binance.com"))
    await coordinator.client.aclose()


async def test_price_table_coerces_strings(market):
    assert await market.fetch_price_table() == {"BTCUSDT": 65000.5, "ETHUSDT": 3500.0}


async def test_ticker_aliases(market):
    ticker = await market.fetch_ticker("BTCUSDT")
    assert ticker.price_change == 120.5
    assert ticker.price_change_percent == 0.19
    assert ticker.close_time == 1700000000000


async def test_closes_use_fifth_field(market, exchange):
    assert await market.fetch_closes("BTCUSDT", "1m", 4) == exchange.closes


async def test_bad_price_table_shape(market, exchange):
    exchange.prices = {"BTCUSDT": "not-a-number"}
    with pytest.raises(ResponseShapeError):
        await market.fetch_price_table()


async def test_bad_ticker_shape(market, exchange):
    exchange.ticker = {"symbol": "BTCUSDT"}
    with pytest.raises(NetworkError):
        await market.fetch_ticker("BTCUSDT")
