"""
Pytest Configuration
Deterministic clock, in-memory settings, event log and a scripted
exchange behind httpx.MockTransport.
"""

import asyncio
import os
import random
from collections import Counter
from typing import Any, Dict, List, Optional

import httpx
import pytest

from pricewatch.config import Settings
from pricewatch.observability.event_log import EventLog
from pricewatch.persistence.settings_store import MemorySettingsStore
from pricewatch.util.async_tools import DeterministicClock

# Set deterministic seed for all tests (correlation id suffixes)
RNG_SEED = int(os.getenv("RNG_SEED", "1337"))
random.seed(RNG_SEED)

START_TIME = 1_700_000_000.0

TICKER_24H = {
    "symbol": "BTCUSDT",
    "priceChange": "120.5",
    "priceChangePercent": "0.19",
    "highPrice": "66000",
    "lowPrice": "64000",
    "volume": "1000",
    "closeTime": 1700000000000,
}


def kline(close: float) -> List[Any]:
    return [1700000000000, "0", "0", "0", str(close), "0", 1700000059999, "0", 0, "0", "0", "0"]


class FakeExchange:
    """Scripted price table, 24h ticker and klines endpoints."""

    def __init__(self):
        self.prices: Dict[str, str] = {"BTCUSDT": "65000.50", "ETHUSDT": "3500.00"}
        self.ticker: Dict[str, Any] = dict(TICKER_24H)
        self.closes: List[float] = [64800.0, 64900.0, 64850.0, 65000.5]
        self.status: Dict[str, int] = {}  # path suffix -> forced status
        self.gate: Optional[asyncio.Event] = None
        self.error: Optional[Exception] = None
        self.calls: Counter = Counter()
        self.paths: List[str] = []

    async def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.calls[path] += 1
        self.paths.append(path)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        for suffix, code in self.status.items():
            if path.endswith(suffix):
                return httpx.Response(code, json={"code": -1, "msg": "forced"})
        if path.endswith("/ticker/price"):
            return httpx.Response(200, json=[{"symbol": s, "price": p} for s, p in self.prices.items()])
        if path.endswith("/ticker/24hr"):
            return httpx.Response(200, json=self.ticker)
        if path.endswith("/klines"):
            return httpx.Response(200, json=[kline(c) for c in self.closes])
        return httpx.Response(404, json={"code": -1100})

    def price_calls(self) -> int:
        return self.calls["/api/v3/ticker/price"]

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def clock() -> DeterministicClock:
    """Frozen clock; advance explicitly."""
    return DeterministicClock(start_time=START_TIME)


@pytest.fixture
def store() -> MemorySettingsStore:
    return MemorySettingsStore()


@pytest.fixture
def event_log(clock) -> EventLog:
    return EventLog(clock=clock)


@pytest.fixture
def exchange() -> FakeExchange:
    return FakeExchange()


@pytest.fixture
def config(monkeypatch) -> Settings:
    """Default settings with no inter-stage delay."""
    for key in ("PW_API_BASE", "BINANCE_API_BASE", "PW_DEFAULT_SYMBOL"):
        monkeypatch.delenv(key, raising=False)
    cfg = Settings()
    cfg.STAGE_DELAY_MS = 0
    return cfg


@pytest.fixture
def wait_until():
    """Poll a predicate on the running loop until it holds."""

    async def _wait(predicate, timeout: float = 1.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not reached in time")
            await asyncio.sleep(0.005)

    return _wait


def pytest_collection_modifyitems(config, items):
    """Mark deterministic tests."""
    for item in items:
        if "deterministic" in item.name:
            item.add_marker(pytest.mark.deterministic)
