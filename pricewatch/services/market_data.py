"""
Exchange market data endpoints: price table, 24h ticker and klines.
"""

import logging
from typing import Dict, List

from pydantic import TypeAdapter, ValidationError as PydanticValidationError

from pricewatch.config import api_endpoints
from pricewatch.errors import ResponseShapeError
from pricewatch.schemas.market import PriceEntry, Ticker24h
from pricewatch.services.request_coordinator import RequestCoordinator

logger = logging.getLogger(__name__)

_PRICE_TABLE = TypeAdapter(List[PriceEntry])
CLOSE_INDEX = 4  # fifth element of a kline tuple


class MarketDataService:
    """Typed access to the exchange REST endpoints through the coordinator."""

    def __init__(self, coordinator: RequestCoordinator, endpoints: Dict[str, str] = None):
        self.coordinator = coordinator
        self.endpoints = endpoints or api_endpoints("https://api.binance.com")

    async def fetch_price_table(self) -> Dict[str, float]:
        """Full symbol -> price table; never requested per symbol."""
        payload = await self.coordinator.fetch_json(self.endpoints["prices"])
        try:
            rows = _PRICE_TABLE.validate_python(payload)
        except PydanticValidationError as e:
            raise ResponseShapeError("Unexpected price table shape", {"errors": e.error_count()})
        return {row.symbol: row.price for row in rows}

    async def fetch_ticker(self, symbol: str) -> Ticker24h:
        payload = await self.coordinator.fetch_json(self.endpoints["ticker_24h"], params={"symbol": symbol})
        try:
            return Ticker24h.model_validate(payload)
        except PydanticValidationError as e:
            raise ResponseShapeError("Unexpected ticker shape", {"symbol": symbol, "errors": e.error_count()})

    async def fetch_closes(self, symbol: str, interval: str = "1m", limit: int = 60) -> List[float]:
        """Closing prices, oldest first."""
        payload = await self.coordinator.fetch_json(
            self.endpoints["klines"], params={"symbol": symbol, "interval": interval, "limit": limit}
        )
        if not isinstance(payload, list):
            raise ResponseShapeError("Unexpected klines shape", {"symbol": symbol})
        try:
            return [float(kline[CLOSE_INDEX]) for kline in payload]
        except (TypeError, ValueError, IndexError):
            raise ResponseShapeError("Unexpected kline tuple", {"symbol": symbol})
