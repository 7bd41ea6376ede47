"""
Price Source Protocol
Read side of the price cache as seen by consumers.
"""

from typing import Protocol, Optional, Iterable
from abc import abstractmethod


class PriceSource(Protocol):
    """Protocol for cached price access."""

    @abstractmethod
    def get_price(self, symbol: str) -> Optional[float]:
        """Get cached price for symbol, None when unknown. Never blocks."""
        ...

    @abstractmethod
    async def ensure_fresh(self, symbols: Iterable[str]) -> None:
        """Make sure the requested symbols are cached and within TTL."""
        ...
