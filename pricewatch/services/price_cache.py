"""
TTL price cache with single-flight refresh.

The whole symbol -> price table is refreshed at once and shares one
``last_refreshed`` stamp. Concurrent callers during a refresh await the same
task, so N callers cause exactly one outbound request.
"""

import asyncio
import logging
from typing import Any, Dict, Iterable, Optional

from pricewatch.observability.metrics import SimpleMetrics
from pricewatch.services.market_data import MarketDataService
from pricewatch.services.reorder_guard import ReorderGuard
from pricewatch.util.async_tools import SystemClock, system_clock

logger = logging.getLogger(__name__)

DEFAULT_TTL_MS = 3000
UNKNOWN_PRICE = None


def _retrieve_outcome(task: asyncio.Task) -> None:
    # every waiter may have been cancelled; mark the outcome as seen
    if not task.cancelled():
        task.exception()


class PriceCache:
    """Symbol -> price map refreshed as a whole from the price table endpoint."""

    def __init__(self, market_data: MarketDataService, ttl_ms: int = DEFAULT_TTL_MS,
                 guard: Optional[ReorderGuard] = None, clock: Optional[SystemClock] = None,
                 metrics: Optional[SimpleMetrics] = None):
        self.market_data = market_data
        self.ttl_ms = ttl_ms
        self.guard = guard if guard is not None else ReorderGuard()
        self.clock = clock or system_clock
        self.metrics = metrics

        self._prices: Dict[str, float] = {}
        self._last_refreshed_ms: float = 0.0
        self._pending: Optional[asyncio.Task] = None
        self._stats = {
            "requests": 0,
            "coalesced": 0,
            "fetches": 0,
            "errors": 0,
        }

    # ------------------------------------------------------------------
    # Validity
    # ------------------------------------------------------------------

    @property
    def last_refreshed_ms(self) -> float:
        return self._last_refreshed_ms

    def _fresh(self) -> bool:
        return self.clock.time() * 1000 - self._last_refreshed_ms < self.ttl_ms

    def is_valid(self, symbols: Iterable[str] = ()) -> bool:
        """Within TTL, non-empty and containing every requested symbol."""
        return self._fresh() and bool(self._prices) and all(s in self._prices for s in symbols)

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def ensure_fresh(self, symbols: Iterable[str] = ()) -> None:
        """Refresh when stale or empty, then force once more if a symbol is still missing."""
        needed = list(dict.fromkeys(symbols))
        if self.guard.active:
            return
        if not self._fresh() or not self._prices:
            await self.preload_all()
        if any(s not in self._prices for s in needed):
            await self.preload_all(force=True)

    async def preload_all(self, force: bool = False) -> None:
        """
        Replace the cache from the price table.

        A refresh already in flight is shared by every caller, forced or not.
        On failure the cache keeps its previous contents and the in-flight
        marker is cleared so the next call may retry.
        """
        if not force and self._fresh() and self._prices:
            return
        if self.guard.active:
            return

        self._stats["requests"] += 1
        self._record("request")
        if self._pending is not None and not self._pending.done():
            self._stats["coalesced"] += 1
            self._record("coalesced")
        else:
            self._pending = asyncio.ensure_future(self._refresh())
            self._pending.add_done_callback(_retrieve_outcome)
        # shield: a cancelled waiter must not tear down the shared refresh
        await asyncio.shield(self._pending)

    async def _refresh(self) -> None:
        self._stats["fetches"] += 1
        self._record("fetch")
        try:
            table = await self.market_data.fetch_price_table()
            if self._pending is asyncio.current_task():
                self._prices = table
                self._last_refreshed_ms = self.clock.time() * 1000
                logger.debug(f"Price cache refreshed: {len(table)} symbols")
        except Exception:
            self._stats["errors"] += 1
            self._record("error")
            raise
        finally:
            if self._pending is asyncio.current_task():
                self._pending = None

    def abandon_pending(self) -> bool:
        """
        Detach the in-flight refresh so the next call issues a fresh request.

        Callers already awaiting it still get its outcome, but an abandoned
        refresh never writes the table.
        """
        if self._pending is None or self._pending.done():
            return False
        self._pending = None
        return True

    def _record(self, event: str) -> None:
        if self.metrics is not None:
            self.metrics.record_price_cache(event)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_price(self, symbol: str) -> Optional[float]:
        return self._prices.get(symbol, UNKNOWN_PRICE)

    def snapshot(self) -> Dict[str, float]:
        return dict(self._prices)

    @property
    def refreshing(self) -> bool:
        return self._pending is not None

    def get_statistics(self) -> Dict[str, Any]:
        stats: Dict[str, Any] = dict(self._stats)
        stats["symbols"] = len(self._prices)
        stats["in_flight"] = self.refreshing
        stats["coalesce_rate"] = stats["coalesced"] / stats["requests"] if stats["requests"] else 0.0
        return stats
