"""
Dashboard controller.

Owns every service for the life of the process, runs the strictly
sequential refresh cycle and exposes the command table used by the HTTP
surface and the CLI.
"""

import asyncio
import inspect
import logging
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence

import httpx

from pricewatch.config import Settings, settings
from pricewatch.errors import PriceWatchError, SuspendedOperationError, ValidationError, sanitize_error_message
from pricewatch.observability.event_log import EventLog
from pricewatch.observability.metrics import SimpleMetrics
from pricewatch.persistence.settings_store import AUTO_KEY, SYMBOL_KEY, SqliteSettingsStore
from pricewatch.protocols import KeyValueStore
from pricewatch.schemas.views import ChartSeries, DashboardView, TickerPanel
from pricewatch.services.auto_refresh import AutoRefreshScheduler
from pricewatch.services.favorites import FavoritesBook, FavoritesEngine, normalize_symbol
from pricewatch.services.market_data import MarketDataService
from pricewatch.services.price_cache import PriceCache
from pricewatch.services.reorder_guard import ReorderGuard
from pricewatch.services.request_coordinator import RequestCoordinator
from pricewatch.util.async_tools import SystemClock, TaskSupervisor, system_clock
from pricewatch.util.formatting import format_number, format_percent, format_signed, format_timestamp

logger = logging.getLogger(__name__)

CHART_WIDTH = 500
CHART_HEIGHT = 100
CHART_PAD = 6

ViewListener = Callable[[DashboardView], None]


def build_ticker_panel(symbol: str, price: Optional[float], stats) -> TickerPanel:
    pct = stats.price_change_percent
    return TickerPanel(
        symbol=symbol,
        price=format_number(price),
        change=f"{format_signed(stats.price_change, 0, 8)} ({format_percent(pct)}%)",
        change_class="text-good" if pct >= 0 else "text-danger",
        high=format_number(stats.high_price),
        low=format_number(stats.low_price),
        volume=format_number(stats.volume, 0, 2),
        updated=format_timestamp(stats.close_time),
    )


def build_chart(closes: Sequence[float], width: int = CHART_WIDTH, height: int = CHART_HEIGHT,
                pad: int = CHART_PAD) -> ChartSeries:
    """Sparkline points scaled into a ``width`` x ``height`` box, y growing downwards."""
    if not closes:
        return ChartSeries()
    low, high = min(closes), max(closes)
    span = (high - low) or 1
    steps = max(len(closes) - 1, 1)

    points = [
        (round(i / steps * (width - pad * 2) + pad, 1),
         round(height - (v - low) / span * (height - pad * 2) - pad, 1))
        for i, v in enumerate(closes)
    ]
    last = closes[-1]
    prev = closes[-2] if len(closes) > 1 else last
    return ChartSeries(closes=list(closes), low=low, high=high, rising=last >= prev, points=points)


class DashboardController:
    """Single owner of the watch engine's services and state."""

    def __init__(self, *, config: Settings, store: KeyValueStore, event_log: EventLog,
                 coordinator: RequestCoordinator, market_data: MarketDataService, price_cache: PriceCache,
                 favorites: FavoritesBook, engine: FavoritesEngine, guard: ReorderGuard,
                 metrics: SimpleMetrics, clock: SystemClock = system_clock):
        self.config = config
        self.store = store
        self.log = event_log
        self.coordinator = coordinator
        self.market_data = market_data
        self.price_cache = price_cache
        self.favorites = favorites
        self.engine = engine
        self.guard = guard
        self.metrics = metrics
        self.clock = clock

        self.scheduler = AutoRefreshScheduler(
            self.refresh_cycle, event_log, store=store, guard=guard,
            cycle_seconds=config.AUTO_REFRESH_SECONDS, tick_ms=config.AUTO_TICK_MS,
            recheck_ms=config.AUTO_RECHECK_MS,
        )
        self.scheduler.subscribe(lambda _: self._notify())
        self.supervisor = TaskSupervisor("dashboard")

        self.symbol = config.DEFAULT_SYMBOL
        self.ticker: Optional[TickerPanel] = None
        self.chart: Optional[ChartSeries] = None
        self._loading = False
        self._running = False
        self._listeners: List[ViewListener] = []

        self._commands: Dict[str, Callable[..., Any]] = {
            "set_symbol": self.set_symbol,
            "apply_symbol": self.apply_symbol,
            "refresh": self.refresh,
            "set_auto_refresh": self.set_auto_refresh,
            "add_favorite": self.add_favorite,
            "remove_favorite": self.remove_favorite,
            "clear_favorites": self.clear_favorites,
            "edit_favorite": self.edit_favorite,
            "begin_reorder": self.begin_reorder,
            "end_reorder": self.end_reorder,
            "set_log_level": self.log.set_level_filter,
            "set_log_query": self.log.set_query,
            "set_log_source": self.log.set_source_filter,
            "set_log_symbol": self.log.set_symbol_filter,
            "clear_log": self.log.clear,
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Boot: restore persisted settings, start the scheduler, refresh once."""
        self._running = True
        self.log.info("Application loaded")

        saved = self.store.get(SYMBOL_KEY, self.config.DEFAULT_SYMBOL)
        try:
            self.set_symbol(saved)
        except ValidationError:
            logger.warning(f"Stored symbol {saved!r} is invalid, using {self.config.DEFAULT_SYMBOL}")
            self.set_symbol(self.config.DEFAULT_SYMBOL)

        self.favorites.load()
        self.engine.recompute(self.favorites.positions)

        self.scheduler.set_enabled(bool(self.store.get(AUTO_KEY, False)))
        await self.scheduler.start()
        await self.scheduler.run_now()

    async def stop(self) -> None:
        self._running = False
        await self.scheduler.stop()
        self.coordinator.cancel_inflight()
        await self.supervisor.shutdown()
        await self.coordinator.aclose()
        logger.info("Dashboard controller stopped")

    # ------------------------------------------------------------------
    # Refresh cycle
    # ------------------------------------------------------------------

    async def refresh_cycle(self) -> bool:
        """
        price-ensure -> ticker -> delay -> chart -> favorites, strictly in order.

        A failing stage skips the rest and leaves the previous ticker, chart
        and favorites in place. A reorder that starts mid-cycle ends it quietly.
        Returns True when every stage completed.
        """
        if self._loading:
            return False
        self._loading = True
        t0 = self.clock.monotonic()
        outcome = "error"

        span = self.log.begin("refresh", "Refresh", {"symbol": self.symbol})
        if self.coordinator.cancel_inflight():
            # a cancelled price refresh must not be shared with this cycle
            self.price_cache.abandon_pending()
        try:
            await self.price_cache.ensure_fresh([self.symbol, *self.favorites.symbols])
            await self._load_ticker()
            await asyncio.sleep(self.config.STAGE_DELAY_MS / 1000)
            await self._load_chart()
            await self.engine.refresh(self.favorites.positions, [self.symbol])
            span.end(True)
            outcome = "success"
        except SuspendedOperationError:
            span.end(True, {"outcome": "skipped", "no_status": True})
            outcome = "skipped"
        except PriceWatchError as e:
            span.end(False, {"error": sanitize_error_message(e.message), "code": e.error_code})
        except asyncio.CancelledError:
            span.end(False, {"reason": "cancelled", "no_status": True})
            raise
        except Exception as e:
            span.end(False, {"error": sanitize_error_message(e)})
            raise
        finally:
            self._loading = False
            self.metrics.record_refresh_cycle(outcome, (self.clock.monotonic() - t0) * 1000)
            self._notify()
        return outcome == "success"

    async def _load_ticker(self) -> None:
        symbol = self.symbol
        stats = await self.market_data.fetch_ticker(symbol)
        self.ticker = build_ticker_panel(symbol, self.price_cache.get_price(symbol), stats)
        self.metrics.set_gauge("ticker_price_change_percent", stats.price_change_percent, {"symbol": symbol})

    async def _load_chart(self) -> None:
        closes = await self.market_data.fetch_closes(self.symbol, self.config.CHART_INTERVAL, self.config.CHART_LIMIT)
        self.chart = build_chart(closes)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def dispatch(self, name: str, **payload: Any) -> DashboardView:
        """Run one named command and return the resulting view."""
        handler = self._commands.get(name)
        if handler is None:
            raise ValidationError(f"Unknown command: {name}", {"commands": sorted(self._commands)})
        try:
            inspect.signature(handler).bind(**payload)
        except TypeError as e:
            raise ValidationError(f"Invalid arguments for {name}", {"reason": str(e)})

        result = handler(**payload)
        if inspect.isawaitable(result):
            await result
        self._notify()
        return self.view()

    @property
    def commands(self) -> List[str]:
        return sorted(self._commands)

    def set_symbol(self, symbol: Any) -> str:
        self.symbol = normalize_symbol(symbol)
        self.store.set(SYMBOL_KEY, self.symbol)
        self.log.event(type="ui", action="update", message=f"Symbol changed: {self.symbol}",
                       meta={"symbol": self.symbol})
        return self.symbol

    async def apply_symbol(self, symbol: Any) -> bool:
        self.set_symbol(symbol)
        return await self.refresh()

    async def refresh(self) -> bool:
        """Manual refresh; False when a cycle is already running."""
        return await self.scheduler.run_now()

    def set_auto_refresh(self, enabled: Any) -> None:
        self.scheduler.set_enabled(bool(enabled))

    def add_favorite(self, symbol: Any, quantity: Any = 0, side: Any = "BUY", reference_price: Any = 0) -> None:
        self.favorites.add(symbol, quantity, side, reference_price)
        self._favorites_changed()

    def remove_favorite(self, index: int) -> None:
        self.favorites.remove(index)
        self._favorites_changed()

    def clear_favorites(self) -> None:
        self.favorites.clear()
        self._favorites_changed()

    def edit_favorite(self, index: int, field: str, value: Any) -> None:
        if self.guard.active:
            logger.debug("Edit ignored while reordering")
            return
        self.favorites.edit(index, field, value)
        self._favorites_changed()

    def begin_reorder(self) -> None:
        """Enter exclusive reorder mode; in-flight requests are aborted."""
        self.guard.enter()
        self.coordinator.cancel_inflight()

    def end_reorder(self, order: Optional[Sequence[int]] = None) -> None:
        """Leave reorder mode, applying ``order`` unless the gesture was abandoned."""
        try:
            if order is not None:
                self.favorites.reorder(order)
        finally:
            self.guard.exit()
            self._favorites_changed()
            self.scheduler.resume()

    @contextmanager
    def reorder_session(self) -> Iterator[List[int]]:
        """
        Exclusive reorder as a block. Yields the current index order as a
        list; rearrange it in place and it is applied on normal exit. On an
        exception the gesture is abandoned. The flag is cleared either way.
        """
        self.begin_reorder()
        order = list(range(len(self.favorites)))
        try:
            yield order
        except BaseException:
            self.end_reorder(None)
            raise
        self.end_reorder(order)

    def _favorites_changed(self) -> None:
        """Recompute from cached prices now; fetch missing prices in the background."""
        self.engine.recompute(self.favorites.positions)
        self.metrics.set_gauge("favorites_count", len(self.favorites))
        if self._running and not self.guard.active:
            self.supervisor.spawn(self._refresh_favorites(), name="favorites-refresh")

    async def _refresh_favorites(self) -> None:
        try:
            await self.engine.refresh(self.favorites.positions, [self.symbol])
        except SuspendedOperationError:
            return
        except PriceWatchError as e:
            logger.warning(f"Favorites refresh failed: {e.message}")
            return
        self._notify()

    # ------------------------------------------------------------------
    # View
    # ------------------------------------------------------------------

    def view(self) -> DashboardView:
        return DashboardView(
            symbol=self.symbol,
            status=self.log.status,
            auto_enabled=self.scheduler.enabled,
            auto_label=self.scheduler.label,
            auto_phase=self.scheduler.phase.value,
            ticker=self.ticker,
            chart=self.chart,
            favorites=self.engine.snapshot,
            favorites_count=f"{len(self.favorites)}/{self.favorites.limit}",
            favorites_add_disabled=self.favorites.full,
            reordering=self.guard.active,
            logs=[rec.to_dict() for rec in self.log.visible()],
        )

    def subscribe(self, listener: ViewListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        if not self._listeners:
            return
        current = self.view()
        for listener in list(self._listeners):
            try:
                listener(current)
            except Exception as e:
                logger.error(f"View listener failed: {e}")


def build_controller(config: Settings = settings, store: Optional[KeyValueStore] = None,
                     client: Optional[httpx.AsyncClient] = None,
                     clock: Optional[SystemClock] = None) -> DashboardController:
    """Construct every service once and wire them into a controller."""
    clock = clock or system_clock
    if store is None:
        store = SqliteSettingsStore(config.SETTINGS_DB)

    event_log = EventLog(capacity=config.LOG_CAPACITY, clock=clock, status_width=config.STATUS_MAX,
                         dedupe_ttl_ms=config.DEDUPE_TTL_MS)
    guard = ReorderGuard()
    metrics = SimpleMetrics()
    coordinator = RequestCoordinator(
        event_log, client=client, guard=guard, timeout_ms=config.REQUEST_TIMEOUT_MS,
        small_response_max_items=config.SMALL_RESPONSE_MAX_ITEMS, error_dedupe_ms=config.DEDUPE_TTL_MS,
        metrics=metrics,
    )
    market_data = MarketDataService(coordinator, config.endpoints)
    price_cache = PriceCache(market_data, ttl_ms=config.PRICE_TTL_MS, guard=guard, clock=clock, metrics=metrics)
    favorites = FavoritesBook(store, event_log, limit=config.FAVORITES_LIMIT)
    engine = FavoritesEngine(price_cache, event_log, guard=guard, jump_threshold=config.PNL_JUMP_THRESHOLD)

    return DashboardController(
        config=config, store=store, event_log=event_log, coordinator=coordinator, market_data=market_data,
        price_cache=price_cache, favorites=favorites, engine=engine, guard=guard, metrics=metrics, clock=clock,
    )
