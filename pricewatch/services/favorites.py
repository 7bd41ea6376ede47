"""
Favorites: the user's tracked positions and their live P&L.

``FavoritesBook`` owns the capacity-bounded list and persists it on every
mutation. ``FavoritesEngine`` turns positions plus cached prices into view
rows and totals and logs the aggregate P&L with hysteresis.
"""

import logging
import re
from typing import Any, Iterable, List, Optional, Sequence

from pydantic import ValidationError as PydanticValidationError

from pricewatch.errors import ValidationError
from pricewatch.observability.event_log import EventLog
from pricewatch.persistence.settings_store import FAVORITES_KEY
from pricewatch.protocols import KeyValueStore, PriceSource
from pricewatch.schemas.favorites import FavoritePosition, Side
from pricewatch.schemas.views import FavoritesSnapshot, FavoritesTotals, PositionView
from pricewatch.services.reorder_guard import ReorderGuard
from pricewatch.util.formatting import (
    DISPLAY_FALLBACK, format_number, format_signed, format_signed_usd, format_usd, sign_class, to_number,
)

logger = logging.getLogger(__name__)

FAVORITES_LIMIT = 4
PNL_JUMP_THRESHOLD = 100.0
EDITABLE_FIELDS = ("quantity", "reference_price")

SYMBOL_RE = re.compile(r"^[A-Z0-9]{3,12}$")


def normalize_symbol(value: Any) -> str:
    """Upper-case and validate a user-entered symbol."""
    symbol = str(value or "").strip().upper()
    if not symbol:
        raise ValidationError("Symbol is empty")
    if not SYMBOL_RE.match(symbol):
        raise ValidationError("Invalid symbol format", {"symbol": symbol})
    return symbol


def parse_amount(value: Any, label: str) -> float:
    """Non-negative number from user input; blank means zero."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return 0.0
    amount = to_number(value)
    if amount is None:
        raise ValidationError(f"{label} must be numeric", {"value": str(value)})
    if amount < 0:
        raise ValidationError(f"{label} must not be negative", {"value": amount})
    return amount


class FavoritesBook:
    """Ordered, unique, capacity-bounded list of positions."""

    def __init__(self, store: Optional[KeyValueStore], event_log: EventLog, limit: int = FAVORITES_LIMIT):
        self.store = store
        self.log = event_log
        self.limit = limit
        self._positions: List[FavoritePosition] = []

    @property
    def positions(self) -> List[FavoritePosition]:
        return list(self._positions)

    @property
    def symbols(self) -> List[str]:
        return [p.symbol for p in self._positions]

    @property
    def full(self) -> bool:
        return len(self._positions) >= self.limit

    def __len__(self) -> int:
        return len(self._positions)

    def load(self) -> List[FavoritePosition]:
        """Restore from the store; invalid or duplicate entries are skipped."""
        raw = self.store.get(FAVORITES_KEY, []) if self.store is not None else []
        if not isinstance(raw, list):
            logger.warning(f"Ignoring stored favorites of type {type(raw).__name__}")
            raw = []

        loaded: List[FavoritePosition] = []
        for entry in raw:
            if len(loaded) >= self.limit:
                logger.warning(f"Stored favorites exceed limit {self.limit}, truncating")
                break
            try:
                position = FavoritePosition.model_validate(entry)
            except PydanticValidationError as e:
                logger.warning(f"Skipping invalid stored favorite: {e.error_count()} errors")
                continue
            if any(p.symbol == position.symbol for p in loaded):
                logger.warning(f"Skipping duplicate stored favorite {position.symbol}")
                continue
            loaded.append(position)

        self._positions = loaded
        return self.positions

    def _save(self) -> None:
        if self.store is None:
            return
        self.store.set(FAVORITES_KEY, [p.model_dump(mode="json") for p in self._positions])

    def add(self, symbol: Any, quantity: Any = 0, side: Any = Side.BUY, reference_price: Any = 0) -> FavoritePosition:
        symbol = normalize_symbol(symbol)
        qty = parse_amount(quantity, "Quantity")
        ref = parse_amount(reference_price, "Reference price")
        if self.full:
            raise ValidationError(f"Favorites limit reached ({self.limit})", {"limit": self.limit})
        if symbol in self.symbols:
            raise ValidationError("Symbol already in favorites", {"symbol": symbol})

        position = FavoritePosition(symbol=symbol, quantity=qty, side=side, reference_price=ref)
        self._positions.append(position)
        self._save()
        self.log.info(f"Favorite added: {symbol}", {"symbol": symbol})
        return position

    def remove(self, index: int) -> FavoritePosition:
        """Remove by position; later entries shift down by one."""
        self._check_index(index)
        removed = self._positions.pop(index)
        self._save()
        self.log.info(f"Favorite removed: {removed.symbol}", {"symbol": removed.symbol})
        return removed

    def clear(self) -> None:
        self._positions = []
        self._save()
        self.log.info("All favorites cleared")

    def edit(self, index: int, field: str, value: Any) -> FavoritePosition:
        self._check_index(index)
        if field not in EDITABLE_FIELDS:
            raise ValidationError(f"Field {field!r} is not editable", {"fields": list(EDITABLE_FIELDS)})
        label = "Quantity" if field == "quantity" else "Reference price"
        updated = self._positions[index].model_copy(update={field: parse_amount(value, label)})
        self._positions[index] = updated
        self._save()
        return updated

    def reorder(self, order: Sequence[int]) -> List[FavoritePosition]:
        """Apply ``order``, the old indices listed in their new order."""
        order = list(order)
        if sorted(order) != list(range(len(self._positions))):
            raise ValidationError("Order must be a permutation of the current indices", {"order": order})
        self._positions = [self._positions[i] for i in order]
        self._save()
        self.log.info("Favorites order changed")
        return self.positions

    def _check_index(self, index: Any) -> None:
        if not isinstance(index, int) or isinstance(index, bool) or not 0 <= index < len(self._positions):
            raise ValidationError("No favorite at that index", {"index": index})


def _sign(value: float) -> int:
    return (value > 0) - (value < 0)


def pnl_crossed(current: float, previous: float, threshold: float = PNL_JUMP_THRESHOLD) -> bool:
    """Sign differs (zero is its own sign) or the value moved by at least ``threshold``."""
    return _sign(current) != _sign(previous) or abs(current - previous) >= threshold


def position_view(index: int, position: FavoritePosition, price: Optional[float]) -> PositionView:
    qty = position.quantity
    ref = position.reference_price
    known = price is not None

    deviation = price - ref if ref and known else None
    pnl = None
    if ref and qty and known:
        pnl = (price - ref) * qty if position.side is Side.BUY else (ref - price) * qty

    market_value = price * qty if known else 0.0
    return PositionView(
        index=index,
        symbol=position.symbol,
        side=position.side.value,
        quantity=qty,
        reference_price=ref,
        price=price,
        deviation=deviation,
        pnl=pnl,
        market_value=market_value,
        reference_value=ref * qty,
        price_text=format_number(price),
        deviation_text=format_signed(deviation),
        deviation_class=sign_class(deviation),
        pnl_text=format_signed_usd(pnl),
        pnl_class=sign_class(pnl),
        market_value_text=format_usd(market_value),
    )


class FavoritesEngine:
    """Per-position figures, totals and the hysteresis-gated P&L event."""

    def __init__(self, prices: PriceSource, event_log: EventLog, guard: Optional[ReorderGuard] = None,
                 jump_threshold: float = PNL_JUMP_THRESHOLD):
        self.prices = prices
        self.log = event_log
        self.guard = guard if guard is not None else ReorderGuard()
        self.jump_threshold = jump_threshold
        self.last_reported_pnl = 0.0
        self.snapshot = FavoritesSnapshot()

    def compute(self, positions: Sequence[FavoritePosition]) -> FavoritesSnapshot:
        """Pure computation from the current cache contents."""
        rows = [position_view(i, p, self.prices.get_price(p.symbol)) for i, p in enumerate(positions)]
        if not rows:
            return FavoritesSnapshot()

        market = sum(r.market_value for r in rows)
        reference = sum(r.reference_value for r in rows)
        pnl = sum(r.pnl for r in rows if r.pnl is not None)
        has_reference = any(p.reference_price for p in positions)

        totals = FavoritesTotals(
            market_value=market,
            reference_value=reference,
            pnl=pnl,
            has_reference=has_reference,
            market_value_text=format_usd(market),
            reference_value_text=format_usd(reference) if reference > 0 else DISPLAY_FALLBACK,
            pnl_text=format_signed_usd(pnl) if has_reference else DISPLAY_FALLBACK,
            pnl_class=sign_class(pnl) if has_reference else "",
        )
        return FavoritesSnapshot(rows=rows, totals=totals)

    def recompute(self, positions: Sequence[FavoritePosition]) -> FavoritesSnapshot:
        """Recompute from cached prices without touching the network."""
        self.snapshot = self.compute(positions)
        self._maybe_report(self.snapshot.totals)
        return self.snapshot

    async def refresh(self, positions: Sequence[FavoritePosition],
                      extra_symbols: Iterable[str] = ()) -> Optional[FavoritesSnapshot]:
        """
        Make sure prices are fresh for every position, then recompute.
        Returns None (keeping the previous snapshot) while a reorder is active.
        """
        if self.guard.active:
            return None
        need = list(dict.fromkeys([*extra_symbols, *(p.symbol for p in positions)]))
        await self.prices.ensure_fresh(need)
        if self.guard.active:
            return None
        return self.recompute(positions)

    def _maybe_report(self, totals: FavoritesTotals) -> bool:
        if not totals.has_reference or self.guard.active:
            return False
        previous = self.last_reported_pnl
        if not pnl_crossed(totals.pnl, previous, self.jump_threshold):
            return False
        self.log.event(
            type="calc",
            action="update",
            message=f"Total P&L: {format_signed_usd(totals.pnl)}",
            meta={"pnl": totals.pnl, "prev": previous, "market": totals.market_value,
                  "ref": totals.reference_value},
        )
        self.last_reported_pnl = totals.pnl
        return True
