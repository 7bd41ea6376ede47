"""
View models handed to the presentation layer. Read-only snapshots; the
presentation layer mutates state only through dashboard commands.
"""

from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from pricewatch.util.formatting import DISPLAY_FALLBACK


class TickerPanel(BaseModel):
    """Main symbol panel."""
    symbol: str
    price: str = DISPLAY_FALLBACK
    change: str = DISPLAY_FALLBACK
    change_class: str = ""
    high: str = DISPLAY_FALLBACK
    low: str = DISPLAY_FALLBACK
    volume: str = DISPLAY_FALLBACK
    updated: str = DISPLAY_FALLBACK


class ChartSeries(BaseModel):
    """Closing prices plus normalised polyline points for a sparkline."""
    closes: List[float] = Field(default_factory=list)
    low: Optional[float] = None
    high: Optional[float] = None
    rising: bool = True
    points: List[Tuple[float, float]] = Field(default_factory=list)


class PositionView(BaseModel):
    """Computed fields of one favorite position."""
    index: int
    symbol: str
    side: str
    quantity: float
    reference_price: float
    price: Optional[float] = None
    deviation: Optional[float] = None
    pnl: Optional[float] = None
    market_value: float = 0.0
    reference_value: float = 0.0
    price_text: str = DISPLAY_FALLBACK
    deviation_text: str = DISPLAY_FALLBACK
    deviation_class: str = ""
    pnl_text: str = DISPLAY_FALLBACK
    pnl_class: str = ""
    market_value_text: str = DISPLAY_FALLBACK


class FavoritesTotals(BaseModel):
    """Aggregates across all positions."""
    market_value: float = 0.0
    reference_value: float = 0.0
    pnl: float = 0.0
    has_reference: bool = False
    market_value_text: str = DISPLAY_FALLBACK
    reference_value_text: str = DISPLAY_FALLBACK
    pnl_text: str = DISPLAY_FALLBACK
    pnl_class: str = ""


class FavoritesSnapshot(BaseModel):
    rows: List[PositionView] = Field(default_factory=list)
    totals: FavoritesTotals = Field(default_factory=FavoritesTotals)


class DashboardView(BaseModel):
    """Everything the presentation layer needs to draw one frame."""
    symbol: str
    status: str
    auto_enabled: bool
    auto_label: str
    auto_phase: str
    ticker: Optional[TickerPanel] = None
    chart: Optional[ChartSeries] = None
    favorites: FavoritesSnapshot = Field(default_factory=FavoritesSnapshot)
    favorites_count: str
    favorites_add_disabled: bool
    reordering: bool = False
    logs: List[Dict[str, Any]] = Field(default_factory=list)
