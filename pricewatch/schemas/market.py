"""
Exchange payload schemas using Pydantic for validation and coercion.
"""

from pydantic import BaseModel, ConfigDict, Field


class PriceEntry(BaseModel):
    """One row of the price table endpoint."""
    symbol: str
    price: float  # numeric string on the wire


class Ticker24h(BaseModel):
    """24-hour rolling ticker statistics."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    price_change: float = Field(alias="priceChange")
    price_change_percent: float = Field(alias="priceChangePercent")
    high_price: float = Field(alias="highPrice")
    low_price: float = Field(alias="lowPrice")
    volume: float
    close_time: int = Field(alias="closeTime")  # ms epoch
