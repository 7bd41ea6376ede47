"""
Favorite position schema.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator


class Side(str, Enum):
    BUY = "BUY"
    SELL = "SELL"

    @classmethod
    def parse(cls, value: Any) -> "Side":
        """Case-insensitive; anything that is not SELL counts as BUY."""
        if isinstance(value, cls):
            return value
        return cls.SELL if str(value or "").strip().upper() == "SELL" else cls.BUY


class FavoritePosition(BaseModel):
    """Tracked position; persisted as part of the full favorites list."""
    symbol: str = Field(pattern=r"^[A-Z0-9]{3,12}$")
    quantity: float = Field(default=0.0, ge=0)
    side: Side = Side.BUY
    reference_price: float = Field(default=0.0, ge=0)

    @field_validator("side", mode="before")
    @classmethod
    def _coerce_side(cls, value: Any) -> Side:
        return Side.parse(value)
