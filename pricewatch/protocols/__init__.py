"""
Protocols
Lightweight Protocols for interface clarity and decoupling.
"""

from .storage import KeyValueStore
from .price_source import PriceSource

__all__ = [
    "KeyValueStore",
    "PriceSource",
]
