"""
PriceWatch - ticker watch engine.

Event log, TTL price cache, auto-refresh scheduler and favorites P&L,
driven from a single asyncio loop.
"""

__version__ = "0.3.0"
