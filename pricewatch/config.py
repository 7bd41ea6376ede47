# pricewatch/config.py
from dotenv import load_dotenv, find_dotenv
import os
import logging
from typing import Dict

from pricewatch.errors import ConfigurationError

# Load nearest .env from project tree, don't override existing process env
load_dotenv(find_dotenv(usecwd=True), override=False)

logger = logging.getLogger(__name__)


def _int_env(name: str, default: int, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer", details={"value": raw})
    if value < minimum:
        raise ConfigurationError(f"{name} must be >= {minimum}", details={"value": value})
    return value


def _float_env(name: str, default: float, minimum: float = 0.0) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw.strip())
    except ValueError:
        raise ConfigurationError(f"{name} must be a number", details={"value": raw})
    if value < minimum:
        raise ConfigurationError(f"{name} must be >= {minimum}", details={"value": value})
    return value


class Settings:
    """Unified configuration with deprecation mapping."""

    def __init__(self):
        # Exchange REST API
        self.API_BASE = (os.getenv("PW_API_BASE") or os.getenv("BINANCE_API_BASE")
                         or "https://api.binance.com").strip().rstrip("/")
        self.DEFAULT_SYMBOL = (os.getenv("PW_DEFAULT_SYMBOL") or "BTCUSDT").strip().upper()

        # Request coordinator
        self.REQUEST_TIMEOUT_MS = _int_env("PW_REQUEST_TIMEOUT_MS", 8000, minimum=1)
        self.SMALL_RESPONSE_MAX_ITEMS = _int_env("PW_SMALL_RESPONSE_MAX_ITEMS", 50)

        # Price cache
        self.PRICE_TTL_MS = _int_env("PW_PRICE_TTL_MS", 3000, minimum=1)

        # Event log
        self.LOG_CAPACITY = _int_env("PW_LOG_CAPACITY", 2000, minimum=1)
        self.DEDUPE_TTL_MS = _int_env("PW_DEDUPE_TTL_MS", 10000)
        self.STATUS_MAX = _int_env("PW_STATUS_MAX", 48, minimum=2)

        # Auto refresh
        self.AUTO_REFRESH_SECONDS = _int_env("PW_AUTO_REFRESH_SECONDS", 5, minimum=1)
        self.AUTO_TICK_MS = _int_env("PW_AUTO_TICK_MS", 1000, minimum=1)
        self.AUTO_RECHECK_MS = _int_env("PW_AUTO_RECHECK_MS", 250, minimum=1)

        # Favorites
        self.FAVORITES_LIMIT = _int_env("PW_FAVORITES_LIMIT", 4, minimum=1)
        self.PNL_JUMP_THRESHOLD = _float_env("PW_PNL_JUMP_THRESHOLD", 100.0)

        # Refresh cycle
        self.CHART_INTERVAL = (os.getenv("PW_CHART_INTERVAL") or "1m").strip()
        self.CHART_LIMIT = _int_env("PW_CHART_LIMIT", 60, minimum=2)
        self.STAGE_DELAY_MS = _int_env("PW_STAGE_DELAY_MS", 120)

        # Storage and logs
        self.SETTINGS_DB = (os.getenv("PW_SETTINGS_DB") or "data/pricewatch.db").strip()
        self.LOG_DIR = (os.getenv("PW_LOG_DIR") or ".run").strip()
        self.LOG_LEVEL = (os.getenv("PW_LOG_LEVEL") or "INFO").strip().upper()

        # Check for deprecated env vars
        if os.getenv("BINANCE_API_BASE"):
            logger.warning("DEPRECATED: BINANCE_API_BASE is deprecated, use PW_API_BASE instead")

    @property
    def endpoints(self) -> Dict[str, str]:
        """Endpoint URLs derived from API_BASE."""
        return api_endpoints(self.API_BASE)


settings = Settings()


def api_endpoints(base: str) -> Dict[str, str]:
    """Get the price table, 24h ticker and kline URLs for the given API base."""
    root = (base or "https://api.binance.com").rstrip("/")
    return {
        "prices": f"{root}/api/v3/ticker/price",
        "ticker_24h": f"{root}/api/v3/ticker/24hr",
        "klines": f"{root}/api/v3/klines",
    }
