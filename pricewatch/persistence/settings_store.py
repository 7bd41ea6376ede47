"""
Settings persistence.
SQLite key/value table with JSON values; every failure degrades to the
caller's default instead of raising.
"""

import json
import logging
import os
import sqlite3
from contextlib import closing
from datetime import datetime, timezone
from typing import Any, Dict

logger = logging.getLogger(__name__)

SYMBOL_KEY = "lastSymbol.v1"
AUTO_KEY = "auto.v1"
FAVORITES_KEY = "favCoins.v2"

SCHEMA = """
    CREATE TABLE IF NOT EXISTS settings (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
"""


class SqliteSettingsStore:
    """Best-effort settings store backed by a single SQLite table."""

    def __init__(self, db_path: str = "data/pricewatch.db"):
        self.db_path = db_path
        self.ready = self._init_db()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path, timeout=1.0)

    def _init_db(self) -> bool:
        """Create the settings table if missing (idempotent)."""
        try:
            directory = os.path.dirname(self.db_path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            with closing(self._connect()) as conn, conn:
                conn.execute(SCHEMA)
            logger.info(f"Settings store initialized: {self.db_path}")
            return True
        except (sqlite3.Error, OSError) as e:
            logger.error(f"Failed to initialize settings store: {e}")
            return False

    def get(self, key: str, default: Any = None) -> Any:
        try:
            with closing(self._connect()) as conn, conn:
                row = conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
        except sqlite3.Error as e:
            logger.warning(f"Settings read failed for {key}: {e}")
            return default
        if row is None:
            return default
        try:
            return json.loads(row[0])
        except (TypeError, ValueError) as e:
            logger.warning(f"Settings value for {key} is not valid JSON: {e}")
            return default

    def set(self, key: str, value: Any) -> bool:
        try:
            payload = json.dumps(value)
            with closing(self._connect()) as conn, conn:
                conn.execute(
                    "INSERT INTO settings (key, value, updated_at) VALUES (?, ?, ?) "
                    "ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at",
                    (key, payload, datetime.now(timezone.utc).isoformat()),
                )
            return True
        except (sqlite3.Error, OSError, TypeError, ValueError) as e:
            logger.error(f"Settings write failed for {key}: {e}")
            return False

    def check_health(self) -> Dict[str, Any]:
        """Check store health and return status."""
        if not os.path.exists(self.db_path):
            return {"status": "missing", "path": self.db_path}
        try:
            with closing(self._connect()) as conn, conn:
                tables = [r[0] for r in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")]
        except sqlite3.Error as e:
            return {"status": "error", "error": str(e)}
        if "settings" not in tables:
            return {"status": "incomplete", "missing_tables": ["settings"]}
        return {"status": "healthy", "path": self.db_path}


class MemorySettingsStore:
    """In-process settings store (tests, headless runs)."""

    def __init__(self, initial: Dict[str, Any] = None):
        # values are kept JSON-encoded so reads never alias caller objects
        self._data: Dict[str, str] = {k: json.dumps(v) for k, v in (initial or {}).items()}

    def get(self, key: str, default: Any = None) -> Any:
        raw = self._data.get(key)
        if raw is None:
            return default
        return json.loads(raw)

    def set(self, key: str, value: Any) -> bool:
        try:
            self._data[key] = json.dumps(value)
            return True
        except (TypeError, ValueError) as e:
            logger.error(f"Settings write failed for {key}: {e}")
            return False

    def check_health(self) -> Dict[str, Any]:
        return {"status": "healthy", "path": ":memory:"}
