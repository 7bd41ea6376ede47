"""
Event log with correlated spans, dedupe window and a compact status line.

Records are kept in a capacity-bounded FIFO store, filtered for display
without ever being mutated, and mirrored to the stdlib logger
``pricewatch.events``.
"""

import json
import logging
import random
import string
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional, Set

from pricewatch.errors import sanitize_error_message, strip_urls
from pricewatch.util.async_tools import SystemClock, system_clock
from pricewatch.util.formatting import clamp

logger = logging.getLogger(__name__)
events_logger = logging.getLogger("pricewatch.events")

DEFAULT_CAPACITY = 2000
DEFAULT_DEDUPE_TTL_MS = 10000
DEFAULT_STATUS_MAX = 48
DEFAULT_SOURCE = "App"
ALL = "ALL"


class Level(str, Enum):
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"

    @classmethod
    def parse(cls, value: Any) -> "Level":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value or "INFO").strip().upper())
        except ValueError:
            return cls.INFO


_STDLIB_LEVELS = {
    Level.INFO: logging.INFO,
    Level.WARN: logging.WARNING,
    Level.ERROR: logging.ERROR,
}

# Default level per event action
ACTION_LEVELS: Dict[str, Level] = {
    "start": Level.INFO,
    "success": Level.INFO,
    "update": Level.INFO,
    "note": Level.INFO,
    "warn": Level.WARN,
    "error": Level.ERROR,
}

# Status line allow-lists; both must match (conjunctive)
STATUS_TYPES = frozenset({"refresh", "network", "ui", "calc"})
STATUS_ACTIONS = frozenset({"start", "update", "success", "note"})


@dataclass(frozen=True)
class LogRecord:
    """Immutable log entry owned by EventLog."""
    id: int
    timestamp: int  # ms epoch
    level: Level
    message: str
    source: str = DEFAULT_SOURCE
    symbol: Optional[str] = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    @property
    def type(self) -> Optional[str]:
        return self.metadata.get("type")

    @property
    def action(self) -> Optional[str]:
        return self.metadata.get("action")

    @property
    def correlation_id(self) -> Optional[str]:
        return self.metadata.get("corr")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "level": self.level.value,
            "message": self.message,
            "source": self.source,
            "symbol": self.symbol,
            "metadata": dict(self.metadata),
        }


def _meta_blob(metadata: Mapping[str, Any]) -> str:
    try:
        return json.dumps(dict(metadata), default=str, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(dict(metadata))


@dataclass
class LogFilter:
    """Display filter; every field narrows the visible set."""
    level: str = "all"
    query: str = ""
    source: str = ALL
    symbol: str = ALL

    def matches(self, rec: LogRecord) -> bool:
        if self.level.lower() != "all" and rec.level.value.lower() != self.level.lower():
            return False
        if self.source != ALL and (rec.source or DEFAULT_SOURCE) != self.source:
            return False
        if self.symbol != ALL and (rec.symbol or "") != self.symbol:
            return False
        if self.query:
            blob = f"{rec.message} {_meta_blob(rec.metadata)}".lower()
            if self.query.lower() not in blob:
                return False
        return True


def new_correlation_id(kind: str, now_ms: int) -> str:
    """Correlation id of the form ``type-timestamp-random``."""
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=5))
    return f"{kind}-{now_ms}-{suffix}"


class Span:
    """
    Timed, correlated unit of work.

    Emits a ``start`` event on creation, any number of ``step`` events and
    exactly one terminal ``success``/``error`` event via ``end``. Every event
    carries the same ``corr`` id and the elapsed milliseconds as ``dur``.
    """

    def __init__(self, log: "EventLog", kind: str, label: Optional[str], meta: Optional[Dict[str, Any]] = None):
        self._log = log
        self.type = kind
        self.label = label or kind
        self.corr = new_correlation_id(kind, log.clock.now_ms())
        self._t0 = log.clock.monotonic()
        self.ended = False
        log.event(type=kind, action="start", message=label or f"{kind} started",
                  meta={**(meta or {}), "corr": self.corr})

    @property
    def elapsed_ms(self) -> int:
        return int(round((self._log.clock.monotonic() - self._t0) * 1000))

    def step(self, action: str, message: str, extra: Optional[Dict[str, Any]] = None) -> LogRecord:
        return self._log.event(type=self.type, action=action, message=message,
                               meta={"dur": self.elapsed_ms, **(extra or {}), "corr": self.corr})

    def end(self, ok: bool = True, extra: Optional[Dict[str, Any]] = None) -> Optional[LogRecord]:
        if self.ended:
            logger.debug(f"Span {self.corr} already ended, ignoring second end()")
            return None
        self.ended = True
        return self._log.event(
            type=self.type,
            action="success" if ok else "error",
            message=f"{self.label} {'done' if ok else 'failed'}",
            level=Level.INFO if ok else Level.ERROR,
            meta={"dur": self.elapsed_ms, **(extra or {}), "corr": self.corr},
        )

    def __enter__(self) -> "Span":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if not self.ended:
            if exc_val is None:
                self.end(True)
            else:
                self.end(False, {"error": sanitize_error_message(exc_val)})
        return False


Listener = Callable[["EventLog"], None]


class EventLog:
    """Append-only, capacity-bounded structured event store."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY, clock: Optional[SystemClock] = None,
                 status_width: int = DEFAULT_STATUS_MAX, dedupe_ttl_ms: int = DEFAULT_DEDUPE_TTL_MS):
        self.capacity = capacity
        self.clock = clock or system_clock
        self.status_width = status_width
        self.dedupe_ttl_ms = dedupe_ttl_ms

        self._items: Deque[LogRecord] = deque(maxlen=capacity)
        self._seq = 0
        self._seen: Dict[str, float] = {}  # dedupe key -> expiry ms
        self._filter = LogFilter()
        self._listeners: List[Listener] = []

        self.status: str = ""
        self.paused = False
        self.known_sources: Set[str] = {DEFAULT_SOURCE}
        self.known_symbols: Set[str] = set()

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def write(self, level: Any, message: Any, meta: Optional[Dict[str, Any]] = None) -> LogRecord:
        """Append a record; always succeeds."""
        meta = dict(meta or {})
        self._seq += 1
        rec = LogRecord(
            id=self._seq,
            timestamp=self.clock.now_ms(),
            level=Level.parse(level),
            message="" if message is None else str(message),
            source=str(meta.get("source") or DEFAULT_SOURCE),
            symbol=meta.get("symbol") or None,
            metadata=MappingProxyType(meta),
        )
        self._push(rec)
        return rec

    def info(self, message: Any, meta: Optional[Dict[str, Any]] = None) -> LogRecord:
        return self.write(Level.INFO, message, meta)

    def warn(self, message: Any, meta: Optional[Dict[str, Any]] = None) -> LogRecord:
        return self.write(Level.WARN, message, meta)

    def error(self, message: Any, meta: Optional[Dict[str, Any]] = None) -> LogRecord:
        return self.write(Level.ERROR, message, meta)

    def event(self, type: str = "app", action: str = "note", message: str = "",
              level: Any = None, meta: Optional[Dict[str, Any]] = None) -> LogRecord:
        """
        Typed event. Level defaults from the action, message from
        ``"{type}.{action}"``; ``type`` and ``action`` are merged into metadata.
        """
        lvl = Level.parse(level) if level is not None else ACTION_LEVELS.get(action, Level.INFO)
        return self.write(lvl, message or f"{type}.{action}", {"type": type, "action": action, **(meta or {})})

    def begin(self, type: str, label: Optional[str] = None, meta: Optional[Dict[str, Any]] = None) -> Span:
        return Span(self, type, label, meta)

    def timer(self, label: str, meta: Optional[Dict[str, Any]] = None) -> Callable[[], int]:
        """Start a stopwatch; calling the result logs a perf.update event and returns ms."""
        t0 = self.clock.monotonic()

        def stop() -> int:
            dur = int(round((self.clock.monotonic() - t0) * 1000))
            self.event(type="perf", action="update", message=f"{label}: {dur} ms",
                       meta={"dur": dur, **(meta or {})})
            return dur

        return stop

    def dedupe(self, key: str, ttl_ms: Optional[int] = None) -> bool:
        """
        True when ``key`` was registered less than ``ttl_ms`` ago (suppress);
        otherwise registers it and returns False. Expired keys are discovered
        lazily on lookup.
        """
        ttl = self.dedupe_ttl_ms if ttl_ms is None else ttl_ms
        now = self.clock.time() * 1000
        expiry = self._seen.get(key)
        if expiry is not None and now < expiry:
            return True
        self._seen[key] = now + ttl
        return False

    def _push(self, rec: LogRecord) -> None:
        # deque(maxlen) drops the oldest record once capacity is reached
        self._items.append(rec)

        if self._status_allowed(rec) and rec.message:
            self.set_status(rec.level.value, rec.message)

        self.known_sources.add(rec.source)
        if rec.symbol:
            self.known_symbols.add(rec.symbol)

        events_logger.log(
            _STDLIB_LEVELS[rec.level],
            rec.message,
            extra={"record_id": rec.id, "source": rec.source, "symbol": rec.symbol,
                   "corr": rec.correlation_id},
        )
        self._notify()

    # ------------------------------------------------------------------
    # Status line
    # ------------------------------------------------------------------

    @staticmethod
    def _status_allowed(rec: LogRecord) -> bool:
        return (
            rec.type in STATUS_TYPES
            and rec.action in STATUS_ACTIONS
            and rec.level is not Level.ERROR
            and not rec.metadata.get("no_status")
        )

    def set_status(self, level: str, message: Any) -> str:
        """Set the compact status line with URLs removed and width clamped."""
        text = clamp(strip_urls(message), self.status_width)
        self.status = f"{level}: {text}"
        return self.status

    # ------------------------------------------------------------------
    # Filtering / view
    # ------------------------------------------------------------------

    @property
    def filter(self) -> LogFilter:
        return self._filter

    def set_level_filter(self, level: Optional[str]) -> None:
        self._filter.level = level or "all"
        self._notify()

    def set_query(self, query: Optional[str]) -> None:
        self._filter.query = (query or "").strip().lower()
        self._notify()

    def set_source_filter(self, source: Optional[str]) -> None:
        self._filter.source = source or ALL
        self._notify()

    def set_symbol_filter(self, symbol: Optional[str]) -> None:
        self._filter.symbol = symbol or ALL
        self._notify()

    def visible(self, log_filter: Optional[LogFilter] = None) -> List[LogRecord]:
        """Filtered records, oldest first."""
        flt = log_filter or self._filter
        return [rec for rec in self._items if flt.matches(rec)]

    @property
    def records(self) -> List[LogRecord]:
        return list(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def clear(self) -> None:
        """Discard all records and reset the sequence counter."""
        self._items.clear()
        self._seq = 0
        self._notify()

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        if self.paused:
            return
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception as e:
                logger.error(f"Event log listener failed: {e}")
