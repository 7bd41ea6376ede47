"""
Observability metrics for monitoring and debugging.
Request, price cache and refresh cycle counters.
"""

from typing import Dict, List, Optional
import json


# Simple metrics tracking without Prometheus dependency
class SimpleMetrics:
    """Simple metrics tracking for observability."""

    def __init__(self, max_samples: int = 1000):
        self.max_samples = max_samples
        self.counters: Dict[str, int] = {}
        self.gauges: Dict[str, float] = {}
        self.histograms: Dict[str, List[float]] = {}

    @staticmethod
    def _key(name: str, labels: Optional[Dict[str, str]]) -> str:
        return f"{name}_{json.dumps(labels or {}, sort_keys=True)}"

    def inc_counter(self, name: str, labels: Dict[str, str] = None, amount: int = 1):
        """Increment a counter."""
        key = self._key(name, labels)
        self.counters[key] = self.counters.get(key, 0) + amount

    def counter(self, name: str, labels: Dict[str, str] = None) -> int:
        return self.counters.get(self._key(name, labels), 0)

    def set_gauge(self, name: str, value: float, labels: Dict[str, str] = None):
        """Set a gauge value."""
        self.gauges[self._key(name, labels)] = value

    def observe_histogram(self, name: str, value: float, labels: Dict[str, str] = None):
        """Observe a histogram value."""
        key = self._key(name, labels)
        samples = self.histograms.setdefault(key, [])
        samples.append(value)
        # Keep only the most recent samples
        if len(samples) > self.max_samples:
            self.histograms[key] = samples[-self.max_samples:]

    def get_metrics(self) -> str:
        """Get metrics in text format."""
        lines = []
        for key, value in self.counters.items():
            lines.append(f"# TYPE {key.split('_{')[0]} counter")
            lines.append(f"{key} {value}")
        for key, value in self.gauges.items():
            lines.append(f"# TYPE {key.split('_{')[0]} gauge")
            lines.append(f"{key} {value}")
        for key, values in self.histograms.items():
            if values:
                lines.append(f"# TYPE {key.split('_{')[0]} histogram")
                lines.append(f"{key}_count {len(values)}")
                lines.append(f"{key}_sum {sum(values)}")
                lines.append(f"{key}_avg {sum(values)/len(values)}")
        return "\n".join(lines)

    # Domain helpers ---------------------------------------------------

    def record_api_request(self, endpoint: str, status_code: int, duration_ms: float):
        """Record an outbound request."""
        self.inc_counter("api_requests_total", {"endpoint": endpoint, "status": str(status_code)})
        self.observe_histogram("api_request_duration_ms", duration_ms, {"endpoint": endpoint})

    def record_price_cache(self, event: str):
        """Record a price cache event (request, fetch, coalesced, error)."""
        self.inc_counter("price_cache_events_total", {"event": event})

    def record_refresh_cycle(self, outcome: str, duration_ms: float):
        """Record a refresh cycle outcome (success, error, skipped)."""
        self.inc_counter("refresh_cycles_total", {"outcome": outcome})
        self.observe_histogram("refresh_cycle_duration_ms", duration_ms)
