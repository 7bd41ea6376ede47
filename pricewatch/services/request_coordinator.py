"""
Request coordinator.

Every outbound call runs as its own task with a timeout, is registered in
an in-flight set that ``cancel_inflight()`` aborts en masse, and is wrapped
in a ``network`` span on the event log. No automatic retries.
"""

import asyncio
import logging
import re
from typing import Any, Dict, Optional, Set

import httpx

from pricewatch.errors import (
    HTTPStatusError, NetworkError, RequestCancelledError, RequestTimeoutError,
    SuspendedOperationError,
)
from pricewatch.observability.event_log import EventLog
from pricewatch.observability.metrics import SimpleMetrics
from pricewatch.services.reorder_guard import ReorderGuard

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 8000
SMALL_RESPONSE_MAX_ITEMS = 50
ERROR_DEDUPE_MS = 10000

_ENDPOINT_RE = re.compile(r"/api/v3/[a-zA-Z0-9/_-]+")


def endpoint_label(url: str) -> str:
    """URL-free label for an endpoint, e.g. ``/api/v3/ticker/price``."""
    match = _ENDPOINT_RE.search(str(url))
    return match.group(0) if match else "request"


def json_shape(payload: Any) -> Dict[str, Any]:
    """Shape metadata of a decoded JSON payload."""
    if isinstance(payload, list):
        return {"shape": "array", "size": len(payload)}
    if isinstance(payload, dict):
        return {"shape": "object", "size": len(payload)}
    if payload is None:
        return {"shape": "object", "size": 0}
    if isinstance(payload, bool):
        return {"shape": "boolean", "size": 0}
    if isinstance(payload, (int, float)):
        return {"shape": "number", "size": 0}
    return {"shape": "string", "size": 0}


def _is_small(payload: Any, max_items: int) -> bool:
    if isinstance(payload, list):
        return len(payload) <= max_items
    return payload is not None and not isinstance(payload, dict)


class RequestCoordinator:
    """Timeout-bound, cancellable, logged JSON fetches."""

    def __init__(self, event_log: EventLog, client: Optional[httpx.AsyncClient] = None,
                 guard: Optional[ReorderGuard] = None, timeout_ms: int = DEFAULT_TIMEOUT_MS,
                 small_response_max_items: int = SMALL_RESPONSE_MAX_ITEMS,
                 error_dedupe_ms: int = ERROR_DEDUPE_MS, metrics: Optional[SimpleMetrics] = None):
        self.log = event_log
        self.guard = guard if guard is not None else ReorderGuard()
        self.timeout_ms = timeout_ms
        self.small_response_max_items = small_response_max_items
        self.error_dedupe_ms = error_dedupe_ms
        self.metrics = metrics
        self._client = client
        self._owns_client = client is None
        self._inflight: Set[asyncio.Task] = set()

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client

    @property
    def inflight_count(self) -> int:
        return len(self._inflight)

    async def fetch_json(self, url: str, *, method: str = "GET", params: Optional[Dict[str, Any]] = None,
                         timeout_ms: Optional[int] = None) -> Any:
        """
        Issue one request and return the decoded JSON body.

        Raises:
            SuspendedOperationError: reorder in progress, nothing was sent
            HTTPStatusError: non-success status
            RequestTimeoutError: the timeout fired before a response
            RequestCancelledError: aborted by cancel_inflight()
            NetworkError: transport failure
        """
        if self.guard.active:
            raise SuspendedOperationError()

        endpoint = endpoint_label(url)
        method = (method or "GET").upper()
        limit_ms = self.timeout_ms if timeout_ms is None else timeout_ms
        span = self.log.begin("network", f"Request {endpoint}", {"endpoint": endpoint, "method": method})

        task = asyncio.ensure_future(self.client.request(method, url, params=params))
        self._inflight.add(task)
        try:
            done, _ = await asyncio.wait({task}, timeout=limit_ms / 1000)
        except asyncio.CancelledError:
            # caller itself was cancelled; abort the request with it
            task.cancel()
            span.end(False, {"endpoint": endpoint, "reason": "caller-cancelled"})
            raise
        finally:
            self._inflight.discard(task)

        if not done:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            self._fail(span, endpoint, "timeout", {"endpoint": endpoint, "timeout_ms": limit_ms})
            raise RequestTimeoutError(endpoint, limit_ms)

        if task.cancelled():
            self._fail(span, endpoint, "cancelled", {"endpoint": endpoint, "reason": "refresh-cancelled"})
            raise RequestCancelledError(endpoint)

        exc = task.exception()
        if isinstance(exc, httpx.HTTPError):
            self._fail(span, endpoint, "transport",
                       {"endpoint": endpoint, "reason": type(exc).__name__})
            raise NetworkError(f"Request failed — {endpoint}", {"endpoint": endpoint}) from exc
        if exc is not None:
            span.end(False, {"endpoint": endpoint, "reason": type(exc).__name__})
            raise exc

        response: httpx.Response = task.result()
        try:
            payload = response.json()
        except ValueError:
            payload = None

        meta = {"endpoint": endpoint, "status": response.status_code, "ok": response.is_success,
                **json_shape(payload)}
        if self.metrics is not None:
            self.metrics.record_api_request(endpoint, response.status_code, span.elapsed_ms)

        if not response.is_success:
            span.end(False, meta)
            if not self.log.dedupe(f"http-{response.status_code}-{endpoint}", self.error_dedupe_ms):
                self.log.error(f"HTTP {response.status_code}", {**meta, "source": "NET"})
            raise HTTPStatusError(response.status_code, endpoint)

        span.step("success", "Response received", meta)
        if _is_small(payload, self.small_response_max_items):
            self.log.info("API response", {"source": "NET", "body": payload, "endpoint": endpoint})
        span.end(True, meta)
        return payload

    def _fail(self, span, endpoint: str, reason: str, meta: Dict[str, Any]) -> None:
        span.end(False, meta)
        if self.metrics is not None:
            self.metrics.inc_counter("api_failures_total", {"endpoint": endpoint, "reason": reason})
        if not self.log.dedupe(f"{reason}-{endpoint}", self.error_dedupe_ms):
            self.log.error(f"Request {reason}", {**meta, "source": "NET"})

    def cancel_inflight(self) -> int:
        """Abort every registered request; returns how many were cancelled."""
        tasks = list(self._inflight)
        for task in tasks:
            task.cancel()
        self._inflight.clear()
        if tasks:
            logger.debug(f"Cancelled {len(tasks)} in-flight requests")
        return len(tasks)

    async def aclose(self) -> None:
        self.cancel_inflight()
        if self._client is not None and self._owns_client:
            await self._client.aclose()
