"""
Dashboard API - read-only views and the command endpoint.
The presentation layer never touches engine state except through commands.
"""

import logging
import time
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Request
from fastapi.responses import PlainTextResponse

from pricewatch import __version__
from pricewatch.observability.event_log import LogFilter
from pricewatch.schemas.views import DashboardView
from pricewatch.services.dashboard import DashboardController

logger = logging.getLogger(__name__)

router = APIRouter(tags=["dashboard"])


def _controller(request: Request) -> DashboardController:
    return request.app.state.controller


@router.get("/health")
def get_health(request: Request) -> Dict[str, Any]:
    """Liveness plus a few cheap engine facts."""
    controller = _controller(request)
    return {
        "status": "ok",
        "version": __version__,
        "symbol": controller.symbol,
        "auto": controller.scheduler.phase.value,
        "store": controller.store.check_health() if hasattr(controller.store, "check_health") else None,
        "price_cache": controller.price_cache.get_statistics(),
        "inflight": controller.coordinator.inflight_count,
        "timestamp": int(time.time() * 1000)
    }


@router.get("/dashboard", response_model=DashboardView)
def get_dashboard(request: Request) -> DashboardView:
    return _controller(request).view()


@router.get("/logs")
def get_logs(request: Request, level: Optional[str] = None, q: Optional[str] = None,
             source: Optional[str] = None, symbol: Optional[str] = None) -> Dict[str, Any]:
    """
    Visible log records, oldest first. Query parameters narrow the active
    filter for this request only.
    """
    log = _controller(request).log
    flt = log.filter
    if any(v is not None for v in (level, q, source, symbol)):
        flt = LogFilter(
            level=level if level is not None else flt.level,
            query=(q if q is not None else flt.query).strip().lower(),
            source=source if source is not None else flt.source,
            symbol=symbol if symbol is not None else flt.symbol,
        )
    records = log.visible(flt)
    return {
        "status": log.status,
        "count": len(records),
        "total": len(log),
        "sources": sorted(log.known_sources),
        "symbols": sorted(log.known_symbols),
        "records": [rec.to_dict() for rec in records],
    }


@router.post("/commands/{name}", response_model=DashboardView)
async def post_command(name: str, request: Request,
                       payload: Optional[Dict[str, Any]] = Body(default=None)) -> DashboardView:
    """Dispatch a named command with a JSON object of keyword arguments."""
    logger.debug(f"Command {name} {sorted((payload or {}).keys())}")
    return await _controller(request).dispatch(name, **(payload or {}))


@router.get("/metrics", response_class=PlainTextResponse)
def get_metrics(request: Request) -> str:
    return _controller(request).metrics.get_metrics()
