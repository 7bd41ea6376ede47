"""
PriceWatch - FastAPI application

Serves the dashboard view and command endpoints over one controller that
lives for the whole process.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from pricewatch import __version__
from pricewatch.config import settings
from pricewatch.middleware.error_handler import register_exception_handlers
from pricewatch.observability.logs import setup_log_rotation
from pricewatch.routes_dashboard import router as dashboard_router
from pricewatch.services.dashboard import DashboardController, build_controller

logger = logging.getLogger(__name__)


def create_app(controller: Optional[DashboardController] = None, rotate_logs: bool = False) -> FastAPI:
    """Build the app; a controller is constructed from settings when none is given."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if rotate_logs:
            setup_log_rotation(settings.LOG_DIR)
        ctl = app.state.controller
        await ctl.start()
        logger.info(f"PriceWatch started: symbol={ctl.symbol} auto={ctl.scheduler.enabled}")
        try:
            yield
        finally:
            await ctl.stop()
            logger.info("PriceWatch stopped")

    app = FastAPI(title="PriceWatch", version=__version__, lifespan=lifespan)
    app.state.controller = controller or build_controller(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )
    register_exception_handlers(app)
    app.include_router(dashboard_router)
    return app
