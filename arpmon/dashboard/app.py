"""
FastAPI Application Factory

Builds the ArpMon JSON API around a MonitorService.  The service lives on
``app.state.monitor``; when it is ``None`` the API answers 503 and
``/health`` reports ``degraded``.
"""

import logging
import time
from typing import Dict, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from arpmon.config import ALLOWED_ORIGINS, APP_NAME, APP_VERSION

from .routes import router as api_router
from .websocket import manager as ws_manager
from .websocket import router as ws_router

logger = logging.getLogger(__name__)


def health_report(monitor) -> Dict:
    """Component availability for ``/health``."""
    database: Dict = {"available": False, "info": None}
    get_info = getattr(getattr(monitor, "store", None), "get_database_info", None)
    if get_info is not None:
        try:
            database = {"available": True, "info": get_info()}
        except Exception as e:
            logger.warning(f"Health check could not query the database: {e}")
            database = {"available": False, "info": {"error": "Failed to query database"}}

    return {
        "status": "healthy" if monitor is not None else "degraded",
        "version": APP_VERSION,
        "components": {
            "monitor": {"available": monitor is not None},
            "database": database,
            "notifier": {"available": getattr(monitor, "notifier", None) is not None},
            "websocket": {"connections": ws_manager.connection_count},
        },
    }


def create_app(monitor=None, lifespan=None, origins: Optional[list] = None) -> FastAPI:
    """
    Args:
        monitor: MonitorService backing the API, or None for degraded mode
        lifespan: Optional startup/shutdown context manager
        origins: CORS origins, defaults to ALLOWED_ORIGINS

    Returns:
        Configured FastAPI app
    """
    app = FastAPI(
        title=APP_NAME,
        description="Scheduled ARP presence monitoring",
        version=APP_VERSION,
        lifespan=lifespan,
    )
    app.state.monitor = monitor

    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins if origins is not None else ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def timed(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        response.headers["X-Response-Time"] = f"{time.perf_counter() - started:.4f}s"
        return response

    @app.exception_handler(Exception)
    async def unhandled(request: Request, exc: Exception):
        logger.error(f"{request.method} {request.url.path} failed: {exc}", exc_info=True)
        return JSONResponse(status_code=500, content={"error": "Internal server error", "detail": str(exc)})

    app.include_router(api_router)
    app.include_router(ws_router)

    @app.get("/health")
    async def health(request: Request):
        return health_report(request.app.state.monitor)

    logger.info(f"{APP_NAME} API v{APP_VERSION} ready")
    return app
