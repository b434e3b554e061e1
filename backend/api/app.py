"""
FastAPI application factory for the Live Ticker command API.

Creates the app with:
- Ticker command/query routes
- Middleware stack
- Health and status endpoints
- Lifespan management: the ticker engine starts with the app (restoring
  persisted tickers) and its scheduling loop runs as a background task
"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from fastapi import FastAPI

from shared.config import get_settings
from shared.utils.logging import get_logger, setup_logging
from shared.utils.metrics import start_metrics_server

from api.dependencies import get_ticker_service, init_dependencies
from api.middleware import setup_middleware
from api.routes.tickers import router as tickers_router
from ticker.service import build_service

logger = get_logger(__name__)


@asynccontextmanager
async def _noop_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """No-op lifespan for testing; tests inject their own service."""
    yield


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.
    Builds and starts the ticker service on startup and shuts it down
    gracefully, saving seen ids, on exit.
    """
    settings = get_settings()
    setup_logging("api")
    start_metrics_server(settings.metrics_port)

    service = build_service(settings)
    await service.start()
    init_dependencies(service)
    loop_task = asyncio.create_task(service.run(), name="ticker-loop")

    logger.info(
        "api_service_started",
        host=settings.api_host,
        port=settings.api_port,
        max_workers=settings.max_workers,
    )

    try:
        yield
    finally:
        service.request_shutdown()
        try:
            await asyncio.wait_for(loop_task, timeout=5.0)
        except asyncio.TimeoutError:
            loop_task.cancel()
        await service.close()
        init_dependencies(None)
        logger.info("api_service_stopped")


def create_app(*, use_lifespan: bool = True) -> FastAPI:
    """Create and configure the FastAPI application. Set use_lifespan=False for testing with an injected service."""
    app = FastAPI(
        title="Live Ticker API",
        description="Live handball ticker: start, stop and inspect tickers per channel",
        version="1.0.0",
        lifespan=lifespan if use_lifespan else _noop_lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Middleware
    setup_middleware(app)

    # REST routes
    app.include_router(tickers_router)

    # Health check
    @app.get("/health", tags=["system"])
    async def health() -> dict[str, str]:
        return {"status": "ok", "service": "api"}

    @app.get("/v1/status", tags=["system"])
    async def system_status() -> dict[str, Any]:
        """Engine status: ticker counts per status, queue length and worker usage."""
        try:
            service = get_ticker_service()
        except RuntimeError:
            return {"status": "starting", "engine": None}
        engine = service.status()
        return {"status": "ok" if engine["running"] else "degraded", "engine": engine}

    return app


app = create_app()
