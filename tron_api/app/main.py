"""FastAPI application serving stored TRON blocks and the live stream."""

import asyncio
import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import structlog

from tron_api.app.routers import blocks, live
from tron_api.app.state import app_state
from tron_api.config.settings import APISettings
from tron_api.utils.metrics import metrics, setup_metrics
from tron_collector.core.collector import TronCollector
from tron_collector.database.backends import StorageError
from tron_collector.fanout.broadcaster import LiveBroadcaster
from tron_collector.models.config import CollectorConfig
from tron_collector.utils.logging import setup_logging

logger = structlog.get_logger(__name__)

# Paths polled by scrapers and probes; logged at debug only
QUIET_PATHS = {"/metrics", "/health"}


def _error(status_code: int, detail) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": detail})


def create_app(settings: Optional[APISettings] = None,
               collector: Optional[TronCollector] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    A prebuilt collector may be passed in; otherwise one is built from the
    environment when the application starts. With ``start_collector`` off
    the store is probed and served but no upstream connection is opened.
    """
    settings = settings or APISettings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings, service="tron-api")
        logger.info("Starting TRON block API", start_collector=settings.start_collector)

        pipeline = collector or TronCollector.build(CollectorConfig())
        broadcaster = LiveBroadcaster()
        app_state["settings"] = settings
        app_state["collector"] = pipeline
        app_state["broadcaster"] = broadcaster

        unsubscribe = pipeline.publisher.subscribe(broadcaster.broadcast)
        heartbeat = asyncio.create_task(broadcaster.heartbeat(settings.ws_heartbeat_interval),
                                        name="ws_heartbeat")

        try:
            if settings.start_collector:
                await pipeline.start()
            else:
                await pipeline.prepare()
        except Exception as e:
            logger.error("Failed to start collector", error=str(e))
            heartbeat.cancel()
            unsubscribe()
            raise

        app_state["startup_time"] = datetime.now()
        logger.info("TRON block API started", storage_mode=pipeline.router.mode.value)

        yield

        logger.info("Shutting down TRON block API")
        heartbeat.cancel()
        await asyncio.gather(heartbeat, return_exceptions=True)
        unsubscribe()
        await pipeline.stop()

        for key in app_state:
            app_state[key] = None
        logger.info("TRON block API shutdown complete")

    app = FastAPI(
        title=settings.api_title,
        description=settings.api_description,
        version=settings.api_version,
        debug=settings.debug,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=settings.cors_methods,
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def observe_request(request: Request, call_next):
        """Time the request, log it and feed the request metrics."""
        started = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - started

        path = request.url.path
        log = logger.debug if path in QUIET_PATHS else logger.info
        log("Request completed",
            method=request.method,
            path=path,
            status_code=response.status_code,
            process_ms=round(elapsed * 1000, 3))

        if settings.enable_metrics:
            metrics.request_count.labels(method=request.method, endpoint=path,
                                         status=response.status_code).inc()
            metrics.request_duration.labels(method=request.method, endpoint=path).observe(elapsed)

        response.headers["X-Process-Time"] = f"{elapsed:.6f}"
        return response

    if settings.enable_metrics:
        setup_metrics(app)

    app.include_router(blocks.router, tags=["blocks"])
    app.include_router(live.router, tags=["live"])

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        logger.warning("Request rejected",
                       status_code=exc.status_code,
                       detail=exc.detail,
                       path=request.url.path)
        return _error(exc.status_code, exc.detail)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = [f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in exc.errors()]
        return _error(status.HTTP_422_UNPROCESSABLE_ENTITY, "; ".join(errors))

    @app.exception_handler(StorageError)
    async def storage_exception_handler(request: Request, exc: StorageError):
        logger.error("Store unavailable", error=str(exc), path=request.url.path)
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, "Block store unavailable")

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.error("Unhandled exception",
                     error=str(exc),
                     path=request.url.path,
                     exc_info=True)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))

    return app
