"""Main FastAPI application for the air quality fusion service."""

import logging
import traceback
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from ceylon_air.api.endpoints import router as airquality_router
from ceylon_air.config import (
    DEBUG, HOST, PORT, REDIS_URL, SCHEDULER_ENABLED, SCHEDULER_TICK_SECONDS, validate_api_keys
)
from ceylon_air.logging_config import configure_logging
from ceylon_air.scheduler import AsyncioPeriodicScheduler
from ceylon_air.services import Services, build_services
from ceylon_air.store import CacheError

configure_logging(logging.DEBUG if DEBUG else logging.INFO)
logger = logging.getLogger(__name__)


def create_app(services: Optional[Services] = None, start_scheduler: bool = SCHEDULER_ENABLED) -> FastAPI:
    """Create and configure FastAPI application.

    Args:
        services: Pre-built components (built from configuration on startup if None)
        start_scheduler: Whether to run periodic fetches in the background

    Returns:
        Configured FastAPI application instance
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan manager."""
        periodic = AsyncioPeriodicScheduler()
        owns_services = services is None
        try:
            validate_api_keys()

            if owns_services:
                logger.info(f"Connecting to Redis at {REDIS_URL}")
                app.state.services = build_services()
            components: Services = app.state.services

            await components.scheduler.load_state()
            if start_scheduler:
                components.scheduler.start(periodic, SCHEDULER_TICK_SECONDS * 1000)

            logger.info("Starting Ceylon Air Quality Fusion Service")
            yield
        except Exception as e:
            logger.error(f"Startup error: {e}")
            logger.error(traceback.format_exc())
            raise
        finally:
            try:
                logger.info("Shutting down Ceylon Air Quality Fusion Service")
                await periodic.stop()
                if owns_services and getattr(app.state, "services", None) is not None:
                    await app.state.services.aclose()
            except Exception as e:
                logger.error(f"Shutdown error: {e}")

    app = FastAPI(
        title="Ceylon Air Quality Fusion Service",
        description="Fuses IQAir, OpenWeatherMap and WeatherAPI readings into one AQI/UV estimate",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan
    )
    if services is not None:
        app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(CacheError)
    async def cache_error_handler(request: Request, exc: CacheError) -> JSONResponse:
        logger.error(f"Store unavailable while serving {request.url.path}: {exc}")
        return JSONResponse(status_code=503, content={"detail": "Storage unavailable"})

    app.include_router(airquality_router)

    @app.get("/api", tags=["root"])
    async def api_info() -> dict:
        """API information endpoint.

        Returns:
            Basic service information
        """
        return {
            "message": "Ceylon Air Quality Fusion Service",
            "docs": "/docs",
            "latest": "/airquality/latest",
            "refresh": "/airquality/refresh",
            "history": "/airquality/history",
            "thresholds": "/airquality/thresholds",
            "health": "/airquality/health"
        }

    return app


# Create app instance for uvicorn
app = create_app()


def main() -> None:
    """Main entry point for the application."""
    logger.info(f"Starting server on {HOST}:{PORT}")
    uvicorn.run(
        "ceylon_air.main:app",
        host=HOST,
        port=PORT,
        reload=DEBUG,
        log_level="info" if not DEBUG else "debug"
    )


if __name__ == "__main__":
    main()
