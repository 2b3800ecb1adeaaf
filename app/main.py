"""
FastAPI application for the booking widget and owner dashboard

Availability reads, bookings and settings writes; calendar sync and
emails happen in workers
"""
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import timedelta

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.routing import APIRoute

from app.api.v1.router import api_v1_router
from app.config.settings import get_settings
from app.core.middleware import correlation_id_middleware, request_logging_middleware
from app.core.monitoring import health_router
from app.services.cache.availability_cache import CacheSweeper, build_availability_cache
from app.services.calendar.calendar_source import default_providers
from app.utils.my_logging import setup_logging

settings = get_settings()
logger = logging.getLogger(__name__)


def log_routes(app: FastAPI) -> None:
    """Log all registered routes grouped by tag"""
    routes_by_tag = defaultdict(list)
    for route in app.routes:
        if isinstance(route, APIRoute):
            tag = route.tags[0] if route.tags else "other"
            for method in route.methods:
                routes_by_tag[tag].append((method, route.path, route.name))

    for tag, routes in sorted(routes_by_tag.items()):
        logger.debug(f"[{tag.upper()}]")
        for method, path, name in sorted(routes, key=lambda r: (r[1], r[0])):
            logger.debug(f"  {method:8} {path:50} ({name})")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    # Startup
    setup_logging()
    logger.info("🚀 Scheduling API starting up...")

    cache = build_availability_cache(settings)
    sweeper = CacheSweeper(cache, timedelta(minutes=settings.CACHE_SWEEP_INTERVAL_MINUTES))
    providers = default_providers()

    app.state.availability_cache = cache
    app.state.calendar_providers = providers
    sweeper.start()

    log_routes(app)
    logger.info("❤️  Health check at /health")

    yield

    # Shutdown
    logger.info("🛑 Scheduling API shutting down...")
    await sweeper.stop()
    await cache.close()
    for provider in providers.values():
        aclose = getattr(provider, "aclose", None)
        if aclose is not None:
            await aclose()


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""

    app = FastAPI(
        title=settings.APP_NAME,
        description="Availability, booking and calendar sync for embeddable booking widgets",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
    )

    # Add CORS middleware (the widget is embedded on customer sites)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "PUT"],
        allow_headers=["*"],
    )

    # Add custom middleware
    app.middleware("http")(request_logging_middleware)
    app.middleware("http")(correlation_id_middleware)

    # Include routers
    app.include_router(health_router, prefix="/health", tags=["monitoring"])
    app.include_router(api_v1_router, prefix="/api/v1")

    @app.get("/")
    async def root():
        return {
            "service": settings.APP_NAME,
            "version": "0.1.0",
            "status": "running",
            "endpoints": {
                "booking": "/api/v1/public/booking/",
                "health": "/health",
                "docs": "/docs" if settings.DEBUG else "disabled"
            }
        }

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        "app.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level="info"
    )
