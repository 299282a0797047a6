"""
Application factory for the video-sharing API.

All routers are mounted under /api/v1. The app holds its own Settings,
Database, media client and audit logger on app.state; nothing is created
at import time.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.audit import AuditLogger
from api.common import (
    RequestIDMiddleware,
    SecurityHeadersMiddleware,
    check_health,
    get_real_ip,
    rate_limit_exceeded_handler,
)
from api.database import configure_database, create_database
from api.db_retry import DatabaseRetryableError
from api.errors import APIError, api_error_handler, request_validation_handler, unhandled_exception_handler
from api.media import MediaClient
from api.metrics import MetricsMiddleware, init_app_info, metrics_response
from api.routes import comments, likes, playlists, subscriptions, users, videos
from config import Settings, load_settings

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"
APP_VERSION = "0.1.0"


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build a FastAPI app wired to the given settings (or the environment's)."""
    if settings is None:
        settings = load_settings()

    database = create_database(settings.database_url)
    media = MediaClient(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage application startup and shutdown."""
        if settings.rate_limit_enabled and settings.rate_limit_storage_url == "memory://":
            logger.warning(
                "Rate limiting is using in-memory storage. "
                "For deployments with multiple instances, configure a shared store: "
                "VIDSHARE_RATE_LIMIT_STORAGE_URL=redis://localhost:6379"
            )
        if not media.configured:
            logger.warning("Media host credentials are not set; uploads will fail with 502")

        await database.connect()
        await configure_database(database)
        yield
        await media.aclose()
        await database.disconnect()

    app = FastAPI(title="VidShare", description="Video sharing API", version=APP_VERSION, lifespan=lifespan)
    init_app_info(APP_VERSION)

    app.state.settings = settings
    app.state.database = database
    app.state.media = media
    app.state.audit = AuditLogger(settings)

    # Default limits apply to every route through SlowAPIMiddleware
    app.state.limiter = Limiter(
        key_func=get_real_ip,
        default_limits=[settings.rate_limit_default],
        storage_uri=settings.rate_limit_storage_url,
        enabled=settings.rate_limit_enabled,
    )
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    @app.exception_handler(DatabaseRetryableError)
    async def database_retryable_handler(request: Request, exc: DatabaseRetryableError):
        """Handle transient database errors with a 503 response."""
        logger.warning(f"Database temporarily unavailable: {exc}")
        return JSONResponse(
            status_code=503,
            content={"detail": "Database temporarily unavailable, please retry"},
            headers={"Retry-After": "1"},
        )

    app.add_middleware(SlowAPIMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(MetricsMiddleware)

    # Note: allow_credentials=True requires specific origins, not wildcards
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins if settings.cors_origins else [],
        allow_credentials=bool(settings.cors_origins),
        allow_methods=["GET", "POST", "PATCH", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
        expose_headers=["X-Request-ID"],
    )

    for module in (users, videos, comments, likes, subscriptions, playlists):
        app.include_router(module.router, prefix=API_PREFIX)

    @app.get("/metrics", include_in_schema=False)
    async def metrics():
        """Prometheus scrape endpoint."""
        return metrics_response()

    @app.get("/health")
    async def health_check(request: Request):
        """Health check endpoint for load balancers and monitoring."""
        result = await check_health(request.app.state.database)
        return JSONResponse(
            status_code=result["status_code"],
            content={
                "status": "healthy" if result["healthy"] else "unhealthy",
                "checks": result["checks"],
                "checked_at": result["checked_at"],
            },
        )

    return app


def main():
    import uvicorn

    settings = load_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run("api.app:create_app", factory=True, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
