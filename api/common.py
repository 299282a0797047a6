"""
Shared request plumbing: dependencies, middleware and helpers used by every router.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from databases import Database
from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.middleware.base import BaseHTTPMiddleware

from config import Settings

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
MAX_REQUEST_ID_LENGTH = 128


def get_settings(request: Request) -> Settings:
    """FastAPI dependency returning the Settings the app was built with."""
    return request.app.state.settings


def get_database(request: Request) -> Database:
    """FastAPI dependency returning the app's Database."""
    return request.app.state.database


def get_request_id(request: Request) -> Optional[str]:
    """Return the request ID assigned by RequestIDMiddleware, if any."""
    return getattr(request.state, "request_id", None)


def get_real_ip(request: Request) -> str:
    """
    Get the real client IP address, respecting X-Forwarded-For header only from trusted proxies.

    Security: X-Forwarded-For is only trusted when the direct client IP is in
    the configured trusted proxies, so clients can't spoof it to dodge rate limits.
    """
    client_ip = get_remote_address(request)
    settings: Optional[Settings] = getattr(request.app.state, "settings", None)
    trusted = settings.trusted_proxies if settings else set()

    if trusted and client_ip in trusted:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            # client, proxy1, proxy2, ...
            return forwarded.split(",")[0].strip()

    return client_ip


def get_request_context(request: Optional[Request], settings: Optional[Settings] = None) -> dict:
    """Security-relevant request details for structured log records."""
    if request is None:
        return {"ip_address": "unknown", "user_agent": "unknown", "request_id": None}

    return {
        "ip_address": get_real_ip(request),
        "user_agent": request.headers.get("user-agent", "unknown"),
        "request_id": get_request_id(request),
    }


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Attach a request ID to request.state and echo it in the response headers."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER)
        if not request_id or len(request_id) > MAX_REQUEST_ID_LENGTH:
            request_id = str(uuid.uuid4())
        request.state.request_id = request_id

        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"
        response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"
        return response


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Handle rate limit exceeded errors with a proper JSON response."""
    return JSONResponse(
        status_code=429,
        content={
            "detail": "Rate limit exceeded",
            "error": str(exc.detail),
        },
    )


async def check_health(db: Database) -> dict:
    """
    Check database connectivity.

    Returns a dict with:
        - checks: dict of individual check results
        - healthy: bool indicating overall health
        - status_code: HTTP status code (200 if healthy, 503 if not)
    """
    checks = {"database": False}

    try:
        await db.fetch_val("SELECT 1")
        checks["database"] = True
    except Exception as e:
        logger.warning(f"Database health check failed: {e}")

    healthy = all(checks.values())
    return {
        "checks": checks,
        "healthy": healthy,
        "status_code": 200 if healthy else 503,
        "checked_at": datetime.now(timezone.utc).isoformat(),
    }
