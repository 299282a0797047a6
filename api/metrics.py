"""
Prometheus metrics for the VidShare API.

Metrics are exposed at /metrics in Prometheus text format.
"""

import time

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, Info, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

# Application info
APP_INFO = Info("vidshare", "VidShare application information")

# =============================================================================
# API Metrics
# =============================================================================

HTTP_REQUESTS_TOTAL = Counter(
    "vidshare_http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "vidshare_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

AUTH_FAILURES_TOTAL = Counter(
    "vidshare_auth_failures_total",
    "Rejected authentication attempts",
    ["reason"],
)

# =============================================================================
# Video and toggle metrics
# =============================================================================

VIDEO_UPLOADS_TOTAL = Counter(
    "vidshare_video_uploads_total",
    "Total video uploads",
    ["result"],  # success, failed
)

VIDEO_VIEWS_TOTAL = Counter(
    "vidshare_video_views_total",
    "Total video views",
)

TOGGLES_TOTAL = Counter(
    "vidshare_toggles_total",
    "Like and subscription toggles",
    ["kind", "state"],  # state: active, inactive
)

# =============================================================================
# Database and media host metrics
# =============================================================================

DB_QUERY_RETRIES_TOTAL = Counter(
    "vidshare_db_query_retries_total",
    "Total database query retries due to transient errors",
)

MEDIA_REQUESTS_TOTAL = Counter(
    "vidshare_media_requests_total",
    "Requests to the media host",
    ["operation", "result"],  # operation: upload, destroy. result: success, failed
)


def _endpoint_label(request: Request) -> str:
    """
    Full route template the router matched, so ids don't explode label cardinality.

    Newer FastAPI releases put the sub-router's own route in scope, whose
    template lacks the include_router prefix. The template's segments line up
    one to one with the tail of the request path, so the prefix is taken from
    the literal head of the path.
    """
    route = request.scope.get("route")
    template = getattr(route, "path_format", None) or getattr(route, "path", None)
    if template is None:
        return "unmatched"
    tail = [segment for segment in template.split("/") if segment]
    segments = [segment for segment in request.scope.get("path", "").split("/") if segment]
    if len(tail) > len(segments):
        return template
    return "/" + "/".join(segments[: len(segments) - len(tail)] + tail)


class MetricsMiddleware(BaseHTTPMiddleware):
    """Count requests and time them per route."""

    async def dispatch(self, request: Request, call_next):
        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            endpoint = _endpoint_label(request)
            HTTP_REQUESTS_TOTAL.labels(request.method, endpoint, str(status_code)).inc()
            HTTP_REQUEST_DURATION_SECONDS.labels(request.method, endpoint).observe(time.perf_counter() - started)


def get_metrics() -> bytes:
    """Generate Prometheus metrics in text format."""
    return generate_latest()


def metrics_response() -> Response:
    return Response(content=get_metrics(), media_type=CONTENT_TYPE_LATEST)


def init_app_info(version: str = "0.1.0"):
    """Initialize application info metric."""
    APP_INFO.info({"version": version, "app": "vidshare"})
