"""
ASGI middleware for tracking HTTP request metrics.
Records request count, duration, and errors per route template.
"""
import re
import time
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from clipgen.utils.metrics import http_requests_total, http_request_duration_seconds, errors_total

_ID_SEGMENT_RE = re.compile(r'/[0-9a-fA-F-]{16,}(?=/|$)|/\d+(?=/|$)')

SKIPPED_PATHS = {"/metrics", "/api/health"}


def route_label(request: Request) -> str:
    """
    Path label for a request.

    Matched routes use their template (/api/generate/status/{job_id}) so job
    ids never become label values; unmatched paths get id-like segments
    replaced.
    """
    route = request.scope.get("route")
    template = getattr(route, "path_format", None) or getattr(route, "path", None)
    if template:
        return template
    return _ID_SEGMENT_RE.sub('/{id}', request.url.path)


class MetricsMiddleware(BaseHTTPMiddleware):
    """Middleware to track HTTP metrics for Prometheus."""

    async def dispatch(self, request: Request, call_next):
        # Scrapes and health checks would dominate the request counters
        if request.url.path in SKIPPED_PATHS:
            return await call_next(request)

        start_time = time.time()

        try:
            response = await call_next(request)
        except Exception:
            errors_total.labels(error_type="exception").inc()
            raise

        path = route_label(request)
        status_code = response.status_code
        http_requests_total.labels(method=request.method, path=path, status=status_code).inc()
        http_request_duration_seconds.labels(method=request.method, path=path).observe(time.time() - start_time)

        if status_code >= 400:
            errors_total.labels(error_type=f"{status_code // 100}xx").inc()

        return response
