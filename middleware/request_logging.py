"""
Request logging middleware. Logs method, path, status, duration only.
Never logs headers, body, or query params (may contain tokens or PII).
"""
import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

LOG_FORMAT = "request_finished method=%s path=%s status=%s duration_ms=%.1f"


def _level_for(status: int) -> int:
    if status >= 500:
        return logging.ERROR
    if status >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log each request: method, path (no query), status_code, duration_ms."""

    async def dispatch(self, request: Request, call_next) -> Response:
        method = request.method
        # Log path only; do not log query string (may contain tokens or PII)
        path = request.scope.get("path", "")
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            duration_ms = (time.perf_counter() - start) * 1000
            logger.error(
                LOG_FORMAT, method, path, 500, duration_ms,
                extra={"method": method, "path": path, "status": 500, "duration_ms": round(duration_ms, 1)},
            )
            raise
        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Response-Time-Ms"] = f"{duration_ms:.1f}"
        status = response.status_code
        logger.log(
            _level_for(status), LOG_FORMAT, method, path, status, duration_ms,
            extra={"method": method, "path": path, "status": status, "duration_ms": round(duration_ms, 1)},
        )
        return response
