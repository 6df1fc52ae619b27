"""
Request Logging Middleware
Logs every request with its status, timing and (for webhooks) the app instance
"""
import logging
import time
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    One log line per request: method, path, status code, duration.
    Bodies and headers are never logged (webhook signatures, admin keys).
    """

    async def dispatch(self, request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        duration_ms = round((time.perf_counter() - started) * 1000, 2)

        # path_params is only populated once routing has run
        app_key = request.path_params.get("app_key")
        level = logging.WARNING if response.status_code >= 500 else logging.INFO

        logger.log(
            level,
            f"{request.method} {request.url.path} - {response.status_code} ({duration_ms}ms)",
            extra={
                "method": request.method,
                "path": request.url.path,
                "app_key": app_key,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
                "client_host": request.client.host if request.client else None,
            }
        )

        return response
