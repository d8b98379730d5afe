"""
Logging middleware for request/response logging.

Logs all HTTP requests with timing and context.
"""
import time

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from tenant_authz.logging_config import get_logger
from tenant_authz.routes.metrics import track_request


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware to log all HTTP requests with timing and context.

    Adds: org_id, user_id, route, duration_ms, status to every log.
    """

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        structlog.contextvars.clear_contextvars()

        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            self._request_logger(request).error(
                "request_failed",
                status_code=500,
                duration_ms=round(duration_ms, 2),
                error=str(e)
            )
            raise

        duration_ms = (time.time() - start_time) * 1000
        track_request(request.method, request.url.path, response.status_code, duration_ms / 1000)

        # user_id/org_id are set on request.state by get_current_user
        self._request_logger(request).info(
            "request_completed",
            status_code=response.status_code,
            duration_ms=round(duration_ms, 2)
        )

        return response

    @staticmethod
    def _request_logger(request: Request):
        org_id = getattr(request.state, "org_id", None)
        user_id = getattr(request.state, "user_id", None)
        return get_logger(
            org_id=org_id,
            user_id=user_id,
            route=request.url.path,
            method=request.method,
        )
