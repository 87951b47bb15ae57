"""
RequestGuard: Request Logging Middleware
==========================================

What:  One access log line per HTTP request.
How:   Times the handler and logs method, path, status and duration. The
       trace and request ids come from the log context (see ContextFilter),
       so this middleware must sit inside TraceContextMiddleware.
When:  After trace and locale resolution, before rate limiting, so blocked
       requests are logged too.

Level by status:
    5xx → ERROR, 4xx → WARNING, everything else → INFO

Not logged: request bodies, cookies, Authorization headers.
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from requestguard.net import UNKNOWN_IP

logger = logging.getLogger("requestguard.access")


def level_for_status(status: int) -> int:
    if status >= 500:
        return logging.ERROR
    if status >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Health checks are skipped; load balancers hit them every few seconds and would
    drown everything else.
    """

    QUIET_PATHS = {"/health"}

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if path in self.QUIET_PATHS:
            return await call_next(request)

        start_time = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start_time) * 1000

        client = request.client.host if request.client else UNKNOWN_IP
        status = response.status_code
        logger.log(
            level_for_status(status),
            "%s %s %d %.1fms from %s",
            request.method,
            path,
            status,
            duration_ms,
            client,
            extra={
                "method": request.method,
                "path": path,
                "status": status,
                "duration_ms": round(duration_ms, 2),
                "client_ip": client,
            },
        )
        return response
