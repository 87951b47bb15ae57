"""
RequestGuard: Exception Reporting Middleware
==============================================

What:  Converts any exception raised by a route handler into a classified,
       reported and rendered response.
When:  Innermost application middleware. The rendered error response then
       flows back out through the trace, locale and terminating middleware,
       so it carries X-Trace-ID / X-Request-ID and is counted as an error.

HTTPException raised inside routing is handled earlier by the exception
handler registered in main.py; both paths end in ExceptionService.handle().
"""

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from requestguard.services.exception_service import ExceptionService


class ExceptionReportingMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: ASGIApp, service: ExceptionService):
        super().__init__(app)
        self.service = service

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        try:
            return await call_next(request)
        except Exception as exc:
            return await self.service.handle(request, exc)
