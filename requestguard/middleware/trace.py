"""
RequestGuard: Trace Context Middleware
========================================

What:  Assigns a session-stable trace id and a fresh request id to every
       request, shares both into the log context and returns them as headers.
How:   trace_id  read from the session, created once (UUID4) if missing
       request_id new UUID4 on every request
       Both are written to the session and request.state, pushed into the
       log context, and after the handler added to the response:
           X-Trace-ID, X-Request-ID, X-App-Version, X-ID (authenticated user)
Who:   Applied to every request; must run before anything that logs or
       reports so downstream log lines and exception reports carry the ids.
"""

import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from requestguard.auth import current_user
from requestguard.log_context import share_context

TRACE_ID_HEADER = "X-Trace-ID"
REQUEST_ID_HEADER = "X-Request-ID"
APP_VERSION_HEADER = "X-App-Version"
IDENTITY_HEADER = "X-ID"


class TraceContextMiddleware(BaseHTTPMiddleware):
    """
    Requires SessionMiddleware further out in the stack; without a session
    the trace id degrades to one per request.
    """

    def __init__(self, app: ASGIApp, app_version: str = ""):
        super().__init__(app)
        self.app_version = app_version

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        session = request.session if "session" in request.scope else {}

        trace_id = session.get("trace_id") or str(uuid.uuid4())
        request_id = str(uuid.uuid4())
        session["trace_id"] = trace_id
        session["request_id"] = request_id

        request.state.trace_id = trace_id
        request.state.request_id = request_id
        share_context(trace_id=trace_id, request_id=request_id)

        response = await call_next(request)

        response.headers[TRACE_ID_HEADER] = trace_id
        response.headers[REQUEST_ID_HEADER] = request_id
        response.headers[APP_VERSION_HEADER] = self.app_version

        user = current_user(request)
        if user is not None:
            response.headers[IDENTITY_HEADER] = user.identity

        return response
