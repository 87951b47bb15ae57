"""
RequestGuard: Terminating Middleware
======================================

What:  Post-response observer. Runs once the response has been fully sent and
       can only look at it, never change it.
How:   Pure ASGI middleware wrapping `send` to record status, content type and
       body size. When the downstream app returns it:
           1. classifies the response (json / html / unknown)
           2. shares response metadata into the log context
           3. drives the rate limiter post-check (errors vs requests counter)
           4. publishes HttpResponseObserved
When:  Just inside GZip, so it sees the final response (rate-limit aborts and
       rendered error pages included) before compression. Sizes are
       uncompressed body bytes.

Failure semantics:
    Nothing raised while observing reaches the client; failures are logged.
    If the downstream app raised before starting a response, the request is
    observed as a 500 and the original exception continues outward to the
    server error handler.
"""

import logging
from typing import Iterable, Optional

from starlette.datastructures import MutableHeaders
from starlette.requests import Request
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from requestguard.events import EventDispatcher, HttpResponseObserved
from requestguard.log_context import clear_context, share_context
from requestguard.middleware.rate_limit import RateLimitGuard
from requestguard.net import Network, client_ip

logger = logging.getLogger(__name__)


def classify_response(content_type: Optional[str]) -> str:
    if not content_type:
        return "unknown"
    media_type = content_type.split(";")[0].strip().lower()
    if media_type == "application/json" or media_type.endswith("+json"):
        return "json"
    if media_type == "text/html":
        return "html"
    return "unknown"


class _ResponseRecorder:
    """Collects what went over the wire for one response."""

    def __init__(self, send: Send):
        self._send = send
        self.status_code: Optional[int] = None
        self.content_type: Optional[str] = None
        self.size = 0

    async def __call__(self, message: Message) -> None:
        if message["type"] == "http.response.start":
            self.status_code = message["status"]
            headers = MutableHeaders(raw=list(message.get("headers", [])))
            self.content_type = headers.get("content-type")
        elif message["type"] == "http.response.body":
            self.size += len(message.get("body", b""))
        await self._send(message)


class TerminatingMiddleware:
    def __init__(
        self,
        app: ASGIApp,
        guard: RateLimitGuard,
        dispatcher: EventDispatcher,
        trusted_networks: Iterable[Network] = (),
    ):
        self.app = app
        self.guard = guard
        self.dispatcher = dispatcher
        self.trusted_networks = list(trusted_networks)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        clear_context()
        recorder = _ResponseRecorder(send)
        try:
            await self.app(scope, receive, recorder)
        except Exception:
            if recorder.status_code is None:
                recorder.status_code = 500
            await self.terminate(scope, recorder)
            raise

        await self.terminate(scope, recorder)

    async def terminate(self, scope: Scope, recorder: _ResponseRecorder) -> None:
        """Observe the finished response. Never raises."""
        try:
            request = Request(scope)
            status_code = recorder.status_code or 500
            response_type = classify_response(recorder.content_type)

            trace_id = getattr(request.state, "trace_id", None)
            request_id = getattr(request.state, "request_id", None)
            if trace_id:
                share_context(trace_id=trace_id, request_id=request_id)
            share_context(
                response={
                    "content-type": recorder.content_type,
                    "type": response_type,
                    "status": status_code,
                    "size": recorder.size,
                }
            )

            ip = getattr(request.state, "client_ip", None) or client_ip(
                request, self.trusted_networks
            )
            await self.guard.post_check(ip, status_code)

            await self.dispatcher.dispatch(
                HttpResponseObserved(
                    request=request,
                    status_code=status_code,
                    content_type=recorder.content_type,
                    response_type=response_type,
                    size=recorder.size,
                )
            )
        except Exception:
            logger.exception("Terminating observer failed for %s", scope.get("path"))
