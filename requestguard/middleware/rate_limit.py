"""
RequestGuard: Rate Limiting Middleware
========================================

What:  Per-IP dual-axis rate limiter: one budget for requests, one for error
       responses.
How:   Counters live in the shared KeyValueStore (see RateLimiter):
           {requests.key}:{ip}          successful responses in the window
           {errors.key}:{ip}            responses with status >= 400
           {scope.key}:events:{ip}      limit-event suppression flag

       Pre-check (this middleware, before the handler):
           for each enabled scope, requests first:
               attempts >= max_events → publish limit event (debounced),
                                        answer return_code/return_message
               otherwise              → clear the suppression flag
       Post-check (TerminatingMiddleware, after the response is sent):
           status >= 400 → errors counter += 1, else requests counter += 1

Debounce:
    A limit event is published when event suppression is disabled or when the
    caller wins the flag for that scope/IP (SET NX, TTL events.decay_seconds).
    The flag is claimed before publishing, so concurrent requests cannot both
    publish.
    A client stuck above the limit yields one event per window, not one per
    request.

Excluded paths:
    /health is never pre-checked (load balancer checks must always get through). It is
    still counted by the post-check like any other response.
"""

import logging
from typing import Iterable, Optional, Tuple

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response
from starlette.types import ASGIApp

from requestguard.config import LimitScope, RateLimitConfig
from requestguard.events import (
    EventDispatcher,
    MaxRequestErrorsLimit,
    MaxRequestsLimit,
    RateLimitExceeded,
)
from requestguard.net import Network, client_ip
from requestguard.services.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

EVENT_TYPES = {
    "requests": MaxRequestsLimit,
    "errors": MaxRequestErrorsLimit,
}


def scope_keys(scope: LimitScope, ip: str) -> Tuple[str, str]:
    """(counter key, suppression flag key) for `scope` and `ip`."""
    return f"{scope.key}:{ip}", f"{scope.key}:events:{ip}"


class RateLimitGuard:
    """Pre-check and post-check logic shared by the two middleware."""

    def __init__(
        self,
        limiter: RateLimiter,
        config: RateLimitConfig,
        dispatcher: EventDispatcher,
    ):
        self.limiter = limiter
        self.config = config
        self.dispatcher = dispatcher

    async def pre_check(self, ip: str) -> Optional[LimitScope]:
        """The scope whose limit `ip` has reached, or None to let it through."""
        for scope in self.config.scopes():
            if not scope.enabled:
                continue

            counter_key, event_key = scope_keys(scope, ip)
            if await self.limiter.too_many_attempts(counter_key, scope.max_events):
                if await self._claim_event(event_key):
                    await self._send_event(scope, ip, counter_key)
                return scope

            await self.limiter.store.forget(event_key)

        return None

    async def post_check(self, ip: str, status_code: int) -> Optional[str]:
        """Count one finished response; returns the scope name that was hit."""
        scope = self.config.errors if status_code >= 400 else self.config.requests
        if not scope.enabled:
            return None

        counter_key, _ = scope_keys(scope, ip)
        await self.limiter.increment(counter_key, scope.decay_seconds)
        return scope.name

    async def _claim_event(self, event_key: str) -> bool:
        """True for the one caller allowed to publish in this suppression window."""
        events = self.config.events
        if not events.enabled:
            return True
        # SET NX: concurrent requests race on the flag, only one wins
        return await self.limiter.store.add(event_key, True, events.decay_seconds)

    async def _send_event(self, scope: LimitScope, ip: str, counter_key: str) -> None:
        event: RateLimitExceeded = EVENT_TYPES[scope.name](
            ip=ip,
            max_events=scope.max_events,
            attempts=await self.limiter.attempts(counter_key),
            decay_seconds=scope.decay_seconds,
            available_in=await self.limiter.available_in(counter_key),
            return_code=scope.return_code,
            return_message=scope.return_message,
        )
        try:
            await self.dispatcher.dispatch(event)
        except Exception:
            # Subscriber failures never change the blocked response
            logger.exception("Rate limit event listener failed for %s", ip)


class RateLimitingMiddleware(BaseHTTPMiddleware):
    """
    Aborts requests from clients over either budget.

    The blocked response is the configured return_code with return_message
    as a plain-text body; it does not reveal which budget tripped and carries
    no Retry-After header.
    """

    EXCLUDED_PATHS = {"/health"}

    def __init__(
        self,
        app: ASGIApp,
        guard: RateLimitGuard,
        trusted_networks: Iterable[Network] = (),
    ):
        super().__init__(app)
        self.guard = guard
        self.trusted_networks = list(trusted_networks)

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        ip = client_ip(request, self.trusted_networks)
        request.state.client_ip = ip

        if request.url.path in self.EXCLUDED_PATHS:
            return await call_next(request)

        blocked = await self.guard.pre_check(ip)
        if blocked is not None:
            logger.info(
                "Blocked %s %s from %s (%s limit)",
                request.method,
                request.url.path,
                ip,
                blocked.name,
            )
            return PlainTextResponse(blocked.return_message, status_code=blocked.return_code)

        return await call_next(request)
