"""
RequestGuard: Events & Dispatcher
===================================

What:  Events published by the request pipeline and a tiny in-process
       dispatcher to deliver them.
Who:   RateLimitingMiddleware publishes MaxRequestsLimit / MaxRequestErrorsLimit
       when a client is blocked; TerminatingMiddleware publishes
       HttpResponseObserved for every finished response.
       Subscribers (audit, metrics, alerting) register with `listen()`.

Events:
    MaxRequestsLimit       → client exceeded the request budget
    MaxRequestErrorsLimit  → client exceeded the error budget
    HttpResponseObserved   → a response was sent (status, type, size)
"""

import inspect
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Type

from starlette.requests import Request

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitExceeded:
    """Common payload of the two limit-exceeded events."""

    ip: str
    max_events: int
    attempts: int
    decay_seconds: int
    available_in: int
    return_code: int
    return_message: Optional[str]

    scope = "requests"

    def context(self) -> Dict[str, Any]:
        return {
            "rate_limiting": {
                "type": self.scope,
                "ip": self.ip,
                "max_events": self.max_events,
                "attempts": self.attempts,
                "decay_seconds": self.decay_seconds,
                "available_in": self.available_in,
                "return_code": self.return_code,
                "return_message": self.return_message,
            }
        }


class MaxRequestsLimit(RateLimitExceeded):
    scope = "requests"


class MaxRequestErrorsLimit(RateLimitExceeded):
    scope = "errors"


@dataclass(frozen=True)
class HttpResponseObserved:
    """A response has been fully sent to the client."""

    request: Request
    status_code: int
    content_type: Optional[str]
    response_type: str
    size: int


Listener = Callable[[Any], Any]


class EventDispatcher:
    """
    Synchronous-or-async listener registry.

    Listeners run in registration order. A listener that raises stops the
    dispatch and the exception reaches the publisher.
    """

    def __init__(self) -> None:
        self._listeners: Dict[type, List[Listener]] = defaultdict(list)

    def listen(self, event_type: Type[Any], listener: Listener) -> None:
        self._listeners[event_type].append(listener)

    def listeners_for(self, event: Any) -> List[Listener]:
        """Listeners registered for the event's class or any of its bases."""
        found: List[Listener] = []
        for cls in type(event).__mro__:
            found.extend(self._listeners.get(cls, ()))
        return found

    async def dispatch(self, event: Any) -> None:
        for listener in self.listeners_for(event):
            result = listener(event)
            if inspect.isawaitable(result):
                await result


def log_rate_limit_event(event: RateLimitExceeded) -> None:
    """Default subscriber: one WARNING line per (debounced) breach."""
    logger.warning(
        "Rate limit exceeded for IP %s (%s): %d attempts, max %d per %ds, available in %ds",
        event.ip,
        event.scope,
        event.attempts,
        event.max_events,
        event.decay_seconds,
        event.available_in,
        extra=event.context(),
    )
