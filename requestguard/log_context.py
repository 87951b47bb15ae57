"""
RequestGuard: Shared Log Context
==================================

What:  Per-request key/value context stamped onto every log record.
How:   A ContextVar holds a dict for the current request; ContextFilter copies
       trace_id / request_id (and the whole dict) onto each LogRecord so the
       format string can reference %(trace_id)s and %(request_id)s.
Who:   Written by the trace, locale and terminating middleware; read by every
       logger once setup_logging() has installed the filter.

ContextVar (not threading.local): requests run as concurrent coroutines on
the same thread.
"""

import logging
from contextvars import ContextVar
from typing import Any, Dict, Optional

_log_context: ContextVar[Optional[Dict[str, Any]]] = ContextVar("log_context", default=None)


def get_context() -> Dict[str, Any]:
    """Return a copy of the current request's log context."""
    return dict(_log_context.get() or {})


def share_context(**values: Any) -> None:
    """
    Merge values into the ambient log context.

    Nested dicts are replaced, not deep-merged, matching how callers share
    whole blocks ("response", "request", ...).
    """
    merged = get_context()
    merged.update(values)
    _log_context.set(merged)


def clear_context() -> None:
    _log_context.set(None)


class ContextFilter(logging.Filter):
    """Stamps trace_id, request_id and the shared context onto log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        context = _log_context.get() or {}
        record.trace_id = context.get("trace_id", "-")
        record.request_id = context.get("request_id", "-")
        record.context = context
        return True
