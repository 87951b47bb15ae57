"""
RequestGuard: Locale Middleware
=================================

What:  Picks the active locale for the request.
How:   1. Authenticated user with a stored locale preference → that locale
       2. Otherwise the highest-quality Accept-Language tag
       3. Otherwise the configured default (APP_LOCALE)
       The result lives in a ContextVar (get_locale()) and request.state.locale.
When:  Outermost of the request-scoped middleware, before anything that
       formats messages or dates.
"""

import logging
from contextvars import ContextVar
from typing import List, Tuple

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from requestguard.auth import current_user
from requestguard.log_context import share_context

logger = logging.getLogger(__name__)

_locale_var: ContextVar[str] = ContextVar("locale", default="en")


def get_locale() -> str:
    return _locale_var.get()


def normalize_locale(tag: str) -> str:
    """'en-us' → 'en_US', 'PT' → 'pt'."""
    parts = tag.strip().replace("_", "-").split("-")
    language = parts[0].lower()
    if len(parts) > 1 and parts[1]:
        return f"{language}_{parts[1].upper()}"
    return language


def parse_accept_language(header: str) -> List[str]:
    """
    Locales from an Accept-Language header, best first.

    Entries with q=0, malformed q-values and the '*' wildcard are dropped.
    Ties keep header order.
    """
    weighted: List[Tuple[float, int, str]] = []
    for position, entry in enumerate(header.split(",")):
        parts = [p.strip() for p in entry.split(";")]
        tag = parts[0]
        if not tag or tag == "*":
            continue
        quality = 1.0
        for param in parts[1:]:
            if param.startswith("q="):
                try:
                    quality = float(param[2:])
                except ValueError:
                    quality = -1.0
        if quality <= 0:
            continue
        weighted.append((-quality, position, normalize_locale(tag)))
    return [tag for _, _, tag in sorted(weighted)]


class LocaleMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: ASGIApp, default_locale: str = "en"):
        super().__init__(app)
        self.default_locale = default_locale

    def resolve(self, request: Request) -> str:
        user = current_user(request)
        if user is not None and getattr(user, "locale", None):
            return user.locale

        languages = parse_accept_language(request.headers.get("accept-language", ""))
        return languages[0] if languages else self.default_locale

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        locale = self.resolve(request)
        _locale_var.set(locale)
        request.state.locale = locale
        share_context(locale=locale)
        logger.debug("Resolved locale %s for %s", locale, request.url.path)
        return await call_next(request)
