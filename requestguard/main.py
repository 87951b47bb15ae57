"""
RequestGuard: FastAPI Application Factory
===========================================

What:  Creates and configures the FastAPI application instance.
How:   Factory pattern: create_app() wires settings, the shared store, the
       rate limiter, the exception service and the middleware chain, and
       returns a configured FastAPI instance.
Who:   uvicorn (`uvicorn requestguard.main:app`) and the test suite, which
       calls create_app() with an in-memory store and a mock session factory.

Middleware chain (outermost first):
    GZip → Terminating → CORS → Session → Authentication → Locale
        → TraceContext → RequestLogging → RateLimiting → ExceptionReporting
        → Router

Exception handling:
    HTTPException (routing, explicit raises) → ExceptionService.handle
    Exception raised by the handler          → ExceptionReportingMiddleware
    Exception raised by a middleware         → ExceptionService.handle
                                               (server error layer)
    RequestValidationError                   → FastAPI's native 422

Lifecycle:
    Startup:  logging, configuration validation
    Shutdown: close the key-value store, dispose the database engine
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Callable, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.authentication import AuthenticationMiddleware
from starlette.middleware.sessions import SessionMiddleware

from requestguard import __version__
from requestguard.auth import SessionUserBackend
from requestguard.config import Settings, settings as default_settings
from requestguard.database import async_session_factory, dispose_engine
from requestguard.events import EventDispatcher, RateLimitExceeded, log_rate_limit_event
from requestguard.log_context import ContextFilter
from requestguard.middleware.exceptions import ExceptionReportingMiddleware
from requestguard.middleware.locale import LocaleMiddleware
from requestguard.middleware.logging import RequestLoggingMiddleware
from requestguard.middleware.rate_limit import RateLimitGuard, RateLimitingMiddleware
from requestguard.middleware.terminating import TerminatingMiddleware
from requestguard.middleware.trace import (
    APP_VERSION_HEADER,
    IDENTITY_HEADER,
    REQUEST_ID_HEADER,
    TRACE_ID_HEADER,
    TraceContextMiddleware,
)
from requestguard.routes import health
from requestguard.schemas.errors import ErrorResponse
from requestguard.services.cache import KeyValueStore, create_store
from requestguard.services.exception_service import (
    AppInfo,
    ExceptionService,
    unauthenticated_response,
)
from requestguard.services.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s [%(trace_id)s %(request_id)s]: %(message)s"


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging(level: str = "INFO") -> None:
    """
    Configure root logging for the whole application.

    Every record passes through ContextFilter, so the format can always
    reference %(trace_id)s and %(request_id)s ("-" outside a request).
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(ContextFilter())

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format=LOG_FORMAT,
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[handler],
        force=True,
    )

    # Third-party libraries that log every operation
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan (Startup & Shutdown)
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    config: Settings = app.state.settings

    # ── Startup ───────────────────────────────────────────────────────────
    setup_logging(config.log_level)
    logger.info("=" * 60)
    logger.info("%s %s starting up (%s)", config.app_name, config.app_version, config.app_env)

    try:
        config.validate_required_for_production()
    except ValueError as e:
        logger.error("Configuration error: %s", str(e))
        logger.error("Fix the configuration and restart the server.")

    limits = config.rate_limiting()
    for scope in limits.scopes():
        logger.info(
            "Rate limit %s: %s, %d per %ds",
            scope.name,
            "enabled" if scope.enabled else "disabled",
            scope.max_events,
            scope.decay_seconds,
        )
    logger.info("=" * 60)

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    logger.info("%s shutting down...", config.app_name)
    await app.state.store.close()
    await dispose_engine()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def register_exception_handlers(app: FastAPI, service: ExceptionService) -> None:
    """
    Route framework-level exceptions through the ExceptionService.

    RequestValidationError keeps FastAPI's default handler (422 with field
    errors), which is the passthrough behaviour we want.
    """

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        return await service.handle(request, exc)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        """Last resort for exceptions raised outside the route handler."""
        return await service.handle(request, exc)


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app(
    settings: Optional[Settings] = None,
    *,
    store: Optional[KeyValueStore] = None,
    session_factory: Optional[Callable[[], AsyncSession]] = None,
    dispatcher: Optional[EventDispatcher] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings:        Defaults to the environment-loaded singleton.
        store:           Shared counter store; built from REDIS_URL if omitted.
        session_factory: Session factory for exception reports.
        dispatcher:      Event dispatcher; a fresh one with the logging
                         subscriber if omitted.
    """
    config = settings or default_settings
    store = store if store is not None else create_store(config)
    session_factory = session_factory or async_session_factory

    if dispatcher is None:
        dispatcher = EventDispatcher()
        dispatcher.listen(RateLimitExceeded, log_rate_limit_event)

    limiter = RateLimiter(store)
    guard = RateLimitGuard(limiter, config.rate_limiting(), dispatcher)
    exception_service = ExceptionService(session_factory, AppInfo.from_settings(config))
    trusted_networks = config.trusted_proxy_networks

    app = FastAPI(
        title=config.app_name,
        version=config.app_version or __version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        responses={
            404: {"model": ErrorResponse},
            500: {"model": ErrorResponse},
        },
        lifespan=lifespan,
    )

    app.state.settings = config
    app.state.store = store
    app.state.session_factory = session_factory
    app.state.dispatcher = dispatcher
    app.state.rate_limiter = limiter
    app.state.rate_limit_guard = guard
    app.state.exception_service = exception_service

    # ── Register Middleware ───────────────────────────────────────────────
    # Last added = outermost; see the chain in the module docstring.
    app.add_middleware(ExceptionReportingMiddleware, service=exception_service)
    app.add_middleware(RateLimitingMiddleware, guard=guard, trusted_networks=trusted_networks)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(TraceContextMiddleware, app_version=config.app_version)
    app.add_middleware(LocaleMiddleware, default_locale=config.app_locale)
    app.add_middleware(
        AuthenticationMiddleware,
        backend=SessionUserBackend(),
        on_error=unauthenticated_response,
    )
    app.add_middleware(
        SessionMiddleware,
        secret_key=config.session_secret_key,
        session_cookie=config.session_cookie,
        max_age=config.session_max_age,
        https_only=config.app_env == "production",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[
            TRACE_ID_HEADER,
            REQUEST_ID_HEADER,
            APP_VERSION_HEADER,
            IDENTITY_HEADER,
        ],
    )
    app.add_middleware(
        TerminatingMiddleware,
        guard=guard,
        dispatcher=dispatcher,
        trusted_networks=trusted_networks,
    )
    # Outermost: TerminatingMiddleware records uncompressed body sizes
    app.add_middleware(GZipMiddleware, minimum_size=500)

    # ── Register Exception Handlers ───────────────────────────────────────
    register_exception_handlers(app, exception_service)

    # ── Register Routes ───────────────────────────────────────────────────
    app.include_router(health.router)

    return app


# ── Application Instance ─────────────────────────────────────────────────
# uvicorn expects `requestguard.main:app` to be importable
app = create_app()
