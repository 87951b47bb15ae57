"""
RequestGuard: Exception Service (classify → report → render)
===============================================================

What:  Turns any exception surfacing from a request into a safe response and
       a persisted ExceptionReport row.
How:   1. classify()  framework/unknown exception → AppError variant
       2. report()    best-effort insert into exception_reports
       3. render()    status + user message + error id (JSON or HTML page)
Who:   ExceptionReportingMiddleware (handler exceptions), the HTTPException
       handler (routing errors) and the application-wide Exception handler.

Reporting contract:
    report() returns True when the row was written and False otherwise.
    Callers ignore the result: a broken database must never turn one error
    into two. Each AppError instance is reported at most once.

Rendering contract:
    Only AppError.user_message, error_id and status_code leave the server.
    The raw message, stack trace and wrapped cause stay in the report.
"""

import logging
import socket
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.templating import Jinja2Templates
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import HTTPConnection, Request
from starlette.responses import Response

from requestguard.config import Settings
from requestguard.exceptions import AppError, classify
from requestguard.models.exception_report import ExceptionReport

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates"


@dataclass(frozen=True)
class AppInfo:
    """Build and host metadata attached to every report. Resolved once."""

    app_version: Optional[str]
    app_commit: Optional[str]
    app_build_date: Optional[str]
    app_role: Optional[str]
    host_name: Optional[str]
    host_ip: Optional[str]

    @classmethod
    def from_settings(cls, config: Settings) -> "AppInfo":
        host_name: Optional[str] = None
        host_ip: Optional[str] = None
        try:
            host_name = socket.gethostname() or None
            if host_name:
                host_ip = socket.gethostbyname(host_name)
        except OSError as e:
            logger.debug("Could not resolve host address: %s", e)

        return cls(
            app_version=config.app_version or None,
            app_commit=config.app_commit or None,
            app_build_date=config.app_build_date or None,
            app_role=config.app_role or None,
            host_name=host_name,
            host_ip=host_ip,
        )

    def report_fields(self) -> Dict[str, Any]:
        return asdict(self)


def wants_json(request: Request) -> bool:
    if request.url.path.startswith("/api/"):
        return True
    accept = request.headers.get("accept", "")
    return "application/json" in accept or "+json" in accept


class ExceptionService:
    """
    Classifies, reports and renders exceptions.

    Args:
        session_factory: Callable returning an AsyncSession context manager
                         (async_sessionmaker in production, a mock in tests).
        app_info:        Build/host metadata for reports.
        templates:       Jinja2 templates for the HTML error page.
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        app_info: AppInfo,
        templates: Optional[Jinja2Templates] = None,
    ):
        self.session_factory = session_factory
        self.app_info = app_info
        self.templates = templates or Jinja2Templates(directory=str(TEMPLATES_DIR))

    # ── Report ────────────────────────────────────────────────────────────

    async def report(self, exc: AppError, request: Optional[Request] = None) -> bool:
        """Persist `exc` once. Never raises."""
        if exc.reported:
            return False
        exc.reported = True

        try:
            fields = exc.report_fields(request)
            fields.update(self.app_info.report_fields())
            async with self.session_factory() as session:
                session.add(ExceptionReport(**fields))
                await session.commit()
        except Exception as e:
            logger.debug("Exception report %s was not persisted: %s", exc.error_id, e)
            return False

        return True

    # ── Render ────────────────────────────────────────────────────────────

    def render(self, exc: AppError, request: Request) -> Response:
        if wants_json(request):
            return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

        return self.templates.TemplateResponse(
            request,
            "errors/app.html",
            {"message": exc.user_message, "code": exc.error_id},
            status_code=exc.status_code,
        )

    # ── Handle ────────────────────────────────────────────────────────────

    async def handle(self, request: Request, exc: Exception) -> Response:
        """Full pipeline for one exception: classify, log, report, render."""
        app_error = classify(exc, resource=str(request.url))
        if app_error is None:
            return await self.passthrough(request, exc)

        if app_error.status_code >= 500:
            logger.error(
                "Unhandled %s [%s]: %s",
                type(app_error).__name__,
                app_error.error_id,
                app_error.message,
                exc_info=(type(exc), exc, exc.__traceback__),
            )
        else:
            logger.warning(
                "%s [%s] %s %s: %s",
                type(app_error).__name__,
                app_error.error_id,
                request.method,
                request.url.path,
                app_error.message,
            )

        # Result ignored; see reporting contract above
        await self.report(app_error, request)
        return self.render(app_error, request)

    async def passthrough(self, request: Request, exc: Exception) -> Response:
        """Framework-native responses for validation and authentication failures."""
        if isinstance(exc, RequestValidationError):
            return await request_validation_exception_handler(request, exc)
        return unauthenticated_response(request, exc)


def unauthenticated_response(conn: HTTPConnection, exc: Exception) -> Response:
    """401 for authentication failures; also AuthenticationMiddleware's on_error."""
    return JSONResponse(
        status_code=401,
        content={"detail": str(exc) or "Unauthenticated."},
        headers={"WWW-Authenticate": "Session"},
    )
