"""
RequestGuard: Exception Hierarchy & Classification
====================================================

What:  Application exceptions with a user-facing message, an HTTP status and
       a per-instance error id, plus the rules that turn any exception into
       one of them.
How:   Every AppError carries:
           message       internal diagnostic text (logged and reported only)
           user_message  fixed text safe to show the end user
           status_code   HTTP status used when rendering
           error_id      UUID shown to the user for support reference
           previous      wrapped cause (also chained as __cause__)
       `classify()` maps framework exceptions onto the hierarchy;
       ExceptionService reports and renders the result.

Exception Hierarchy:
    AppError                          → 500 (wraps any non-HTTP exception)
    └── HttpError                     → original status (unmapped codes)
        ├── BadRequestError           → 400
        ├── UnauthorizedError         → 401
        ├── AccessDeniedError         → 404 (403 is hidden as not found)
        ├── NotFoundError             → 404
        ├── MethodNotAllowedError     → 405
        ├── SessionExpiredError       → 419
        ├── UnprocessableEntityError  → 422
        ├── TooManyRequestsError      → 429 (retryable)
        ├── InternalServerError       → 500
        ├── ServiceUnavailableError   → 503 (retryable)
        └── GatewayTimeoutError       → 504 (retryable)

Passthrough:
    Request validation (422 with field errors) and authentication failures are
    never wrapped; their native handlers produce the response.
"""

import traceback
import uuid
from types import TracebackType
from typing import Any, Dict, Optional, Tuple, Type

from fastapi.exceptions import RequestValidationError
from starlette.authentication import AuthenticationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.requests import Request

from requestguard.auth import current_user

PASSTHROUGH_EXCEPTIONS: Tuple[Type[BaseException], ...] = (
    RequestValidationError,
    AuthenticationError,
)


# ══════════════════════════════════════════════════════════════════════════
# Introspection helpers
# ══════════════════════════════════════════════════════════════════════════


def exception_origin(
    exc: BaseException, tb: Optional[TracebackType] = None
) -> Tuple[Optional[str], Optional[int]]:
    """File and line where `exc` was raised, or (None, None) if never raised."""
    tb = tb or exc.__traceback__
    if tb is None:
        return None, None
    frame = traceback.extract_tb(tb)[-1]
    return frame.filename, frame.lineno


def exception_code(exc: BaseException) -> int:
    if isinstance(exc, AppError):
        return exc.code
    if isinstance(exc, StarletteHTTPException):
        return exc.status_code
    code = getattr(exc, "code", None)
    return code if isinstance(code, int) else 0


def exception_trace(exc: BaseException, tb: Optional[TracebackType] = None) -> str:
    """Formatted traceback of `exc` alone (its cause is reported separately)."""
    return "".join(
        traceback.format_exception(type(exc), exc, tb or exc.__traceback__, chain=False)
    )


def describe_exception(
    exc: Optional[BaseException], tb: Optional[TracebackType] = None
) -> Optional[Dict[str, Any]]:
    if exc is None:
        return None
    file, line = exception_origin(exc, tb)
    return {
        "class": type(exc).__name__,
        "message": str(exc),
        "file": file,
        "line": line,
        "code": exception_code(exc),
    }


def _session_value(request: Request, key: str) -> Optional[str]:
    if "session" in request.scope:
        value = request.session.get(key)
        if value:
            return value
    return getattr(request.state, key, None)


# ══════════════════════════════════════════════════════════════════════════
# Base
# ══════════════════════════════════════════════════════════════════════════


class AppError(Exception):
    """
    Base exception for all classified application errors.

    Lifecycle per instance:
        Created → (Translated) → Reported (at most once) → Rendered
    """

    status_code: int = 500
    user_message: str = "An application error occurred. Please try again."

    def __init__(
        self,
        message: str = "",
        code: int = 0,
        previous: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.previous = previous
        if previous is not None:
            self.__cause__ = previous
        self.error_id = str(uuid.uuid4())
        self.reported = False

    def is_retryable(self) -> bool:
        return False

    def origin_traceback(self) -> Optional[TracebackType]:
        """
        Traceback locating this error.

        Wrappers built by classify() are never raised themselves; they borrow
        the traceback of the exception they wrap.
        """
        if self.__traceback__ is None and self.previous is not None:
            return self.previous.__traceback__
        return self.__traceback__

    def context(self, request: Optional[Request] = None) -> Dict[str, Any]:
        """
        Structured context blob stored with the report.

        User details are limited to id/name/email.
        """
        request_block: Dict[str, Any] = {
            "method": None,
            "uri": None,
            "ip": None,
            "user_agent": None,
            "full_url": None,
        }
        user_block: Dict[str, Any] = {"id": None, "name": None, "email": None}
        trace_id = request_id = None

        if request is not None:
            uri = request.url.path
            if request.url.query:
                uri = f"{uri}?{request.url.query}"
            request_block = {
                "method": request.method,
                "uri": uri,
                "ip": getattr(request.state, "client_ip", None)
                or (request.client.host if request.client else None),
                "user_agent": request.headers.get("user-agent"),
                "full_url": str(request.url),
            }
            user = current_user(request)
            if user is not None:
                user_block = user.only("id", "name", "email")
            trace_id = _session_value(request, "trace_id")
            request_id = _session_value(request, "request_id")

        return {
            "request": request_block,
            "status_code": self.status_code,
            "error_id": self.error_id,
            "correlation_id": trace_id,
            "request_id": request_id,
            "user": user_block,
            "actual_exception": describe_exception(self, self.origin_traceback()),
            "previous_exception": describe_exception(self.previous),
        }

    def report_fields(self, request: Optional[Request] = None) -> Dict[str, Any]:
        """Exception-specific columns of an ExceptionReport row."""
        previous = self.previous
        tb = self.origin_traceback()
        file, line = exception_origin(self, tb)
        previous_file, previous_line = (
            exception_origin(previous) if previous is not None else (None, None)
        )
        context = self.context(request)
        user = context["user"]

        return {
            "exception_class": type(self).__name__,
            "message": self.message,
            "user_message": self.user_message,
            "file": file,
            "line": line,
            "code": self.code,
            "status_code": self.status_code,
            "error_id": self.error_id,
            "correlation_id": context["correlation_id"],
            "request_id": context["request_id"],
            "user_id": str(user["id"]) if user["id"] is not None else None,
            "is_retryable": self.is_retryable(),
            "stack_trace": exception_trace(self, tb),
            "context": context,
            "previous_exception_class": type(previous).__name__ if previous is not None else None,
            "previous_message": str(previous) if previous is not None else None,
            "previous_file": previous_file,
            "previous_line": previous_line,
            "previous_code": exception_code(previous) if previous is not None else None,
            "previous_stack_trace": exception_trace(previous) if previous is not None else None,
        }

    def to_payload(self) -> Dict[str, Any]:
        """What the client is allowed to see."""
        return {
            "error_id": self.error_id,
            "message": self.user_message,
            "status_code": self.status_code,
        }


# ══════════════════════════════════════════════════════════════════════════
# HTTP variants
# ══════════════════════════════════════════════════════════════════════════


class HttpError(AppError):
    """Generic HTTP failure; also the fallback for status codes without a variant."""

    user_message = "An error occurred while processing your request. Please try again."
    default_message = "Failed to access the resource"

    def __init__(
        self,
        status_code: int,
        message: str = "",
        resource: Optional[str] = None,
        previous: Optional[BaseException] = None,
    ):
        super().__init__(message or self.default_message, status_code, previous)
        self.status_code = status_code
        self.resource = resource


class _MappedHttpError(HttpError):
    status: int = 500

    def __init__(
        self,
        message: str = "",
        resource: Optional[str] = None,
        previous: Optional[BaseException] = None,
    ):
        super().__init__(self.status, message, resource, previous)


class BadRequestError(_MappedHttpError):
    status = 400
    default_message = "Bad request"
    user_message = "Invalid request. Check the submitted data and try again."


class UnauthorizedError(_MappedHttpError):
    status = 401
    default_message = "Unauthorized"
    user_message = "Unauthorized access. Please log in to continue."


class NotFoundError(_MappedHttpError):
    status = 404
    default_message = "Resource not found"
    user_message = "The requested resource was not found."


class AccessDeniedError(_MappedHttpError):
    # Forbidden resources are indistinguishable from missing ones
    status = 404
    default_message = "Access denied"
    user_message = NotFoundError.user_message


class MethodNotAllowedError(_MappedHttpError):
    status = 405
    default_message = "Method not allowed"
    user_message = "This action is not allowed for the requested resource."


class SessionExpiredError(_MappedHttpError):
    status = 419
    default_message = "Session expired"
    user_message = "Your session has expired. Please refresh the page and log in again."


class UnprocessableEntityError(_MappedHttpError):
    status = 422
    default_message = "Unprocessable entity"
    user_message = "The request could not be processed. Check the submitted data and try again."


class TooManyRequestsError(_MappedHttpError):
    status = 429
    default_message = "Too many requests"
    user_message = "Too many requests. Please wait a moment and try again."

    def is_retryable(self) -> bool:
        return True


class InternalServerError(_MappedHttpError):
    status = 500
    default_message = "Internal server error"
    user_message = "An internal error occurred. Please try again later."


class ServiceUnavailableError(_MappedHttpError):
    status = 503
    default_message = "Service unavailable"
    user_message = "The service is temporarily unavailable. Please try again later."

    def is_retryable(self) -> bool:
        return True


class GatewayTimeoutError(_MappedHttpError):
    status = 504
    default_message = "Gateway Timeout"
    user_message = "The service is taking too long to respond. Please try again later."

    def is_retryable(self) -> bool:
        return True


STATUS_VARIANTS: Dict[int, Type[_MappedHttpError]] = {
    400: BadRequestError,
    401: UnauthorizedError,
    403: AccessDeniedError,
    404: NotFoundError,
    405: MethodNotAllowedError,
    419: SessionExpiredError,
    422: UnprocessableEntityError,
    429: TooManyRequestsError,
    500: InternalServerError,
    503: ServiceUnavailableError,
    504: GatewayTimeoutError,
}


# ══════════════════════════════════════════════════════════════════════════
# Classification
# ══════════════════════════════════════════════════════════════════════════


def http_error_for_status(
    status_code: int,
    previous: Optional[BaseException] = None,
    resource: Optional[str] = None,
) -> HttpError:
    """Total mapping: every status code yields a variant or the generic HttpError."""
    variant = STATUS_VARIANTS.get(status_code)
    if variant is None:
        return HttpError(status_code, resource=resource, previous=previous)
    return variant(resource=resource, previous=previous)


def classify(exc: BaseException, resource: Optional[str] = None) -> Optional[AppError]:
    """
    Translate any exception into an AppError.

    Returns None for passthrough exceptions (validation, authentication),
    which keep their framework-native handling.
    """
    if isinstance(exc, PASSTHROUGH_EXCEPTIONS):
        return None
    if isinstance(exc, AppError):
        return exc
    if isinstance(exc, StarletteHTTPException):
        return http_error_for_status(exc.status_code, previous=exc, resource=resource)
    return AppError(str(exc), exception_code(exc), previous=exc)
