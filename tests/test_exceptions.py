"""
RequestGuard: Exception Classification Tests
==============================================

What:  Status → variant mapping, passthrough, wrapping and the canonical
       report context.

What we test:
    ✅ Every mapped status yields its variant; 403 is hidden as 404
    ✅ Unmapped statuses (451) keep their code with the generic message
    ✅ Validation and authentication failures are not wrapped
    ✅ The user message never contains the raw exception message
    ✅ Report fields include the wrapped cause
    ✅ Unraised wrappers are located by the traceback of their cause
"""

import pytest
from fastapi.exceptions import RequestValidationError
from starlette.authentication import AuthenticationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.requests import Request

from requestguard.auth import AppUser
from requestguard.exceptions import (
    AccessDeniedError,
    AppError,
    BadRequestError,
    GatewayTimeoutError,
    HttpError,
    InternalServerError,
    MethodNotAllowedError,
    NotFoundError,
    ServiceUnavailableError,
    SessionExpiredError,
    TooManyRequestsError,
    UnauthorizedError,
    UnprocessableEntityError,
    classify,
    http_error_for_status,
)


def make_request(session=None, user=None, path="/api/things", query=b"page=2") -> Request:
    scope = {
        "type": "http",
        "method": "POST",
        "scheme": "http",
        "server": ("test", 80),
        "path": path,
        "root_path": "",
        "query_string": query,
        "headers": [(b"user-agent", b"pytest"), (b"host", b"test")],
        "client": ("1.2.3.4", 5000),
    }
    if session is not None:
        scope["session"] = session
    if user is not None:
        scope["user"] = user
    return Request(scope)


def raised(exc: BaseException) -> BaseException:
    """Return `exc` with a real traceback attached."""
    try:
        raise exc
    except BaseException as e:
        return e


class TestStatusMapping:

    @pytest.mark.parametrize(
        "status, variant",
        [
            (400, BadRequestError),
            (401, UnauthorizedError),
            (404, NotFoundError),
            (405, MethodNotAllowedError),
            (419, SessionExpiredError),
            (422, UnprocessableEntityError),
            (429, TooManyRequestsError),
            (500, InternalServerError),
            (503, ServiceUnavailableError),
            (504, GatewayTimeoutError),
        ],
    )
    def test_mapped_statuses(self, status, variant):
        error = http_error_for_status(status)
        assert type(error) is variant
        assert error.status_code == status

    def test_forbidden_is_hidden_as_not_found(self):
        error = http_error_for_status(403)

        assert isinstance(error, AccessDeniedError)
        assert error.status_code == 404
        assert error.user_message == NotFoundError.user_message

    def test_unmapped_status_keeps_code(self):
        error = classify(StarletteHTTPException(status_code=451, detail="blocked in region"))

        assert type(error) is HttpError
        assert error.status_code == 451
        assert error.user_message == HttpError.user_message
        assert "blocked in region" not in error.user_message

    @pytest.mark.parametrize(
        "status, retryable",
        [(429, True), (503, True), (504, True), (500, False), (404, False), (451, False)],
    )
    def test_retryable(self, status, retryable):
        assert http_error_for_status(status).is_retryable() is retryable


class TestClassify:

    def test_validation_and_auth_pass_through(self):
        assert classify(RequestValidationError([])) is None
        assert classify(AuthenticationError("bad session")) is None

    def test_app_error_returned_as_is(self):
        error = NotFoundError("note 7 missing")
        assert classify(error) is error

    def test_unknown_exception_wrapped(self):
        original = raised(RuntimeError("db password is hunter2"))
        error = classify(original)

        assert type(error) is AppError
        assert error.status_code == 500
        assert error.previous is original
        assert error.__cause__ is original
        assert "hunter2" not in error.user_message
        assert "hunter2" not in str(error.to_payload())

    def test_http_exception_wrapped_with_resource(self):
        original = StarletteHTTPException(status_code=404)
        error = classify(original, resource="http://test/missing")

        assert isinstance(error, NotFoundError)
        assert error.previous is original
        assert error.resource == "http://test/missing"

    def test_each_instance_has_own_error_id(self):
        assert AppError("a").error_id != AppError("a").error_id


class TestReportContext:

    def test_context_without_request(self):
        context = AppError("boom").context()

        assert context["request"]["method"] is None
        assert context["user"] == {"id": None, "name": None, "email": None}
        assert context["correlation_id"] is None

    def test_context_with_request_and_user(self):
        user = AppUser(id=42, name="Ada", email="ada@example.com", locale="pt_BR")
        request = make_request(
            session={"trace_id": "trace-1", "request_id": "req-1"},
            user=user,
        )
        error = NotFoundError("gone")

        context = error.context(request)

        assert context["request"] == {
            "method": "POST",
            "uri": "/api/things?page=2",
            "ip": "1.2.3.4",
            "user_agent": "pytest",
            "full_url": "http://test/api/things?page=2",
        }
        assert context["user"] == {"id": 42, "name": "Ada", "email": "ada@example.com"}
        assert context["correlation_id"] == "trace-1"
        assert context["request_id"] == "req-1"
        assert context["status_code"] == 404
        assert context["actual_exception"]["class"] == "NotFoundError"

    def test_report_fields_include_previous(self):
        original = raised(ValueError("bad value"))
        error = raised(AppError("wrapped", previous=original))

        fields = error.report_fields()

        assert fields["exception_class"] == "AppError"
        assert fields["message"] == "wrapped"
        assert fields["line"] is not None
        assert fields["previous_exception_class"] == "ValueError"
        assert fields["previous_message"] == "bad value"
        assert "ValueError" in fields["previous_stack_trace"]
        assert "ValueError" not in fields["stack_trace"]
        assert fields["user_id"] is None
        assert fields["is_retryable"] is False

    def test_wrapper_is_located_by_its_cause(self):
        original = raised(RuntimeError("db down"))
        error = classify(original)

        fields = error.report_fields()

        assert error.__traceback__ is None
        assert (fields["file"], fields["line"]) == (
            fields["previous_file"],
            fields["previous_line"],
        )
        assert fields["file"].endswith("test_exceptions.py")
        assert "raise exc" in fields["stack_trace"]
        assert "AppError: db down" in fields["stack_trace"]
        assert error.context()["actual_exception"]["line"] == fields["line"]
