"""
RequestGuard: Terminating Middleware Tests
============================================

What:  Post-response observation: response classification, counter choice,
       HttpResponseObserved payload, and failure isolation.
"""

from unittest.mock import AsyncMock

import pytest

from requestguard.events import EventDispatcher, HttpResponseObserved
from requestguard.log_context import get_context
from requestguard.middleware.terminating import TerminatingMiddleware, classify_response


def http_scope(path: str = "/x", client=("1.2.3.4", 5000)) -> dict:
    return {
        "type": "http",
        "http_version": "1.1",
        "method": "GET",
        "scheme": "http",
        "path": path,
        "raw_path": path.encode(),
        "root_path": "",
        "query_string": b"",
        "headers": [],
        "client": client,
        "server": ("test", 80),
    }


async def empty_receive():
    return {"type": "http.request", "body": b"", "more_body": False}


class TestClassifyResponse:

    @pytest.mark.parametrize(
        "content_type, expected",
        [
            ("application/json", "json"),
            ("application/problem+json", "json"),
            ("text/html; charset=utf-8", "html"),
            ("text/plain; charset=utf-8", "unknown"),
            (None, "unknown"),
            ("", "unknown"),
        ],
    )
    def test_classification(self, content_type, expected):
        assert classify_response(content_type) == expected


class TestTerminatingOverHttp:

    @pytest.mark.asyncio
    async def test_success_counts_request_and_publishes(self, app, test_client, dispatcher):
        response = await test_client.get("/api/ok")

        assert response.status_code == 200
        limiter = app.state.rate_limiter
        assert await limiter.attempts("rate-limiting-requests:127.0.0.1") == 1
        assert await limiter.attempts("rate-limiting-errors:127.0.0.1") == 0

        observed = dispatcher.of_type(HttpResponseObserved)
        assert len(observed) == 1
        assert observed[0].status_code == 200
        assert observed[0].response_type == "json"
        assert observed[0].size == len(response.content)

    @pytest.mark.asyncio
    async def test_size_is_uncompressed_when_response_is_gzipped(self, test_client, dispatcher):
        response = await test_client.get("/api/report", headers={"Accept-Encoding": "gzip"})

        assert response.status_code == 200
        assert response.headers["content-encoding"] == "gzip"

        observed = dispatcher.of_type(HttpResponseObserved)
        assert len(observed) == 1
        assert observed[0].response_type == "json"
        assert observed[0].size == len(response.content)

    @pytest.mark.asyncio
    async def test_error_status_counts_error(self, app, test_client, dispatcher):
        response = await test_client.get("/api/legal")

        assert response.status_code == 451
        limiter = app.state.rate_limiter
        assert await limiter.attempts("rate-limiting-errors:127.0.0.1") == 1
        assert await limiter.attempts("rate-limiting-requests:127.0.0.1") == 0

    @pytest.mark.asyncio
    async def test_html_error_page_classified_as_html(self, test_client, dispatcher):
        response = await test_client.get("/boom")

        assert response.status_code == 500
        observed = dispatcher.of_type(HttpResponseObserved)[0]
        assert observed.response_type == "html"
        assert observed.status_code == 500

    @pytest.mark.asyncio
    async def test_observer_failure_does_not_change_response(self, app, test_client):
        app.state.rate_limit_guard.post_check = AsyncMock(side_effect=RuntimeError("store down"))

        response = await test_client.get("/api/ok")

        assert response.status_code == 200
        assert response.json() == {"ok": True}


class TestTerminatingMiddlewareUnit:

    def setup_method(self):
        self.guard = AsyncMock()
        self.dispatcher = EventDispatcher()
        self.sent = []

    async def send(self, message):
        self.sent.append(message)

    @pytest.mark.asyncio
    async def test_records_status_type_and_size(self):
        observed = []
        self.dispatcher.listen(HttpResponseObserved, observed.append)

        async def inner(scope, receive, send):
            await send({
                "type": "http.response.start",
                "status": 201,
                "headers": [(b"content-type", b"application/json")],
            })
            await send({"type": "http.response.body", "body": b'{"a":', "more_body": True})
            await send({"type": "http.response.body", "body": b"1}"})

        middleware = TerminatingMiddleware(inner, self.guard, self.dispatcher)
        await middleware(http_scope(), empty_receive, self.send)

        assert len(self.sent) == 3
        self.guard.post_check.assert_awaited_once_with("1.2.3.4", 201)
        assert observed[0].size == 7
        assert observed[0].response_type == "json"
        assert get_context()["response"] == {
            "content-type": "application/json",
            "type": "json",
            "status": 201,
            "size": 7,
        }

    @pytest.mark.asyncio
    async def test_unhandled_exception_observed_as_500_and_reraised(self):
        async def inner(scope, receive, send):
            raise RuntimeError("middleware bug")

        middleware = TerminatingMiddleware(inner, self.guard, self.dispatcher)

        with pytest.raises(RuntimeError, match="middleware bug"):
            await middleware(http_scope(), empty_receive, self.send)

        self.guard.post_check.assert_awaited_once_with("1.2.3.4", 500)

    @pytest.mark.asyncio
    async def test_non_http_scopes_pass_through(self):
        inner = AsyncMock()
        middleware = TerminatingMiddleware(inner, self.guard, self.dispatcher)

        await middleware({"type": "lifespan"}, empty_receive, self.send)

        inner.assert_awaited_once()
        self.guard.post_check.assert_not_awaited()
