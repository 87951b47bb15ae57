"""
RequestGuard: Trace Context Tests
===================================

What:  Session-stable trace id, per-request request id, response headers.
"""

import uuid

import pytest


class TestTraceContext:

    @pytest.mark.asyncio
    async def test_headers_present(self, test_client, app_settings):
        response = await test_client.get("/ok")

        assert uuid.UUID(response.headers["X-Trace-ID"])
        assert uuid.UUID(response.headers["X-Request-ID"])
        assert response.headers["X-App-Version"] == app_settings.app_version
        assert "X-ID" not in response.headers

    @pytest.mark.asyncio
    async def test_trace_id_stable_across_session(self, test_client):
        first = await test_client.get("/ok")
        second = await test_client.get("/ok")

        assert first.headers["X-Trace-ID"] == second.headers["X-Trace-ID"]
        assert first.headers["X-Request-ID"] != second.headers["X-Request-ID"]

    @pytest.mark.asyncio
    async def test_new_session_gets_new_trace_id(self, test_client):
        first = await test_client.get("/ok")
        test_client.cookies.clear()
        second = await test_client.get("/ok")

        assert first.headers["X-Trace-ID"] != second.headers["X-Trace-ID"]

    @pytest.mark.asyncio
    async def test_error_responses_carry_ids(self, test_client):
        response = await test_client.get("/api/boom")

        assert response.status_code == 500
        assert "X-Trace-ID" in response.headers
        assert "X-Request-ID" in response.headers

    @pytest.mark.asyncio
    async def test_identity_header_for_authenticated_user(self, test_client):
        await test_client.post("/login")
        response = await test_client.get("/ok")

        assert response.headers["X-ID"] == "42"
