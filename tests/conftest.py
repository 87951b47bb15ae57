"""
RequestGuard: Test Configuration (conftest.py)
================================================

What:  Shared pytest fixtures for the entire test suite.
How:   Environment overrides are applied before any requestguard import so
       the module-level settings, engine and app never touch a real
       database or Redis.

Fixture Hierarchy (all function-scoped):
    ├── clock:            Controllable time source
    ├── store:            MemoryStore driven by `clock`
    ├── mock_db_session:  Mock AsyncSession (no real DB needed)
    ├── session_factory:  async-context-manager factory yielding mock_db_session
    ├── dispatcher:       EventDispatcher recording every published event
    ├── make_settings:    Settings builder ignoring .env
    ├── app:              create_app() with the fixtures above and test routes
    └── test_client:      HTTPX AsyncClient bound to `app`
"""

import os

# Override settings for testing BEFORE any requestguard imports
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test.db"
os.environ["REDIS_URL"] = ""
os.environ["SESSION_SECRET_KEY"] = "test-secret-not-real"
os.environ["LOG_LEVEL"] = "WARNING"

from typing import Any, List
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from fastapi import APIRouter, HTTPException, Request
from httpx import ASGITransport, AsyncClient

from requestguard.config import Settings
from requestguard.events import EventDispatcher
from requestguard.main import create_app
from requestguard.middleware.locale import get_locale
from requestguard.services.cache import MemoryStore


class FakeClock:
    """Time source that only moves when told to."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingDispatcher(EventDispatcher):
    def __init__(self) -> None:
        super().__init__()
        self.events: List[Any] = []

    async def dispatch(self, event: Any) -> None:
        self.events.append(event)
        await super().dispatch(event)

    def of_type(self, event_type: type) -> List[Any]:
        return [e for e in self.events if isinstance(e, event_type)]


def build_test_router() -> APIRouter:
    """Routes exercising every branch of the pipeline."""
    router = APIRouter()

    @router.get("/ok")
    async def ok():
        return {"ok": True}

    @router.get("/api/ok")
    async def api_ok():
        return {"ok": True}

    @router.get("/boom")
    async def boom():
        raise RuntimeError("db password is hunter2")

    @router.get("/api/boom")
    async def api_boom():
        raise RuntimeError("db password is hunter2")

    @router.get("/api/legal")
    async def legal():
        raise HTTPException(status_code=451, detail="blocked in region")

    @router.get("/api/forbidden")
    async def forbidden():
        raise HTTPException(status_code=403)

    @router.get("/api/items/{item_id}")
    async def item(item_id: int):
        return {"id": item_id}

    @router.get("/api/report")
    async def report():
        return {"rows": [{"id": i, "label": f"row-{i}"} for i in range(100)]}

    @router.post("/login")
    async def login(request: Request):
        request.session["user"] = {
            "id": 42,
            "name": "Ada",
            "email": "ada@example.com",
            "locale": "pt_BR",
            "timezone": "America/Sao_Paulo",
        }
        return {"ok": True}

    @router.get("/locale")
    async def locale(request: Request):
        return {"locale": get_locale(), "state": request.state.locale}

    return router


# ══════════════════════════════════════════════════════════════════════════
# Function-Scoped Fixtures
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return MemoryStore(clock=clock)


@pytest.fixture
def mock_db_session():
    """
    Provides a mock async database session.

    Usage:
        async def test_report(mock_db_session, session_factory):
            mock_db_session.commit.side_effect = OperationalError(...)
    """
    session = AsyncMock()
    session.execute = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.close = AsyncMock()
    session.add = MagicMock()
    return session


@pytest.fixture
def session_factory(mock_db_session):
    """Stands in for async_sessionmaker: `async with factory() as session`."""
    factory = MagicMock()
    factory.return_value.__aenter__.return_value = mock_db_session
    factory.return_value.__aexit__.return_value = False
    return factory


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def make_settings():
    def _make(**overrides: Any) -> Settings:
        return Settings(_env_file=None, **overrides)

    return _make


@pytest.fixture
def app_settings(make_settings):
    """Limits high enough that ordinary tests never trip them."""
    return make_settings(
        rate_limiting_requests_max_events=100,
        rate_limiting_errors_max_events=100,
        trusted_proxies="",
    )


@pytest.fixture
def app(app_settings, session_factory, dispatcher):
    application = create_app(
        app_settings,
        store=MemoryStore(),
        session_factory=session_factory,
        dispatcher=dispatcher,
    )
    application.include_router(build_test_router())
    return application


@pytest_asyncio.fixture
async def test_client(app):
    """
    Provides an async HTTP test client for endpoint testing.

    Usage:
        async def test_health(test_client):
            response = await test_client.get("/health")
            assert response.status_code == 200
    """
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
