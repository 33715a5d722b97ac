"""
Pytest configuration and fixtures for the ConvAI relay tests.
"""
import os

# Settings are read once at import time; configure them before importing the app.
os.environ.setdefault("ENCRYPTION_KEY", "dGVzdC1rZXktZm9yLXB5dGVzdC0xMjM0NTY3ODkwMTI=")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test_convai_relay.db"
os.environ["RATE_LIMIT_STORAGE"] = "memory"
os.environ["ANALYTICS_REQUIRE_AUTH"] = "false"

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from convai_relay.database import build_engine, build_session_factory, get_db, init_db
from convai_relay.main import app
from convai_relay.services.ledger import ConversationLedger, get_ledger
from convai_relay.services.rate_limiter import FixedWindowRateLimiter, get_rate_limiter


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Fresh SQLite database per test."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'relay.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def ledger(session_factory) -> ConversationLedger:
    return ConversationLedger(session_factory)


@pytest.fixture
def rate_limiter() -> FixedWindowRateLimiter:
    return FixedWindowRateLimiter(window_ms=60_000, max_requests=60)


@pytest_asyncio.fixture
async def client(session_factory, ledger, rate_limiter) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app, bound to the per-test database."""

    async def _get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_ledger] = lambda: ledger
    app.dependency_overrides[get_rate_limiter] = lambda: rate_limiter
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as ac:
            yield ac
    finally:
        app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def auth_headers(client: AsyncClient) -> dict:
    """Authorization headers for a freshly registered admin."""
    response = await client.post(
        "/api/auth/register",
        json={"email": "admin@acme.io", "password": "password123"},
    )
    assert response.status_code == 201
    return {"Authorization": f"Bearer {response.json()['access_token']}"}
