"""
Pytest configuration and fixtures for testing
"""
from datetime import datetime, timedelta, timezone

import httpx
import jwt
import pytest
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from config.settings import settings
from database import Base

# In-memory SQLite database for testing; StaticPool keeps every session on
# the same connection so they all see the same tables
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

TEST_JWT_SECRET = "test-jwt-secret-with-enough-length-for-hs256"


@pytest.fixture
async def session_factory():
    """
    Fixture that provides a session factory bound to a fresh in-memory database.

    Tables are created before the test runs and the engine is disposed after.
    """
    test_engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
    )
    async with test_engine.begin() as conn:
        # Import models to ensure they're registered with Base
        import database_models  # noqa: F401
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )

    await test_engine.dispose()


@pytest.fixture
async def test_db(session_factory):
    """Isolated AsyncSession for a single test."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def jwt_settings(monkeypatch):
    monkeypatch.setattr(settings, "jwt_secret_key", TEST_JWT_SECRET)
    monkeypatch.setattr(settings, "jwt_audience", "authenticated")


@pytest.fixture
def issue_token(jwt_settings):
    """
    Factory for access tokens shaped like the identity provider's
    (HS256, sub, email, aud "authenticated").
    """
    def issue(user_id, email=None, expires_in=timedelta(hours=1)):
        payload = {
            "sub": user_id,
            "aud": "authenticated",
            "exp": datetime.now(timezone.utc) + expires_in,
        }
        if email:
            payload["email"] = email
        return jwt.encode(payload, TEST_JWT_SECRET, algorithm="HS256")

    return issue


@pytest.fixture
def stripe_settings(monkeypatch):
    monkeypatch.setattr(settings, "stripe_secret_key", "sk_test_123")
    monkeypatch.setattr(settings, "stripe_price_id", "price_enterprise")
    monkeypatch.setattr(settings, "stripe_webhook_secret", "whsec_test")
    monkeypatch.setattr(settings, "app_url", "https://app.example.org")


@pytest.fixture
async def async_client(session_factory):
    """
    Async HTTP client fixture with test database override.
    """
    from main import app
    from database import get_db

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
