import os
from collections.abc import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Set test environment variables before importing app modules
os.environ.setdefault("DATABASE_URL", "postgresql+asyncpg://inventory:inventory@db:5432/inventory_test")
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-testing-only")
os.environ.setdefault("ADMIN_EMAILS", '["owner@example.com"]')


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


def make_mock_session(rows: list | None = None, scalar: int | None = 0):
    """Build a mock AsyncSession.

    ``execute()`` returns a result whose ``fetchall()`` yields *rows* and
    whose ``scalar()`` yields *scalar*. ``begin_nested()`` works as an async
    context manager that never swallows exceptions.
    """
    session = AsyncMock()
    result_mock = MagicMock()
    result_mock.fetchall.return_value = rows if rows is not None else []
    result_mock.scalar.return_value = scalar
    session.execute = AsyncMock(return_value=result_mock)

    nested = MagicMock()
    nested.__aenter__ = AsyncMock(return_value=None)
    nested.__aexit__ = AsyncMock(return_value=False)
    session.begin_nested = MagicMock(return_value=nested)
    return session


def make_auth_headers(
    user_id: int = 1,
    household_id: int | None = 1,
    role: str = "owner",
    email: str = "owner@example.com",
) -> dict[str, str]:
    """Create Authorization headers with a valid access token."""
    from app.services.auth_service import create_access_token

    claims = {"sub": email, "user_id": user_id, "role": role}
    if household_id is not None:
        claims["household_id"] = household_id
    token = create_access_token(data=claims)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def mock_db():
    """A mock session standing in for the request-scoped database session."""
    return make_mock_session()


@pytest_asyncio.fixture(scope="function")
async def test_app(mock_db):
    """Provide the FastAPI app with the database session replaced by a mock."""
    from app.database import get_db
    from app.main import app

    async def override_get_db():
        yield mock_db

    app.dependency_overrides[get_db] = override_get_db
    app.state.search_rate_limiter = None
    yield app
    app.dependency_overrides.clear()
    app.state.search_rate_limiter = None


@pytest_asyncio.fixture(scope="function")
async def test_client(test_app) -> AsyncGenerator[AsyncClient, None]:
    """Provide an async HTTP client bound to the test app."""
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
