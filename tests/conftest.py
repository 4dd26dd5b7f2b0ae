"""
Shared pytest fixtures: in-memory SQLite database, fixed clinic clock,
and an ASGI client wired to the same database.
"""

import os
import sys

# Settings are read at import time; point them at the test database first
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
os.environ["DATABASE_URL"] = TEST_DATABASE_URL
os.environ["APP_ENV"] = "testing"
os.environ["REDIS_URL"] = ""

# Add the project root to Python path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from datetime import date, datetime

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import clinic_booking.db.base  # noqa: F401  registers models
from clinic_booking.db.session import Base, get_session
from clinic_booking.services.query_cache import QueryCache

CLINIC_ID = "clinic-test"

# Wednesday; bookings in tests target the following Monday
FIXED_NOW = datetime(2026, 10, 14, 10, 0)
BOOKING_DATE = date(2026, 10, 19)


def pytest_configure(config):
    config.addinivalue_line("markers", "smoke: fast checks of core behaviour")
    config.addinivalue_line("markers", "essential: must pass before deploy")
    config.addinivalue_line("markers", "unit: pure functions, no database")
    config.addinivalue_line("markers", "integration: runs against the in-memory database")
    config.addinivalue_line("markers", "slow: longer running tests")


@pytest_asyncio.fixture
async def engine():
    """Fresh in-memory database per test; StaticPool keeps the single connection alive."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@pytest_asyncio.fixture
async def file_session_factory(tmp_path):
    """
    Sessions on separate connections to one SQLite file, for tests that run
    writers concurrently. SQLite serializes them through its file lock.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'booking.db'}",
        connect_args={"timeout": 15},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def query_cache():
    """Cache without Redis and without retry delays."""
    return QueryCache(retry_attempts=3, retry_delay=0)


@pytest.fixture
def clinic_id():
    return CLINIC_ID


@pytest.fixture
def fixed_now():
    return FIXED_NOW


@pytest.fixture
def booking_date():
    return BOOKING_DATE


@pytest.fixture
def patient_info():
    return {"name": "poorna  shetty", "phone": "+91 98765 43210", "email": "Poorna@Example.com"}


@pytest_asyncio.fixture
async def client(session_factory, query_cache):
    """httpx client over the ASGI app, sharing the test database."""
    from clinic_booking.main import app

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.state.query_cache = query_cache
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
