"""
Test infrastructure for the Conduit API.

Strategy
--------
- SQLite in-memory via aiosqlite; StaticPool keeps every task on the one
  connection that owns the in-memory database.
- ``PRAGMA foreign_keys=ON`` is issued on connect so ON DELETE CASCADE and
  FK checks behave as they do on PostgreSQL.
- The app's ``get_db`` dependency is overridden to use the test session
  factory.
- Tables are created before and dropped after each test.
- Redis is disabled by setting ``cache._redis = None``; the cache manager
  turns every call into a miss / no-op.
- Password hashing iterations are lowered so registration stays fast.
"""
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from app.cache import cache
from app.config import settings
from app.database import Base, get_db
from app.main import app
from app.middleware import install_query_counter
from app.schemas import UserCreate
from app.services import user_service

# ---------------------------------------------------------------------------
# Test database engine: SQLite in-memory with aiosqlite
# ---------------------------------------------------------------------------

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

engine_test = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

install_query_counter(engine_test)


@event.listens_for(engine_test.sync_engine, "connect")
def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


async_session_test = async_sessionmaker(
    engine_test,
    class_=AsyncSession,
    expire_on_commit=False,
)

settings.PASSWORD_HASH_ITERATIONS = 1_000


# ---------------------------------------------------------------------------
# Dependency override: replace production get_db with the test session factory
# ---------------------------------------------------------------------------

async def override_get_db():
    async with async_session_test() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


app.dependency_overrides[get_db] = override_get_db


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture(autouse=True)
async def setup_db():
    """Create all tables before each test, drop after to guarantee isolation."""
    cache._redis = None
    async with engine_test.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine_test.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def db_session() -> AsyncSession:
    """
    Yield a live AsyncSession for calling services directly.

    Every service operation opens and commits its own transaction on it.
    """
    async with async_session_test() as session:
        yield session


@pytest.fixture
def session_factory():
    """Factory for independent sessions, used to inspect committed state."""
    return async_session_test


@pytest_asyncio.fixture
async def async_client() -> AsyncClient:
    """httpx.AsyncClient wired to the FastAPI app via ASGITransport."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest_asyncio.fixture
async def make_user(db_session: AsyncSession):
    """Register a user through the service layer and return its dict."""

    async def _make_user(username: str = "articleTestUser", email: str | None = None) -> dict:
        return await user_service.create_user(
            db_session,
            UserCreate(
                username=username,
                email=email or f"{username}@example.com",
                password="password",
                bio="This is a test bio",
                image="test-image.jpg",
            ),
        )

    return _make_user
