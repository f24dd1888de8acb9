"""
Test infrastructure for the Board API.

Strategy
--------
- SQLite in-memory via aiosqlite keeps the suite self-contained; StaticPool
  makes every session share the one connection that holds the database.
- The app's get_db dependency is overridden with the test session factory.
- Tables are created before and dropped after each test.
- The lifespan does not run under ASGITransport, so the HTTP client fixture
  installs an in-memory ViewCountCache (no periodic flush) on app.state.
"""
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from board.database import Base, get_db
from board.main import app
from board.middleware import install_query_counter
from board.models import User
from board.view_cache import ViewCountCache

# ---------------------------------------------------------------------------
# Test database engine — SQLite in-memory with aiosqlite
# ---------------------------------------------------------------------------

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

engine_test = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

install_query_counter(engine_test)

async_session_test = async_sessionmaker(
    engine_test,
    class_=AsyncSession,
    expire_on_commit=False,
)


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
    async with engine_test.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine_test.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def db_session() -> AsyncSession:
    """Live AsyncSession for service-layer tests."""
    async with async_session_test() as session:
        yield session


@pytest.fixture
def session_factory() -> async_sessionmaker[AsyncSession]:
    """The test sessionmaker, for components that open their own sessions."""
    return async_session_test


@pytest.fixture
def view_cache() -> ViewCountCache:
    """In-memory write-back cache flushing into the test database on demand."""
    return ViewCountCache(async_session_test, flush_interval=0)


@pytest.fixture
def make_user():
    """
    Factory committing a user in its own session, for HTTP tests where the
    app's request sessions must see the row.
    """
    counter = {"n": 0}

    async def _make(nickname: str | None = None, withdrawn: bool = False) -> int:
        counter["n"] += 1
        nickname = nickname or f"member{counter['n']}"
        async with async_session_test() as session:
            user = User(email=f"{nickname}@example.com", nickname=nickname)
            if withdrawn:
                user.soft_delete()
            session.add(user)
            await session.commit()
            return user.id

    return _make


@pytest_asyncio.fixture
async def async_client(view_cache: ViewCountCache) -> AsyncClient:
    """httpx.AsyncClient wired to the FastAPI app via ASGITransport."""
    app.state.view_cache = view_cache
    app.state.image_deleter = None
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
