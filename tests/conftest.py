"""Shared test fixtures: in-memory SQLite DB, async session, test client,
in-memory object storage and a scripted aggregator."""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from videorelay.core.auth import hash_password
from videorelay.dependencies import get_db
from videorelay.main import app
from videorelay.models.base import Base
from videorelay.models.user import User
from videorelay.services.aggregator import Account, set_aggregator
from videorelay.services.storage import InMemoryStorageBackend, set_storage

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

test_engine = create_async_engine(TEST_DATABASE_URL, echo=False)


# Enable foreign key enforcement in SQLite (off by default).
@event.listens_for(test_engine.sync_engine, "connect")
def _set_sqlite_pragma(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()
test_session_factory = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


class FakeAggregator:
    """Stands in for AggregatorClient. Accounts and failures are scripted per test."""

    def __init__(self):
        self.accounts: list[Account] = []
        self.list_error: Exception | None = None
        self.failures: dict[str, Exception] = {}
        self.payloads: list[dict] = []

    async def list_accounts(self, credentials):
        if self.list_error is not None:
            raise self.list_error
        return list(self.accounts)

    async def create_schedule(self, payload, credentials):
        self.payloads.append(payload)
        error = self.failures.get(payload["accountId"])
        if error is not None:
            raise error
        return {"_id": f"schedule-{payload['accountId']}"}


@pytest_asyncio.fixture(autouse=True)
async def setup_db():
    """Create all tables before each test, drop after."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(autouse=True)
def storage():
    """Route all object storage to memory for the duration of a test."""
    backend = InMemoryStorageBackend()
    set_storage(backend)
    yield backend
    set_storage(None)


@pytest.fixture(autouse=True)
def aggregator():
    """Replace the upstream aggregator so no test ever leaves the process."""
    fake = FakeAggregator()
    set_aggregator(fake)
    yield fake
    set_aggregator(None)


@pytest.fixture
def session_factory() -> async_sessionmaker[AsyncSession]:
    """The test session factory, for code that opens its own sessions."""
    return test_session_factory


@pytest_asyncio.fixture
async def db_session() -> AsyncSession:
    """Yield a test DB session."""
    async with test_session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def user(db_session: AsyncSession) -> User:
    """A committed active user."""
    u = User(email="uploader@example.com", password_hash=hash_password("Pass1234!"))
    db_session.add(u)
    await db_session.commit()
    return u


@pytest_asyncio.fixture
async def client(db_session: AsyncSession) -> AsyncClient:
    """Yield an httpx AsyncClient wired to the test DB."""

    async def _override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def auth_headers(client: AsyncClient) -> dict[str, str]:
    """Register and log in a user through the API; return its session header."""
    creds = {"email": "client@example.com", "password": "Pass1234!"}
    await client.post("/api/auth/register", json=creds)
    resp = await client.post("/api/auth/login", json=creds)
    return {"X-Session-Token": resp.json()["token"]}


@pytest_asyncio.fixture
async def file_session_factory(tmp_path) -> async_sessionmaker[AsyncSession]:
    """Sessions on a file-backed database, each on its own connection.

    The shared in-memory engine serialises every session onto one connection;
    overlapping transactions need separate ones.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'relay.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()
