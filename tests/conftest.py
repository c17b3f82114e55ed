"""Pytest fixtures for testing."""
import os
from collections.abc import AsyncGenerator, Callable
from uuid import UUID, uuid4

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import (
    AsyncConnection,
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from db.unit_of_work import UnitOfWork
from models import Base
from models.whiteboard import Whiteboard
from services.whiteboard_service import whiteboard_service

# Set TEST_DATABASE_URL (postgresql+asyncpg://...) to run against PostgreSQL
DEFAULT_TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


def _enable_sqlite_savepoints(engine: AsyncEngine) -> None:
    """
    Let SQLAlchemy manage transactions itself on SQLite.

    The sqlite3 driver otherwise emits its own BEGIN/COMMIT, which breaks
    SAVEPOINT handling (begin_nested).
    """

    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, _connection_record) -> None:  # noqa: ANN001
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn: Connection) -> None:
        conn.exec_driver_sql("BEGIN")


@pytest.fixture(scope="session")
def database_url() -> str:
    """
    Get the test database URL and set it in environment.

    This must be set before any app imports that trigger Settings validation.
    """
    url = os.environ.get("TEST_DATABASE_URL", DEFAULT_TEST_DATABASE_URL)
    os.environ["DATABASE_URL"] = url
    return url


@pytest.fixture
async def async_engine(database_url: str) -> AsyncGenerator[AsyncEngine]:
    """Create an async engine for testing."""
    if database_url.startswith("sqlite"):
        # One shared connection so every session sees the same in-memory database
        engine = create_async_engine(database_url, echo=False, poolclass=StaticPool)
        _enable_sqlite_savepoints(engine)
    else:
        engine = create_async_engine(database_url, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
async def db_connection(async_engine: AsyncEngine) -> AsyncGenerator[AsyncConnection]:
    """
    Create a connection with a transaction that will be rolled back after the test.

    This provides test isolation - each test runs in its own transaction
    that is rolled back, so tests don't affect each other.
    """
    async with async_engine.connect() as connection:
        transaction = await connection.begin()
        try:
            yield connection
        finally:
            await transaction.rollback()


@pytest.fixture
async def db_session(db_connection: AsyncConnection) -> AsyncGenerator[AsyncSession]:
    """
    Create an async session bound to the test transaction.

    Uses begin_nested() for savepoints, allowing the session's flush/commit
    to work within our outer test transaction.
    """
    session_factory = async_sessionmaker(
        bind=db_connection,
        class_=AsyncSession,
        expire_on_commit=False,
        join_transaction_mode="create_savepoint",
    )

    async with session_factory() as session:
        yield session


@pytest.fixture
def uow(db_session: AsyncSession) -> UnitOfWork:
    """Unit of work over the test session."""
    return UnitOfWork(db_session)


@pytest.fixture
def user_id() -> UUID:
    """Id of the acting user."""
    return uuid4()


@pytest.fixture
async def whiteboard(uow: UnitOfWork, user_id: UUID) -> Whiteboard:
    """An empty whiteboard owned by user_id."""
    return await whiteboard_service.create_whiteboard(uow, user_id, name="Test Board")


@pytest.fixture
def make_element() -> Callable[..., dict]:
    """Factory for elements in document-state form."""

    def _make(
        element_id: str,
        x: float = 0,
        y: float = 0,
        element_type: str = "rectangle",
        **overrides: object,
    ) -> dict:
        element = {
            "id": element_id,
            "element_type": element_type,
            "element_data": {"position": {"x": x, "y": y}, "width": 100, "height": 50},
            "layer_index": 0,
            "parent_id": None,
            "locked": False,
            "visible": True,
            "style_data": {"fill": "#ffffff", "stroke": "#000000"},
            "metadata": {},
        }
        element.update(overrides)
        return element

    return _make


@pytest.fixture
async def client(
    db_session: AsyncSession,
    user_id: UUID,
) -> AsyncGenerator[AsyncClient]:
    """Create a test client with unit of work override and caller identity header."""
    from api.main import app
    from db.session import get_unit_of_work

    async def override_get_unit_of_work() -> AsyncGenerator[UnitOfWork]:
        yield UnitOfWork(db_session)

    app.dependency_overrides[get_unit_of_work] = override_get_unit_of_work

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"X-User-Id": str(user_id)},
    ) as test_client:
        yield test_client

    app.dependency_overrides.clear()
