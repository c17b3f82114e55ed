"""Async SQLAlchemy session factory."""
from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from core.config import Settings, get_settings
from db.unit_of_work import UnitOfWork


def build_engine(settings: Settings) -> AsyncEngine:
    """Create the async engine; SQLite gets no pool sizing arguments."""
    if settings.is_sqlite:
        return create_async_engine(settings.database_url, echo=False)
    return create_async_engine(
        settings.database_url,
        echo=False,
        pool_pre_ping=True,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
    )


settings = get_settings()

engine = build_engine(settings)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


def get_session_factory() -> async_sessionmaker:
    """Return the session factory for jobs that manage their own sessions."""
    return async_session_factory


async def get_async_session() -> AsyncGenerator[AsyncSession]:
    """Yield a bare async database session."""
    async with async_session_factory() as session:
        yield session


async def get_unit_of_work() -> AsyncGenerator[UnitOfWork]:
    """
    Yield a unit of work spanning one request.

    Services use flush() and savepoints internally; the commit happens once
    here at request end. If anything raises, the whole request is aborted.
    """
    async with async_session_factory() as session:
        uow = UnitOfWork(session)
        try:
            yield uow
            await uow.commit()
        except Exception:
            await uow.abort()
            raise
