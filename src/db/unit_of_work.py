"""
Unit of Work over an AsyncSession.

Every transactional mutation in the version engine goes through this
interface: reads, writes, savepoint-scoped atomic blocks, commit and abort.
Services never touch the session's transaction directly, so atomicity of
multi-row changes (version + deltas + branch head, or a rollback's state
replacement) is enforced in one place.
"""
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy.engine import Result
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.base import Executable


class UnitOfWork:
    """Transactional facade used by all version services."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def read(self, statement: Executable) -> Result[Any]:
        """Execute a read-only statement and return its result."""
        return await self.session.execute(statement)

    async def write(self, *items: object) -> None:
        """
        Stage writes and flush them.

        ORM instances are added to the session; DML statements (insert,
        update, delete) are executed. Everything is flushed before returning
        so database constraints fire inside the caller's atomic block.
        """
        for item in items:
            if isinstance(item, Executable):
                await self.session.execute(item)
            else:
                self.session.add(item)
        await self.session.flush()

    @asynccontextmanager
    async def atomic(self) -> AsyncIterator["UnitOfWork"]:
        """
        Run a block inside a savepoint.

        If the block raises, only the savepoint is rolled back; work staged
        earlier in the unit of work is kept.
        """
        async with self.session.begin_nested():
            yield self

    async def commit(self) -> None:
        """Commit everything staged so far."""
        await self.session.commit()

    async def abort(self) -> None:
        """Roll back everything staged since the last commit."""
        await self.session.rollback()
