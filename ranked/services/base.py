"""
Base service class for the rating engine read side.

Read services never write; their sessions are always rolled back on exit
so a query can never leave a transaction open on the shared engine.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Awaitable, Callable, TypeVar
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from ranked.utils.exceptions import RatingStorageError

logger = logging.getLogger(__name__)

T = TypeVar('T')

class BaseService:
    """Base class for read services sharing the Database session factory."""

    def __init__(self, session_factory, max_retries: int = 3):
        """
        Args:
            session_factory: Async session factory from Database class
            max_retries: Attempts for a read that hits a locked database
        """
        self.session_factory = session_factory
        self.max_retries = max_retries

    @asynccontextmanager
    async def read_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Session for read-only queries."""
        session = self.session_factory()
        try:
            yield session
        finally:
            await session.rollback()
            await session.close()

    async def run_read(self, operation: str, query: Callable[[AsyncSession], Awaitable[T]]) -> T:
        """
        Run a read query, retrying when SQLite reports the database as locked.

        Raises:
            RatingStorageError: If every attempt fails
        """
        for attempt in range(1, self.max_retries + 1):
            try:
                async with self.read_session() as session:
                    return await query(session)
            except OperationalError as e:
                if attempt == self.max_retries:
                    logger.error(f"{operation} failed after {attempt} attempts: {e}")
                    raise RatingStorageError(operation, str(e))
                logger.warning(f"Retry attempt {attempt} for {operation}: {e}")
                await asyncio.sleep(0.05 * (2 ** attempt))
