"""Shared plumbing for the SQLAlchemy repositories"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from domain.exceptions import DomainException, PersistenceError, TransientPersistenceError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _is_transient(error: BaseException) -> bool:
    if isinstance(error, (asyncio.TimeoutError, OperationalError)):
        return True
    return isinstance(error, DBAPIError) and error.connection_invalidated


class SQLAlchemyRepository:
    """Base class: one session and transaction per repository call

    Storage exceptions never leave a repository. Timeouts and dropped
    connections are retried once, then raised as TransientPersistenceError;
    any other SQLAlchemyError becomes PersistenceError.
    """

    max_attempts = 2

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], query_timeout: Optional[float] = None):
        self._session_factory = session_factory
        self._query_timeout = query_timeout

    async def _run(self, operation: str, work: Callable[[AsyncSession], Awaitable[T]]) -> T:
        attempt = 0
        while True:
            attempt += 1
            try:
                return await asyncio.wait_for(self._in_transaction(work), self._query_timeout)
            except DomainException:
                raise
            except (asyncio.TimeoutError, SQLAlchemyError) as e:
                if not _is_transient(e):
                    logger.error(f"{operation} failed: {e}", exc_info=True)
                    raise PersistenceError(operation) from e
                if attempt >= self.max_attempts:
                    logger.error(f"{operation} failed after {attempt} attempts: {e!r}", exc_info=True)
                    raise TransientPersistenceError(operation, f"Storage unavailable during {operation}") from e
                logger.warning(f"{operation} hit a transient failure ({e!r}), retrying")

    async def _in_transaction(self, work: Callable[[AsyncSession], Awaitable[T]]) -> T:
        async with self._session_factory() as session:
            async with session.begin():
                return await work(session)
