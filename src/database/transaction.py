"""Unit-of-work boundary for the hierarchy store.

A TransactionManager opens one session transaction for the lifetime of
an ``async with`` block. Leaving the block normally commits; leaving it
by any exception, task cancellation included, rolls back. Sessions handed
in by the caller are used but never closed.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy.ext.asyncio import AsyncSession, AsyncSessionTransaction, async_sessionmaker

from database.async_engine import get_async_session_factory

logger = logging.getLogger(__name__)


class TransactionManager:
    """
    Commit-or-rollback wrapper around one session.

    Usage:
        async with TransactionManager(session_factory) as session:
            session.add(row)
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        session: Optional[AsyncSession] = None,
    ):
        self._session_factory = session_factory
        self._session = session
        self._owns_session = session is None
        self._transaction: Optional[AsyncSessionTransaction] = None

    @property
    def session(self) -> Optional[AsyncSession]:
        return self._session

    @property
    def is_active(self) -> bool:
        return self._transaction is not None and self._transaction.is_active

    async def __aenter__(self) -> AsyncSession:
        if self._transaction is not None:
            raise RuntimeError("Transaction already active")
        if self._session is None:
            factory = self._session_factory or get_async_session_factory()
            self._session = factory()
        self._transaction = await self._session.begin()
        return self._session

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        transaction, self._transaction = self._transaction, None
        try:
            if exc_type is None:
                await transaction.commit()
            else:
                logger.debug(f"Rolling back hierarchy transaction after {exc_type.__name__}")
                await transaction.rollback()
        finally:
            if self._owns_session:
                await self._session.close()
                self._session = None
        return False


@asynccontextmanager
async def transaction(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> AsyncIterator[AsyncSession]:
    """Shorthand for ``async with TransactionManager(factory) as session``."""
    async with TransactionManager(session_factory) as session:
        yield session
