"""
Database layer for the role hierarchy engine.

This module provides:
- The SQLAlchemy declarative base shared by the hierarchy tables
- Async database engine with connection pooling
- Transaction management with commit/rollback semantics
"""

from .models import Base, JSONB, utcnow
from .async_engine import (
    check_database_connection,
    close_database,
    create_engine,
    get_async_engine,
    get_async_session,
    get_async_session_factory,
    get_session_factory,
    init_database,
)
from .transaction import TransactionManager, transaction

__all__ = [
    "Base",
    "JSONB",
    "utcnow",
    "check_database_connection",
    "close_database",
    "create_engine",
    "get_async_engine",
    "get_async_session",
    "get_async_session_factory",
    "get_session_factory",
    "init_database",
    "TransactionManager",
    "transaction",
]
