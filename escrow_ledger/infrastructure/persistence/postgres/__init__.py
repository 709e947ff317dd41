"""SQL persistence adapters (PostgreSQL in production, SQLite in tests)."""

from .database import create_schema, get_engine, get_session_factory
from .store import SqlEscrowStore

__all__ = [
    "SqlEscrowStore",
    "create_schema",
    "get_engine",
    "get_session_factory",
]
