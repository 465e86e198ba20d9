"""Database layer - engine, base classes, types, and immutability."""

from debit_kernel.db.base import UUID, Base, TimestampedBase, UTCDateTime, UUIDString
from debit_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session_factory,
    session_scope,
    transaction,
)

__all__ = [
    "get_engine",
    "get_session_factory",
    "session_scope",
    "transaction",
    "create_tables",
    "Base",
    "TimestampedBase",
    "UTCDateTime",
    "UUIDString",
    "UUID",
]
