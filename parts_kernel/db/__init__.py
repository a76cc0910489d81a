"""Database layer - engine, base classes, and ledger immutability."""

from parts_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from parts_kernel.db.engine import (
    build_engine,
    create_tables,
    session_factory,
    session_scope,
)

__all__ = [
    "build_engine",
    "session_factory",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
]
