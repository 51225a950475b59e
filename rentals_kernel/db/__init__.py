"""Database layer - engine, base classes, session scoping."""

from rentals_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from rentals_kernel.db.engine import (
    build_engine,
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    session_scope,
)

__all__ = [
    "build_engine",
    "get_engine",
    "get_session",
    "get_session_factory",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
]
