"""Database layer - engine, base classes and column types."""

from billing_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from billing_kernel.db.engine import (
    build_engine,
    create_tables,
    drop_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
    run_in_transaction,
    session_scope,
)
from billing_kernel.db.types import money_type, quantity_type, rate_type, short_code_type

__all__ = [
    "build_engine",
    "init_engine_from_url",
    "get_engine",
    "get_session",
    "get_session_factory",
    "session_scope",
    "reset_engine",
    "run_in_transaction",
    "create_tables",
    "drop_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
    "money_type",
    "quantity_type",
    "rate_type",
    "short_code_type",
]
