"""Database layer - engine, base classes, money helpers, immutability."""

from rosca_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from rosca_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    session_scope,
)
from rosca_kernel.db.types import ZERO, json_safe, round_money, to_money

__all__ = [
    "init_engine_from_url",
    "get_engine",
    "get_session",
    "get_session_factory",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
    "ZERO",
    "json_safe",
    "round_money",
    "to_money",
]
