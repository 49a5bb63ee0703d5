"""Database package: async engine, session factory and the shared Redis client."""

from billing_sync.db.base import (
    Base,
    build_engine,
    build_session_factory,
    check_database,
    close_db,
    create_tables,
    get_session_factory,
    init_db,
)
from billing_sync.db.redis import build_redis, check_redis, close_redis, get_redis, init_redis

__all__ = [
    "Base",
    "build_engine",
    "build_redis",
    "build_session_factory",
    "check_database",
    "check_redis",
    "close_db",
    "close_redis",
    "create_tables",
    "get_redis",
    "get_session_factory",
    "init_db",
    "init_redis",
]
