"""Public port exports for concrete adapter implementations."""

from .db_api import DbApiDriver, Dialect, MySQLDialect, PostgresDialect, SQLiteDialect

__all__ = [
    "DbApiDriver",
    "Dialect",
    "SQLiteDialect",
    "PostgresDialect",
    "MySQLDialect",
]
