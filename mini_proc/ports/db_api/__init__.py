"""DB-API driver adapter and dialect exports."""

from .dialects import CompiledCall, Dialect, MySQLDialect, PostgresDialect, SQLiteDialect
from .driver import DbApiCommand, DbApiConnection, DbApiDriver

__all__ = [
    "CompiledCall",
    "DbApiCommand",
    "DbApiConnection",
    "DbApiDriver",
    "Dialect",
    "MySQLDialect",
    "PostgresDialect",
    "SQLiteDialect",
]
