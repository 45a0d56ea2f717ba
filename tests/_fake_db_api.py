"""In-memory DB-API doubles that replay queued result sets."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence, Tuple


class DBNull:
    def __repr__(self) -> str:
        return "DBNull"


DB_NULL = DBNull()


@dataclass
class FakeResult:
    columns: Sequence[Tuple[str, Any]] = ()
    rows: Sequence[Sequence[Any]] = ()
    returned: Optional[Sequence[Any]] = None
    rowcount: int = -1

    @property
    def description(self) -> Optional[Tuple[Tuple[Any, ...], ...]]:
        if not self.columns:
            return None
        return tuple((name, type_code, None, None, None, None, True) for name, type_code in self.columns)


def table(columns: Sequence[Tuple[str, Any]], *rows: Sequence[Any]) -> FakeResult:
    return FakeResult(columns=columns, rows=list(rows))


@dataclass
class FakeBackend:
    """Connection factory; every statement pops the next queued result."""

    results: List[FakeResult] = field(default_factory=list)
    connections: List[Any] = field(default_factory=list)
    statements: List[Tuple[str, Any]] = field(default_factory=list)
    callprocs: List[Tuple[str, List[Any]]] = field(default_factory=list)
    fail_on_execute: Optional[BaseException] = None

    def queue(self, *results: FakeResult) -> FakeBackend:
        self.results.extend(results)
        return self

    def next_result(self) -> FakeResult:
        if self.fail_on_execute is not None:
            raise self.fail_on_execute
        if self.results:
            return self.results.pop(0)
        return FakeResult()

    def connect(self) -> FakeConnection:
        conn = FakeConnection(self)
        self.connections.append(conn)
        return conn

    async def connect_async(self) -> AsyncFakeConnection:
        conn = AsyncFakeConnection(self)
        self.connections.append(conn)
        return conn

    @property
    def cursors(self) -> List[Any]:
        return [cursor for conn in self.connections for cursor in conn.cursors]

    @property
    def last_connection(self) -> Any:
        return self.connections[-1]


class FakeCursor:
    def __init__(self, backend: FakeBackend) -> None:
        self.backend = backend
        self.description: Optional[Tuple[Tuple[Any, ...], ...]] = None
        self.rowcount = -1
        self.rows: List[Sequence[Any]] = []
        self.fetched = 0
        self.closed = False
        self.input_sizes: Optional[List[Any]] = None

    def _load(self, result: FakeResult) -> None:
        self.description = result.description
        self.rows = list(result.rows)
        self.rowcount = result.rowcount

    def execute(self, sql: str, params: Any = None) -> None:
        self.backend.statements.append((sql, params))
        self._load(self.backend.next_result())

    def callproc(self, name: str, args: Sequence[Any] = ()) -> Sequence[Any]:
        self.backend.callprocs.append((name, list(args)))
        result = self.backend.next_result()
        self._load(result)
        return list(result.returned) if result.returned is not None else list(args)

    def setinputsizes(self, sizes: List[Any]) -> None:
        self.input_sizes = sizes

    def fetchone(self) -> Optional[Sequence[Any]]:
        if self.closed:
            raise RuntimeError("cursor already closed")
        if not self.rows:
            return None
        self.fetched += 1
        return self.rows.pop(0)

    def fetchall(self) -> List[Sequence[Any]]:
        rows, self.rows = self.rows, []
        self.fetched += len(rows)
        return rows

    def close(self) -> None:
        self.closed = True


class FakeConnection:
    def __init__(self, backend: FakeBackend) -> None:
        self.backend = backend
        self.cursors: List[FakeCursor] = []
        self.commit_calls = 0
        self.rollback_calls = 0
        self.closed = False

    def cursor(self) -> FakeCursor:
        cursor = FakeCursor(self.backend)
        self.cursors.append(cursor)
        return cursor

    def commit(self) -> None:
        self.commit_calls += 1

    def rollback(self) -> None:
        self.rollback_calls += 1

    def close(self) -> None:
        self.closed = True


class AsyncFakeCursor(FakeCursor):
    async def execute(self, sql: str, params: Any = None) -> None:  # type: ignore[override]
        FakeCursor.execute(self, sql, params)

    async def callproc(self, name: str, args: Sequence[Any] = ()) -> Sequence[Any]:  # type: ignore[override]
        return FakeCursor.callproc(self, name, args)

    async def fetchone(self) -> Optional[Sequence[Any]]:  # type: ignore[override]
        return FakeCursor.fetchone(self)

    async def fetchall(self) -> List[Sequence[Any]]:  # type: ignore[override]
        return FakeCursor.fetchall(self)

    async def close(self) -> None:  # type: ignore[override]
        FakeCursor.close(self)


class AsyncFakeConnection(FakeConnection):
    async def cursor(self) -> AsyncFakeCursor:  # type: ignore[override]
        cursor = AsyncFakeCursor(self.backend)
        self.cursors.append(cursor)
        return cursor

    async def commit(self) -> None:  # type: ignore[override]
        FakeConnection.commit(self)

    async def rollback(self) -> None:  # type: ignore[override]
        FakeConnection.rollback(self)

    async def close(self) -> None:  # type: ignore[override]
        FakeConnection.close(self)
