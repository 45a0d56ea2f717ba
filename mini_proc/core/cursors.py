"""Cursor iteration protocol over live backend result sets.

A `ResultCursor` wraps one DB-API cursor after execution. Column metadata is
captured when the cursor is opened, before any row is read. `RowIterator`
and `AsyncRowIterator` turn a cursor into a lazy, single-pass sequence of
materialized rows; both close the cursor on exhaustion, on `close()` /
`aclose()`, on context-manager exit and when garbage collected early.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Mapping
from dataclasses import dataclass
from typing import (
    Any,
    Awaitable,
    Callable,
    Generic,
    List,
    Optional,
    Sequence,
    Set,
    Tuple,
    TypeVar,
)

import structlog

from ._async_utils import _aclose_resource, _close_resource, _maybe_await

logger = structlog.get_logger(__name__)

T = TypeVar("T")

CloseCallback = Callable[[Optional[BaseException]], Any]
RowFactory = Callable[["ResultCursor"], Callable[[Sequence[Any]], T]]

# Close tasks scheduled from finalizers, held until they finish.
_PENDING_CLOSES: Set["asyncio.Task[Any]"] = set()


def _close_finished(task: "asyncio.Task[Any]") -> None:
    _PENDING_CLOSES.discard(task)
    if task.cancelled():
        logger.warning("cursor_close_cancelled")
        return
    exc = task.exception()
    if exc is not None:
        logger.warning("cursor_close_failed", error=repr(exc))


@dataclass(frozen=True)
class ColumnSpec:
    """Name and Python type of one result column."""

    name: str
    type: Any = object


class ResultCursor:
    """Forward-only handle over the rows of one executed call.

    The cursor is closed exactly once. An optional `finalize` hook reads
    trailing driver state (output variables) from the raw cursor before it is
    closed after a clean pass. Close callbacks (output write-back,
    connection release) run after the underlying cursor is closed, in
    registration order.
    """

    def __init__(
        self,
        cursor: Any,
        columns: Sequence[ColumnSpec],
        *,
        null: Any = None,
        finalize: Optional[Callable[[Any], Any]] = None,
    ) -> None:
        self._cursor = cursor
        self._finalize = finalize
        self.columns: Tuple[ColumnSpec, ...] = tuple(columns)
        self.null = null
        self.rows_read = 0
        self._closed = False
        self._callbacks: List[CloseCallback] = []

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def column_names(self) -> List[str]:
        return [column.name for column in self.columns]

    def on_close(self, callback: CloseCallback) -> None:
        """Register a callback receiving the error that ended iteration, if any."""

        self._callbacks.append(callback)

    def _require_open(self) -> None:
        if self._closed:
            raise RuntimeError("cursor is closed")

    def _values(self, row: Any) -> Optional[Tuple[Any, ...]]:
        if row is None:
            return None
        self.rows_read += 1
        if isinstance(row, Mapping):
            return tuple(row.values())
        return tuple(row)

    def fetch(self) -> Optional[Tuple[Any, ...]]:
        """Blocking fetch of the next row's cell values, `None` at the end."""

        self._require_open()
        if not self.columns:
            return None
        row = self._cursor.fetchone()
        if inspect.isawaitable(row):
            close = getattr(row, "close", None)
            if callable(close):
                close()
            raise TypeError("cursor requires asynchronous iteration; use fetch_async()")
        return self._values(row)

    async def fetch_async(self) -> Optional[Tuple[Any, ...]]:
        """Suspending fetch of the next row's cell values, `None` at the end."""

        self._require_open()
        if not self.columns:
            return None
        row = await _maybe_await(self._cursor.fetchone())
        return self._values(row)

    def close(self, error: Optional[BaseException] = None) -> None:
        if self._closed:
            return
        self._closed = True
        if error is None and self._finalize is not None:
            try:
                self._finalize(self._cursor)
            except BaseException as exc:
                self._close(exc)
                raise
        self._close(error)

    def _close(self, error: Optional[BaseException]) -> None:
        try:
            _close_resource(self._cursor)
        finally:
            logger.debug("cursor_closed", rows_read=self.rows_read, failed=error is not None)
            for callback in self._callbacks:
                callback(error)

    async def aclose(self, error: Optional[BaseException] = None) -> None:
        if self._closed:
            return
        self._closed = True
        if error is None and self._finalize is not None:
            try:
                await _maybe_await(self._finalize(self._cursor))
            except BaseException as exc:
                await self._aclose(exc)
                raise
        await self._aclose(error)

    async def _aclose(self, error: Optional[BaseException]) -> None:
        try:
            await _aclose_resource(self._cursor)
        finally:
            logger.debug("cursor_closed", rows_read=self.rows_read, failed=error is not None)
            for callback in self._callbacks:
                await _maybe_await(callback(error))


class _RowStream(Generic[T]):
    """Shared state of the blocking and suspending row iterators."""

    def __init__(self, cursor: ResultCursor, row_factory: RowFactory[T]) -> None:
        self.cursor = cursor
        self._materialize = row_factory(cursor)

    @property
    def closed(self) -> bool:
        return self.cursor.closed


class RowIterator(_RowStream[T]):
    """Blocking, pull-based iterator of materialized rows."""

    def __iter__(self) -> RowIterator[T]:
        return self

    def __next__(self) -> T:
        if self.cursor.closed:
            raise StopIteration
        try:
            values = self.cursor.fetch()
            if values is None:
                self.cursor.close()
                raise StopIteration
            return self._materialize(values)
        except StopIteration:
            raise
        except BaseException as exc:
            self.cursor.close(exc)
            raise

    def close(self) -> None:
        """Stop iterating early and release the cursor."""

        self.cursor.close()

    def __enter__(self) -> RowIterator[T]:
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        self.cursor.close(exc)

    def __del__(self) -> None:
        cursor = getattr(self, "cursor", None)
        if cursor is not None and not cursor.closed:
            cursor.close()


class AsyncRowIterator(_RowStream[T]):
    """Suspending, pull-based iterator of materialized rows."""

    def __aiter__(self) -> AsyncRowIterator[T]:
        return self

    async def __anext__(self) -> T:
        if self.cursor.closed:
            raise StopAsyncIteration
        try:
            values = await self.cursor.fetch_async()
            if values is None:
                await self.cursor.aclose()
                raise StopAsyncIteration
            return self._materialize(values)
        except StopAsyncIteration:
            raise
        except BaseException as exc:
            await self.cursor.aclose(exc)
            raise

    async def aclose(self) -> None:
        """Stop iterating early and release the cursor."""

        await self.cursor.aclose()

    async def __aenter__(self) -> AsyncRowIterator[T]:
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        await self.cursor.aclose(exc)

    def __del__(self) -> None:
        cursor = getattr(self, "cursor", None)
        if cursor is None or cursor.closed:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("cursor_leaked", reason="no running event loop")
            return
        task = loop.create_task(cursor.aclose())
        _PENDING_CLOSES.add(task)
        task.add_done_callback(_close_finished)


class DeferredAsyncIterator(Generic[T]):
    """Async iterator whose cursor is opened by an awaitable on first pull.

    Lets a plain `def` procedure return `AsyncIterator[T]`: nothing touches
    the backend until the consumer starts `async for`.
    """

    def __init__(self, opener: Awaitable[AsyncRowIterator[T]]) -> None:
        self._opener: Optional[Awaitable[AsyncRowIterator[T]]] = opener
        self._rows: Optional[AsyncRowIterator[T]] = None
        self._closed = False

    def __aiter__(self) -> DeferredAsyncIterator[T]:
        return self

    async def __anext__(self) -> T:
        if self._closed:
            raise StopAsyncIteration
        if self._rows is None:
            opener, self._opener = self._opener, None
            try:
                self._rows = await opener  # type: ignore[misc]
            except BaseException:
                self._closed = True
                raise
        return await self._rows.__anext__()

    async def aclose(self) -> None:
        self._closed = True
        if self._rows is not None:
            await self._rows.aclose()
        elif self._opener is not None:
            close = getattr(self._opener, "close", None)
            if callable(close):
                close()
            self._opener = None

    async def __aenter__(self) -> DeferredAsyncIterator[T]:
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        await self.aclose()

    def __del__(self) -> None:
        opener = getattr(self, "_opener", None)
        close = getattr(opener, "close", None)
        if callable(close):
            close()
