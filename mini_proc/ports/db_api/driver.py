"""DB-API adapter implementing the core driver, connection and command ports."""

from __future__ import annotations

import inspect
from collections.abc import Mapping
from typing import Any, Callable, List, Optional, Sequence

import structlog

from ...core._async_utils import _aclose_resource, _close_resource, _maybe_await
from ...core.annotations import Direction
from ...core.cursors import ColumnSpec, ResultCursor
from ...core.errors import BindingError
from ...core.parameters import WireParameter, WireType
from .dialects import CompiledCall, Dialect

logger = structlog.get_logger(__name__)


def _cells(row: Any) -> tuple:
    if row is None:
        return ()
    if isinstance(row, Mapping):
        return tuple(row.values())
    return tuple(row)


def _first_cell(row: Any) -> Any:
    cells = _cells(row)
    return cells[0] if cells else None


class DbApiDriver:
    """Driver port over any PEP 249 connection factory.

    `connect` returns a DB-API connection (or an awaitable of one for async
    drivers such as aiosqlite, psycopg async or aiomysql). Every call gets a
    fresh connection from it.
    """

    def __init__(
        self,
        connect: Callable[[], Any],
        dialect: Optional[Dialect] = None,
        *,
        null: Any = None,
    ) -> None:
        self._connect = connect
        self.dialect = dialect or Dialect()
        self.null = null

    def connect(self) -> DbApiConnection:
        conn = self._connect()
        if inspect.isawaitable(conn):
            close = getattr(conn, "close", None)
            if callable(close):
                close()
            raise BindingError("Connection factory is asynchronous; call the procedure with async.")
        return DbApiConnection(conn, self)

    async def connect_async(self) -> DbApiConnection:
        conn = await _maybe_await(self._connect())
        return DbApiConnection(conn, self)

    def create_parameter(
        self,
        *,
        name: str,
        direction: Direction,
        wire_type: WireType,
        size: Optional[int],
        value: Any,
    ) -> WireParameter:
        if not self.dialect.supports(direction):
            raise BindingError(
                f"{self.dialect.name} dialect cannot carry {direction.value} parameter {name!r}."
            )
        return WireParameter(
            name=name,
            direction=direction,
            wire_type=wire_type,
            size=size,
            value=value,
        )


class DbApiConnection:
    """Connection owned by one call: commit or rollback, then close, once."""

    def __init__(self, conn: Any, driver: DbApiDriver) -> None:
        self.conn = conn
        self.driver = driver
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def create_command(self, procedure: str) -> DbApiCommand:
        if self._released:
            raise RuntimeError("connection is released")
        return DbApiCommand(self, procedure)

    def release(self, error: Optional[BaseException] = None) -> None:
        if self._released:
            return
        self._released = True
        try:
            if error is None:
                try:
                    self.conn.commit()
                except BaseException:
                    self.conn.rollback()
                    raise
            else:
                self.conn.rollback()
        finally:
            _close_resource(self.conn)
            logger.debug("connection_released", committed=error is None)

    async def release_async(self, error: Optional[BaseException] = None) -> None:
        if self._released:
            return
        self._released = True
        try:
            if error is None:
                try:
                    await _maybe_await(self.conn.commit())
                except BaseException:
                    await _maybe_await(self.conn.rollback())
                    raise
            else:
                await _maybe_await(self.conn.rollback())
        finally:
            await _aclose_resource(self.conn)
            logger.debug("connection_released", committed=error is None)


class DbApiCommand:
    """Stored-procedure command compiled by the driver's dialect."""

    def __init__(self, connection: DbApiConnection, procedure: str) -> None:
        self.connection = connection
        self.procedure = procedure
        self.parameters: List[WireParameter] = []
        self._used_callproc = False

    @property
    def dialect(self) -> Dialect:
        return self.connection.driver.dialect

    @property
    def null(self) -> Any:
        return self.connection.driver.null

    def _return_parameter(self) -> Optional[WireParameter]:
        for param in self.parameters:
            if param.direction is Direction.RETURN_VALUE:
                return param
        return None

    def _set_return_value(self, value: Any) -> None:
        for param in self.parameters:
            if param.direction is Direction.RETURN_VALUE:
                param.value = value

    def _outputs(self) -> List[WireParameter]:
        return [param for param in self.parameters if param.direction is Direction.OUTPUT]

    def _columns(self, cursor: Any) -> List[ColumnSpec]:
        description = getattr(cursor, "description", None) or ()
        return [
            ColumnSpec(name=column[0], type=self.dialect.column_type(column[1]))
            for column in description
        ]

    def _set_input_sizes(self, cursor: Any, compiled: CompiledCall) -> Any:
        setinputsizes = getattr(cursor, "setinputsizes", None)
        if callable(setinputsizes) and any(size is not None for size in compiled.sizes):
            return setinputsizes(compiled.sizes)
        return None

    def _should_callproc(self, cursor: Any) -> bool:
        return self.dialect.use_callproc and callable(getattr(cursor, "callproc", None))

    def _outputs_from_sequence(self, compiled: CompiledCall, result: Any) -> None:
        if not isinstance(result, Sequence) or len(result) != len(compiled.bound):
            return
        for param, value in zip(compiled.bound, result):
            if param.reads_back:
                param.value = value

    def _outputs_from_row(self, cursor: Any, row: Any) -> None:
        names = [column.name.lower() for column in self._columns(cursor)]
        cells = dict(zip(names, _cells(row)))
        for param in self._outputs():
            key = param.name.lower()
            if key in cells:
                param.value = cells[key]

    def _outputs_from_variables(self, compiled: CompiledCall, row: Any) -> None:
        for param, value in zip(compiled.bound, _cells(row)):
            param.value = value

    # Blocking execution.

    def _cursor(self) -> Any:
        cursor = self.connection.conn.cursor()
        if inspect.isawaitable(cursor):
            _close_resource(cursor)
            raise TypeError("connection is asynchronous; use the *_async command methods")
        return cursor

    def _execute(self, cursor: Any) -> None:
        returned = self._return_parameter()
        if returned is not None:
            compiled = self.dialect.compile_return_value(self.procedure, self.parameters)
            self._set_input_sizes(cursor, compiled)
            cursor.execute(compiled.sql, compiled.args)
            self._set_return_value(_first_cell(cursor.fetchone()))
            return
        compiled = self.dialect.compile_call(self.procedure, self.parameters)
        self._set_input_sizes(cursor, compiled)
        self._used_callproc = self._should_callproc(cursor)
        logger.debug("procedure_executed", procedure=self.procedure, callproc=self._used_callproc)
        if self._used_callproc:
            result = cursor.callproc(compiled.procedure, compiled.positional_args)
            self._outputs_from_sequence(compiled, result)
        else:
            cursor.execute(compiled.sql, compiled.args)

    def _read_output_variables(self, cursor: Any) -> None:
        compiled = self.dialect.output_query(self.procedure, self.parameters)
        if compiled is None:
            return
        nextset = getattr(cursor, "nextset", None)
        while callable(nextset) and nextset():
            pass
        cursor.execute(compiled.sql)
        self._outputs_from_variables(compiled, cursor.fetchone())

    def derive_parameters(self) -> List[WireParameter]:
        compiled = self.dialect.compile_derive(self.procedure)
        cursor = self._cursor()
        try:
            cursor.execute(compiled.sql, compiled.args)
            rows = cursor.fetchall()
        finally:
            _close_resource(cursor)
        return [self.dialect.derived_parameter(row) for row in rows]

    def execute_scalar(self) -> Any:
        cursor = self._cursor()
        try:
            self._execute(cursor)
            returned = self._return_parameter()
            if returned is not None:
                return returned.value
            row = cursor.fetchone() if getattr(cursor, "description", None) else None
            self._read_output_variables(cursor)
            return _first_cell(row)
        finally:
            _close_resource(cursor)

    def execute_non_query(self) -> int:
        cursor = self._cursor()
        try:
            self._execute(cursor)
            if (
                self._outputs()
                and not self._used_callproc
                and self.dialect.outputs_in_result
                and getattr(cursor, "description", None)
            ):
                self._outputs_from_row(cursor, cursor.fetchone())
            self._read_output_variables(cursor)
            rowcount = getattr(cursor, "rowcount", -1)
            return rowcount if isinstance(rowcount, int) else -1
        finally:
            _close_resource(cursor)

    def execute_reader(self) -> ResultCursor:
        cursor = self._cursor()
        try:
            self._execute(cursor)
            columns = self._columns(cursor)
        except BaseException:
            _close_resource(cursor)
            raise
        return ResultCursor(
            cursor,
            columns,
            null=self.null,
            finalize=self._read_output_variables if self._outputs() else None,
        )

    # Suspending execution.

    async def _cursor_async(self) -> Any:
        return await _maybe_await(self.connection.conn.cursor())

    async def _execute_async(self, cursor: Any) -> None:
        returned = self._return_parameter()
        if returned is not None:
            compiled = self.dialect.compile_return_value(self.procedure, self.parameters)
            await _maybe_await(self._set_input_sizes(cursor, compiled))
            await _maybe_await(cursor.execute(compiled.sql, compiled.args))
            self._set_return_value(_first_cell(await _maybe_await(cursor.fetchone())))
            return
        compiled = self.dialect.compile_call(self.procedure, self.parameters)
        await _maybe_await(self._set_input_sizes(cursor, compiled))
        self._used_callproc = self._should_callproc(cursor)
        logger.debug("procedure_executed", procedure=self.procedure, callproc=self._used_callproc)
        if self._used_callproc:
            result = await _maybe_await(cursor.callproc(compiled.procedure, compiled.positional_args))
            self._outputs_from_sequence(compiled, result)
        else:
            await _maybe_await(cursor.execute(compiled.sql, compiled.args))

    async def _read_output_variables_async(self, cursor: Any) -> None:
        compiled = self.dialect.output_query(self.procedure, self.parameters)
        if compiled is None:
            return
        nextset = getattr(cursor, "nextset", None)
        while callable(nextset) and await _maybe_await(nextset()):
            pass
        await _maybe_await(cursor.execute(compiled.sql))
        self._outputs_from_variables(compiled, await _maybe_await(cursor.fetchone()))

    async def derive_parameters_async(self) -> List[WireParameter]:
        compiled = self.dialect.compile_derive(self.procedure)
        cursor = await self._cursor_async()
        try:
            await _maybe_await(cursor.execute(compiled.sql, compiled.args))
            rows = await _maybe_await(cursor.fetchall())
        finally:
            await _aclose_resource(cursor)
        return [self.dialect.derived_parameter(row) for row in rows]

    async def execute_scalar_async(self) -> Any:
        cursor = await self._cursor_async()
        try:
            await self._execute_async(cursor)
            returned = self._return_parameter()
            if returned is not None:
                return returned.value
            row = None
            if getattr(cursor, "description", None):
                row = await _maybe_await(cursor.fetchone())
            await self._read_output_variables_async(cursor)
            return _first_cell(row)
        finally:
            await _aclose_resource(cursor)

    async def execute_non_query_async(self) -> int:
        cursor = await self._cursor_async()
        try:
            await self._execute_async(cursor)
            if (
                self._outputs()
                and not self._used_callproc
                and self.dialect.outputs_in_result
                and getattr(cursor, "description", None)
            ):
                self._outputs_from_row(cursor, await _maybe_await(cursor.fetchone()))
            await self._read_output_variables_async(cursor)
            rowcount = getattr(cursor, "rowcount", -1)
            return rowcount if isinstance(rowcount, int) else -1
        finally:
            await _aclose_resource(cursor)

    async def execute_reader_async(self) -> ResultCursor:
        cursor = await self._cursor_async()
        try:
            await self._execute_async(cursor)
            columns = self._columns(cursor)
        except BaseException:
            await _aclose_resource(cursor)
            raise
        return ResultCursor(
            cursor,
            columns,
            null=self.null,
            finalize=self._read_output_variables_async if self._outputs() else None,
        )
