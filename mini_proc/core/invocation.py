"""Invocation binder: runs one stored-procedure call end to end.

Each call owns one fresh connection from the driver. The call binds its wire
parameters, executes, hands the executed command to the extraction registry
(or reads the return value directly) and finally writes output parameters back
into its argument list and `Ref` holders before releasing the connection.
Sequence results keep the connection until their cursor closes.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, List, Optional, Tuple, get_args, get_origin

import structlog

from .annotations import Direction, Ref, describe_annotation
from .coercion import coerce_scalar
from .cursors import AsyncRowIterator, DeferredAsyncIterator, ResultCursor, RowFactory, RowIterator
from .errors import BindingError
from .naming import validate_name
from .parameters import (
    WireParameter,
    bind_parameters,
    bind_parameters_async,
    create_parameter,
    resolve_wire_type,
)
from .shapes import ResultShape, ShapeKind

if TYPE_CHECKING:
    from .config import Configuration
    from .naming import NamingTranslator

logger = structlog.get_logger(__name__)


class CallState(str, Enum):
    """Lifecycle of one procedure call."""

    IDLE = "idle"
    BOUND = "bound"
    EXECUTED = "executed"
    MATERIALIZING = "materializing"
    CLOSED = "closed"
    ERRORED = "errored"


@dataclass(frozen=True)
class ArgumentSpec:
    """Declared metadata of one procedure argument."""

    name: str
    annotation: Any = object
    direction: Direction = Direction.INPUT
    wire_name: Optional[str] = None
    size: Optional[int] = None
    is_optional: bool = False
    nullable: bool = False

    @classmethod
    def from_annotation(
        cls,
        name: str,
        annotation: Any,
        *,
        is_optional: bool = False,
    ) -> ArgumentSpec:
        """Build a spec from a parameter annotation.

        `Annotated[..., Param(...)]`, `Out[...]`, `ReturnValue[...]`,
        `Optional[...]` and `Ref[...]` layers are peeled off; the remaining
        type picks the wire type.
        """

        if annotation is inspect.Parameter.empty:
            annotation = object
        declared = describe_annotation(annotation)
        base, nullable = declared.base, declared.nullable
        if get_origin(base) is Ref:
            args = get_args(base)
            inner = describe_annotation(args[0]) if args else None
            base = inner.base if inner is not None else object
            nullable = nullable or (inner is not None and inner.nullable)
        elif base is Ref:
            base = object
        return cls(
            name=name,
            annotation=base,
            direction=declared.param.direction or Direction.INPUT,
            wire_name=declared.param.name,
            size=declared.param.size,
            is_optional=is_optional,
            nullable=nullable,
        )


@dataclass(frozen=True)
class CallDescriptor:
    """Immutable description of one invocation.

    `parameters` is `None` for dynamic calls, which either carry
    `argument_names` (keyword call) or are bound positionally against the
    parameters derived from the procedure itself.
    """

    operation: str
    shape: Optional[ResultShape] = None
    arguments: Tuple[Any, ...] = ()
    parameters: Optional[Tuple[ArgumentSpec, ...]] = None
    argument_names: Tuple[str, ...] = ()
    wire_name: Optional[str] = None
    return_value_as_result: bool = False
    is_async: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "arguments", tuple(self.arguments))
        object.__setattr__(self, "argument_names", tuple(self.argument_names))
        if self.is_async and self.shape is not None and not self.shape.is_async:
            object.__setattr__(self, "shape", self.shape.as_async())
        if self.parameters is not None:
            object.__setattr__(self, "parameters", tuple(self.parameters))
            if len(self.parameters) != len(self.arguments):
                raise BindingError(
                    f"Procedure {self.operation!r} declares {len(self.parameters)} "
                    f"argument(s), {len(self.arguments)} given."
                )
            if self.argument_names:
                raise BindingError("Declared parameters cannot be combined with argument names.")
        if self.argument_names and len(self.argument_names) != len(self.arguments):
            raise BindingError("Every keyword argument needs exactly one name.")
        if self.wire_name is not None:
            validate_name(self.wire_name)


class ProcedureCall:
    """Mutable state of one running call.

    Extraction strategies drive the call through `execute_scalar`,
    `fetch_one` and `stream` (plus their `_async` variants); the call owns
    the connection and finishes exactly once.
    """

    def __init__(self, descriptor: CallDescriptor, configuration: Configuration) -> None:
        self.descriptor = descriptor
        self.configuration = configuration
        self.arguments: List[Any] = list(descriptor.arguments)
        self.state = CallState.IDLE
        self.wire_name = configuration.naming.resolve_wire_name(
            descriptor.operation, descriptor.wire_name
        )
        self.connection: Any = None
        self.command: Any = None
        self.parameters: List[WireParameter] = []
        self.return_parameter: Optional[WireParameter] = None
        self._cursor: Optional[ResultCursor] = None
        self._handed_off = False
        self._finished = False

    @property
    def naming(self) -> NamingTranslator:
        return self.configuration.naming

    @property
    def null(self) -> Any:
        return self.configuration.driver.null

    @property
    def intern_records(self) -> bool:
        return self.configuration.intern_records

    @property
    def shape(self) -> Optional[ResultShape]:
        return self.descriptor.shape

    @property
    def is_async(self) -> bool:
        shape = self.descriptor.shape
        return self.descriptor.is_async or (shape is not None and shape.is_async)

    @property
    def returns_return_value(self) -> bool:
        return self.descriptor.return_value_as_result and not self.configuration.ignore_return_value

    # Blocking execution.

    def run(self) -> Any:
        self._log_start()
        try:
            self._open()
            self._bind(
                bind_parameters(
                    self.descriptor,
                    self.command,
                    self.configuration.driver,
                    self.naming,
                    self.configuration.type_resolver,
                )
            )
            result = self._dispatch()
            if not self._handed_off:
                self.finish()
        except BaseException as exc:
            self._log_failure(exc)
            self.finish(exc)
            raise
        return result

    def _open(self) -> None:
        try:
            self.connection = self.configuration.driver.connect()
        except BindingError:
            raise
        except Exception as exc:
            raise BindingError(f"Cannot open a connection for {self.wire_name!r}: {exc}") from exc
        self.command = self._create_command()

    def _create_command(self) -> Any:
        try:
            command = self.connection.create_command(self.wire_name)
        except BindingError:
            raise
        except Exception as exc:
            raise BindingError(f"Cannot create command {self.wire_name!r}: {exc}") from exc
        if command is None:
            raise BindingError(f"Driver did not create command {self.wire_name!r}.")
        return command

    def _dispatch(self) -> Any:
        if self.returns_return_value:
            self.execute_non_query()
            return self._return_value()
        if self.shape is None:
            self.execute_non_query()
            return None
        return self.configuration.registry.extract(self, self.shape)

    def execute_non_query(self) -> int:
        affected = self.command.execute_non_query()
        self.state = CallState.EXECUTED
        return affected

    def execute_scalar(self) -> Any:
        value = self.command.execute_scalar()
        self.state = CallState.EXECUTED
        return value

    def open_cursor(self) -> ResultCursor:
        self._cursor = self.command.execute_reader()
        self.state = CallState.EXECUTED
        return self._cursor

    def fetch_one(self, row_factory: RowFactory[Any]) -> Any:
        """Materialize the first row of the result, or `None` without rows."""

        cursor = self.open_cursor()
        self.state = CallState.MATERIALIZING
        try:
            values = cursor.fetch()
            result = None if values is None else row_factory(cursor)(values)
        except BaseException as exc:
            cursor.close(exc)
            raise
        cursor.close()
        return result

    def stream(self, row_factory: RowFactory[Any]) -> RowIterator[Any]:
        """Lazy rows; the call finishes when the cursor closes."""

        cursor = self.open_cursor()
        self.state = CallState.MATERIALIZING
        rows: RowIterator[Any] = RowIterator(cursor, row_factory)
        cursor.on_close(self.finish)
        self._handed_off = True
        return rows

    def finish(self, error: Optional[BaseException] = None) -> None:
        """Write outputs back and release the connection, once."""

        if self._finished:
            return
        self._finished = True
        if self._cursor is not None and not self._cursor.closed:
            self._cursor.close(error)
        if error is None:
            try:
                self._write_back()
            except BaseException as exc:
                self._release(exc)
                raise
        self._release(error)

    def _release(self, error: Optional[BaseException]) -> None:
        if error is not None:
            self.state = CallState.ERRORED
        if self.connection is not None:
            self.connection.release(error)
        self._closed(error)

    # Suspending execution.

    async def run_async(self) -> Any:
        self._log_start()
        try:
            await self._open_async()
            self._bind(
                await bind_parameters_async(
                    self.descriptor,
                    self.command,
                    self.configuration.driver,
                    self.naming,
                    self.configuration.type_resolver,
                )
            )
            result = await self._dispatch_async()
            if not self._handed_off:
                await self.finish_async()
        except BaseException as exc:
            self._log_failure(exc)
            await self.finish_async(exc)
            raise
        return result

    async def _open_async(self) -> None:
        try:
            self.connection = await self.configuration.driver.connect_async()
        except BindingError:
            raise
        except Exception as exc:
            raise BindingError(f"Cannot open a connection for {self.wire_name!r}: {exc}") from exc
        self.command = self._create_command()

    async def _dispatch_async(self) -> Any:
        if self.returns_return_value:
            await self.execute_non_query_async()
            return self._return_value()
        if self.shape is None:
            await self.execute_non_query_async()
            return None
        return await self.configuration.registry.extract(self, self.shape)

    async def execute_non_query_async(self) -> int:
        affected = await self.command.execute_non_query_async()
        self.state = CallState.EXECUTED
        return affected

    async def execute_scalar_async(self) -> Any:
        value = await self.command.execute_scalar_async()
        self.state = CallState.EXECUTED
        return value

    async def open_cursor_async(self) -> ResultCursor:
        self._cursor = await self.command.execute_reader_async()
        self.state = CallState.EXECUTED
        return self._cursor

    async def fetch_one_async(self, row_factory: RowFactory[Any]) -> Any:
        cursor = await self.open_cursor_async()
        self.state = CallState.MATERIALIZING
        try:
            values = await cursor.fetch_async()
            result = None if values is None else row_factory(cursor)(values)
        except BaseException as exc:
            await cursor.aclose(exc)
            raise
        await cursor.aclose()
        return result

    async def stream_async(self, row_factory: RowFactory[Any]) -> AsyncRowIterator[Any]:
        cursor = await self.open_cursor_async()
        self.state = CallState.MATERIALIZING
        rows: AsyncRowIterator[Any] = AsyncRowIterator(cursor, row_factory)
        cursor.on_close(self.finish_async)
        self._handed_off = True
        return rows

    async def finish_async(self, error: Optional[BaseException] = None) -> None:
        if self._finished:
            return
        self._finished = True
        if self._cursor is not None and not self._cursor.closed:
            await self._cursor.aclose(error)
        if error is None:
            try:
                self._write_back()
            except BaseException as exc:
                await self._release_async(exc)
                raise
        await self._release_async(error)

    async def _release_async(self, error: Optional[BaseException]) -> None:
        if error is not None:
            self.state = CallState.ERRORED
        if self.connection is not None:
            await self.connection.release_async(error)
        self._closed(error)

    # Shared steps.

    def _bind(self, parameters: List[WireParameter]) -> None:
        if self.returns_return_value:
            self.return_parameter = self._create_return_parameter()
            parameters.insert(0, self.return_parameter)
        self.command.parameters = parameters
        self.parameters = parameters
        self.state = CallState.BOUND

    def _create_return_parameter(self) -> WireParameter:
        shape = self.shape
        target = shape.target if shape is not None and shape.kind is ShapeKind.SCALAR else object
        return create_parameter(
            self.configuration.driver,
            name=self.configuration.return_value_name,
            direction=Direction.RETURN_VALUE,
            wire_type=resolve_wire_type(target, self.configuration.type_resolver),
            size=None,
            value=None,
        )

    def _return_value(self) -> Any:
        value = self._read(self.return_parameter)
        shape = self.shape
        if shape is None or shape.kind is not ShapeKind.SCALAR:
            return value
        return coerce_scalar(value, shape.target)

    def _read(self, param: Optional[WireParameter]) -> Any:
        if param is None or param.value is self.null:
            return None
        return param.value

    def _write_back(self) -> None:
        outputs = sorted(
            (
                param
                for param in self.parameters
                if param.reads_back
                and param.argument_index is not None
                and param is not self.return_parameter
            ),
            key=lambda param: param.argument_index,
        )
        for param in outputs:
            value = self._read(param)
            slot = self.arguments[param.argument_index]
            if isinstance(slot, Ref):
                slot.value = value
            else:
                self.arguments[param.argument_index] = value

    @property
    def outputs(self) -> dict:
        """Read-back parameter values by wire name."""

        return {param.name: self._read(param) for param in self.parameters if param.reads_back}

    def _log_start(self) -> None:
        shape = self.shape
        logger.debug(
            "procedure_call_started",
            procedure=self.wire_name,
            shape=shape.kind.value if shape is not None else None,
            is_async=self.is_async,
            return_value=self.returns_return_value,
        )

    def _log_failure(self, exc: BaseException) -> None:
        logger.warning(
            "procedure_call_failed",
            procedure=self.wire_name,
            state=self.state.value,
            error_type=type(exc).__name__,
            error=str(exc),
        )

    def _closed(self, error: Optional[BaseException]) -> None:
        self.state = CallState.CLOSED
        logger.debug("procedure_call_closed", procedure=self.wire_name, failed=error is not None)


class Invoker:
    """Entry point shared by the declarative and dynamic caller surfaces."""

    def __init__(self, configuration: Configuration) -> None:
        self.configuration = configuration

    def prepare(self, descriptor: CallDescriptor) -> ProcedureCall:
        return ProcedureCall(descriptor, self.configuration)

    def invoke(self, descriptor: CallDescriptor) -> Any:
        """Run a call.

        Returns the result for blocking calls, a coroutine for `async` calls
        and a `DeferredAsyncIterator` for async-item sequences requested from
        a blocking call.
        """

        call = self.prepare(descriptor)
        if descriptor.is_async:
            return call.run_async()
        if call.is_async:
            return DeferredAsyncIterator(call.run_async())
        return call.run()
