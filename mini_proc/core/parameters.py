"""Parameter binder: turns call arguments into ordered wire parameters."""

from __future__ import annotations

import datetime as dt
import uuid
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Sequence, get_origin

import structlog

from .annotations import Direction, Ref
from .errors import BindingError
from .naming import NamingTranslator

if TYPE_CHECKING:
    from .contracts import AsyncCommandPort, CommandPort, DriverPort
    from .invocation import CallDescriptor

logger = structlog.get_logger(__name__)


class WireType(str, Enum):
    """Backend-neutral wire type tag of a parameter."""

    STRING = "string"
    INT64 = "int64"
    DOUBLE = "double"
    DECIMAL = "decimal"
    BOOLEAN = "boolean"
    BINARY = "binary"
    DATE = "date"
    TIME = "time"
    DATETIME = "datetime"
    INTERVAL = "interval"
    GUID = "guid"
    JSON = "json"
    OBJECT = "object"


TypeResolver = Callable[[Any], Optional[WireType]]

WIRE_TYPES: Dict[type, WireType] = {
    bool: WireType.BOOLEAN,
    int: WireType.INT64,
    float: WireType.DOUBLE,
    Decimal: WireType.DECIMAL,
    str: WireType.STRING,
    bytes: WireType.BINARY,
    bytearray: WireType.BINARY,
    memoryview: WireType.BINARY,
    dt.datetime: WireType.DATETIME,
    dt.date: WireType.DATE,
    dt.time: WireType.TIME,
    dt.timedelta: WireType.INTERVAL,
    uuid.UUID: WireType.GUID,
    dict: WireType.JSON,
    list: WireType.JSON,
}


@dataclass
class WireParameter:
    """One named, directed value passed to or read back from the backend."""

    name: str
    direction: Direction = Direction.INPUT
    wire_type: WireType = WireType.STRING
    size: Optional[int] = None
    value: Any = None
    argument_index: Optional[int] = None

    @property
    def is_input(self) -> bool:
        return self.direction is Direction.INPUT

    @property
    def reads_back(self) -> bool:
        return self.direction is not Direction.INPUT


def resolve_wire_type(declared: Any, resolver: TypeResolver | None = None) -> WireType:
    """Resolve the wire type tag for a declared (already unwrapped) type.

    Lookup order: primitive table (walking the MRO so `datetime` wins over
    `date` and `str` enums map to `STRING`), enum member value type, the
    injectable resolver, then `STRING`.
    """

    origin = get_origin(declared)
    candidate = origin if isinstance(origin, type) else declared
    if isinstance(candidate, type):
        for base in candidate.__mro__:
            wire_type = WIRE_TYPES.get(base)
            if wire_type is not None:
                return wire_type
        if issubclass(candidate, Enum):
            members = list(candidate)
            if members:
                return resolve_wire_type(type(members[0].value), resolver)
    if resolver is not None:
        resolved = resolver(declared)
        if resolved is not None:
            return WireType(resolved)
    return WireType.STRING


def bind_parameters(
    call: CallDescriptor,
    command: CommandPort,
    driver: DriverPort,
    naming: NamingTranslator,
    type_resolver: TypeResolver | None = None,
) -> List[WireParameter]:
    """Build the wire parameter list of a call, deriving it when needed."""

    if call.parameters is None and not call.argument_names:
        try:
            derived = command.derive_parameters()
        except BindingError:
            raise
        except Exception as exc:
            raise BindingError(
                f"Cannot derive parameters of procedure {command.procedure!r}: {exc}"
            ) from exc
        return _assign_positional(call, derived)
    return _build_parameters(call, driver, naming, type_resolver)


async def bind_parameters_async(
    call: CallDescriptor,
    command: AsyncCommandPort,
    driver: DriverPort,
    naming: NamingTranslator,
    type_resolver: TypeResolver | None = None,
) -> List[WireParameter]:
    """Async variant of `bind_parameters`; only derivation suspends."""

    if call.parameters is None and not call.argument_names:
        try:
            derived = await command.derive_parameters_async()
        except BindingError:
            raise
        except Exception as exc:
            raise BindingError(
                f"Cannot derive parameters of procedure {command.procedure!r}: {exc}"
            ) from exc
        return _assign_positional(call, derived)
    return _build_parameters(call, driver, naming, type_resolver)


def _build_parameters(
    call: CallDescriptor,
    driver: DriverPort,
    naming: NamingTranslator,
    type_resolver: TypeResolver | None,
) -> List[WireParameter]:
    if call.parameters is not None:
        return _bind_declared(call, driver, naming, type_resolver)
    return _bind_named(call, driver, naming, type_resolver)


def _bind_declared(
    call: CallDescriptor,
    driver: DriverPort,
    naming: NamingTranslator,
    type_resolver: TypeResolver | None,
) -> List[WireParameter]:
    params: List[WireParameter] = []
    for index, spec in enumerate(call.parameters or ()):
        raw = call.arguments[index]
        value = raw.value if isinstance(raw, Ref) else raw
        if (
            spec.direction is Direction.INPUT
            and spec.is_optional
            and spec.nullable
            and value is None
        ):
            continue
        param = create_parameter(
            driver,
            name=naming.resolve_wire_name(spec.name, spec.wire_name),
            direction=spec.direction,
            wire_type=resolve_wire_type(spec.annotation, type_resolver),
            size=spec.size,
            value=value,
        )
        param.argument_index = index
        params.append(param)
    return params


def _bind_named(
    call: CallDescriptor,
    driver: DriverPort,
    naming: NamingTranslator,
    type_resolver: TypeResolver | None,
) -> List[WireParameter]:
    params: List[WireParameter] = []
    for index, (name, value) in enumerate(zip(call.argument_names, call.arguments)):
        param = create_parameter(
            driver,
            name=naming.wire_name(name),
            direction=Direction.INPUT,
            wire_type=resolve_wire_type(type(value), type_resolver),
            size=None,
            value=value,
        )
        param.argument_index = index
        params.append(param)
    return params


def _assign_positional(
    call: CallDescriptor,
    derived: Sequence[WireParameter],
) -> List[WireParameter]:
    """Assign positional values to the input parameters of a derived list.

    Output and return-value parameters are kept (their values are read back)
    but never consume a positional value. Input parameters left without a value
    are only allowed at the tail and are dropped.
    """

    inputs = [param for param in derived if param.is_input]
    if len(call.arguments) > len(inputs):
        raise BindingError(
            f"Procedure {call.operation!r} takes {len(inputs)} input parameter(s), "
            f"{len(call.arguments)} given."
        )
    unassigned = {id(param) for param in inputs[len(call.arguments):]}
    for index, (param, value) in enumerate(zip(inputs, call.arguments)):
        param.value = value
        param.argument_index = index
    return [param for param in derived if id(param) not in unassigned]


def create_parameter(
    driver: DriverPort,
    *,
    name: str,
    direction: Direction,
    wire_type: WireType,
    size: Optional[int],
    value: Any,
) -> WireParameter:
    """Create one wire parameter through the driver, failing fast."""

    try:
        param = driver.create_parameter(
            name=name,
            direction=direction,
            wire_type=wire_type,
            size=size,
            value=value,
        )
    except BindingError:
        raise
    except Exception as exc:
        raise BindingError(f"Cannot create parameter {name!r}: {exc}") from exc
    if param is None:
        raise BindingError(f"Driver did not create parameter {name!r}.")
    logger.debug(
        "parameter_bound",
        name=name,
        direction=direction.value,
        wire_type=wire_type.value,
    )
    return param
