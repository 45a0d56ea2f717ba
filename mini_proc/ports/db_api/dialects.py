"""SQL dialects compiling stored-procedure calls for DB-API drivers."""

from __future__ import annotations

import datetime as dt
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Sequence, Tuple

from ...core.annotations import Direction
from ...core.errors import BindingError
from ...core.parameters import WireParameter, WireType
from ...core.types import QueryParams

SQL_WIRE_TYPES: Dict[str, WireType] = {
    "smallint": WireType.INT64,
    "integer": WireType.INT64,
    "int": WireType.INT64,
    "bigint": WireType.INT64,
    "tinyint": WireType.INT64,
    "mediumint": WireType.INT64,
    "numeric": WireType.DECIMAL,
    "decimal": WireType.DECIMAL,
    "money": WireType.DECIMAL,
    "real": WireType.DOUBLE,
    "float": WireType.DOUBLE,
    "double": WireType.DOUBLE,
    "double precision": WireType.DOUBLE,
    "boolean": WireType.BOOLEAN,
    "bool": WireType.BOOLEAN,
    "bit": WireType.BOOLEAN,
    "date": WireType.DATE,
    "time": WireType.TIME,
    "datetime": WireType.DATETIME,
    "timestamp": WireType.DATETIME,
    "interval": WireType.INTERVAL,
    "uuid": WireType.GUID,
    "json": WireType.JSON,
    "jsonb": WireType.JSON,
    "bytea": WireType.BINARY,
    "blob": WireType.BINARY,
    "binary": WireType.BINARY,
    "varbinary": WireType.BINARY,
}

_PARAMETER_MODES = {
    "IN": Direction.INPUT,
    "INOUT": Direction.INPUT,
    "OUT": Direction.OUTPUT,
}


def sql_wire_type(data_type: Optional[str]) -> WireType:
    """Map an `information_schema` data type name to a wire type tag."""

    if not data_type:
        return WireType.STRING
    text = data_type.strip().lower()
    if text in SQL_WIRE_TYPES:
        return SQL_WIRE_TYPES[text]
    head = text.split("(")[0].split(" ")[0]
    return SQL_WIRE_TYPES.get(head, WireType.STRING)


@dataclass(frozen=True)
class CompiledCall:
    """SQL text, driver arguments and the wire parameters they carry."""

    sql: str
    args: QueryParams = None
    procedure: str = ""
    bound: Tuple[WireParameter, ...] = ()

    @property
    def sizes(self) -> List[Optional[int]]:
        return [param.size for param in self.bound]

    @property
    def positional_args(self) -> List[Any]:
        return [param.value for param in self.bound]


class Dialect:
    """Generic dialect: `CALL p(...)` or `cursor.callproc` with named placeholders."""

    name: str = "generic"
    paramstyle: str = "named"
    quote_char: str = '"'
    use_callproc: bool = True
    named_arguments: bool = False
    outputs_in_result: bool = True
    directions: FrozenSet[Direction] = frozenset(Direction)

    def q(self, ident: str) -> str:
        """Quote an identifier, part by part for dotted names."""

        return ".".join(
            f"{self.quote_char}{part}{self.quote_char}" for part in ident.split(".")
        )

    def placeholder(self, key: str) -> str:
        """Return parameter placeholder for current param style."""

        if self.paramstyle == "named":
            return f":{key}"
        if self.paramstyle == "qmark":
            return "?"
        if self.paramstyle == "format":
            return "%s"
        raise ValueError(f"Unsupported paramstyle: {self.paramstyle}")

    def supports(self, direction: Direction) -> bool:
        return direction in self.directions

    def call_arguments(self, params: Sequence[WireParameter]) -> List[WireParameter]:
        """Parameters passed in the call's argument list, in order."""

        return [param for param in params if param.direction is not Direction.RETURN_VALUE]

    def _bind(self, params: Sequence[WireParameter]) -> Tuple[List[str], QueryParams]:
        fragments: List[str] = []
        named: Dict[str, Any] = {}
        positional: List[Any] = []
        for index, param in enumerate(params):
            key = f"p{index}"
            placeholder = self.placeholder(key)
            if self.named_arguments and param.name:
                placeholder = f"{self.q(param.name)} => {placeholder}"
            fragments.append(placeholder)
            if self.paramstyle == "named":
                named[key] = param.value
            else:
                positional.append(param.value)
        return fragments, named if self.paramstyle == "named" else positional

    def _compile(self, template: str, procedure: str, params: Sequence[WireParameter]) -> CompiledCall:
        bound = tuple(params)
        fragments, args = self._bind(bound)
        sql = template.format(name=self.q(procedure), args=", ".join(fragments))
        return CompiledCall(sql=sql, args=args, procedure=procedure, bound=bound)

    def compile_call(self, procedure: str, params: Sequence[WireParameter]) -> CompiledCall:
        return self._compile("CALL {name}({args})", procedure, self.call_arguments(params))

    def compile_return_value(self, procedure: str, params: Sequence[WireParameter]) -> CompiledCall:
        inputs = [param for param in params if param.is_input]
        return self._compile("SELECT {name}({args})", procedure, inputs)

    def output_query(self, procedure: str, params: Sequence[WireParameter]) -> Optional[CompiledCall]:
        """Statement reading output variables after the call, if the backend needs one."""

        return None

    def compile_derive(self, procedure: str) -> CompiledCall:
        schema, _, name = procedure.rpartition(".")
        conditions = [f"r.routine_name = {self.placeholder('name')}"]
        if schema:
            conditions.append(f"r.routine_schema = {self.placeholder('schema')}")
        sql = (
            "SELECT p.parameter_name, p.parameter_mode, p.data_type, "
            "p.character_maximum_length "
            "FROM information_schema.parameters p "
            "JOIN information_schema.routines r "
            "ON r.routine_schema = p.specific_schema "
            "AND r.specific_name = p.specific_name "
            f"WHERE {' AND '.join(conditions)} "
            "ORDER BY p.ordinal_position"
        )
        if self.paramstyle == "named":
            args: QueryParams = {"name": name, **({"schema": schema} if schema else {})}
        else:
            args = [name, schema] if schema else [name]
        return CompiledCall(sql=sql, args=args, procedure=procedure)

    def derived_parameter(self, row: Any) -> WireParameter:
        """Build a wire parameter from one `compile_derive` row."""

        values = tuple(row.values()) if isinstance(row, Mapping) else tuple(row)
        name, mode, data_type, size = (tuple(values) + (None,) * 4)[:4]
        direction = _PARAMETER_MODES.get(str(mode).upper()) if mode else Direction.RETURN_VALUE
        if direction is None:
            raise BindingError(f"Unsupported parameter mode {mode!r}.")
        return WireParameter(
            name=name or "",
            direction=direction,
            wire_type=sql_wire_type(data_type),
            size=int(size) if size else None,
        )

    def column_type(self, type_code: Any) -> Any:
        """Python type of a result column from its `description` type code."""

        return type_code if isinstance(type_code, type) else object


class SQLiteDialect(Dialect):
    """SQLite: procedures are user functions registered with `create_function`.

    Only input parameters and the return value can cross the wire; calls
    compile to `SELECT "p"(?, ...) AS "p"`.
    """

    name = "sqlite"
    paramstyle = "qmark"
    use_callproc = False
    outputs_in_result = False
    directions = frozenset({Direction.INPUT, Direction.RETURN_VALUE})

    def compile_call(self, procedure: str, params: Sequence[WireParameter]) -> CompiledCall:
        template = "SELECT {name}({args}) AS " + self.q(procedure.rpartition(".")[2])
        return self._compile(template, procedure, self.call_arguments(params))

    def compile_derive(self, procedure: str) -> CompiledCall:
        raise BindingError(
            f"SQLite cannot describe the parameters of {procedure!r}; "
            "declare the procedure signature or call it with keyword arguments."
        )


_PG_TYPES: Dict[int, type] = {
    16: bool,
    17: bytes,
    20: int,
    21: int,
    23: int,
    25: str,
    700: float,
    701: float,
    1042: str,
    1043: str,
    1082: dt.date,
    1083: dt.time,
    1114: dt.datetime,
    1184: dt.datetime,
    1186: dt.timedelta,
    1700: Decimal,
    2950: uuid.UUID,
}


class PostgresDialect(Dialect):
    """PostgreSQL: set-returning functions called with named notation.

    `OUT` parameters are not passed; they come back as columns of the result
    row and are read from it by name.
    """

    name = "postgres"
    paramstyle = "format"
    use_callproc = False
    named_arguments = True

    def call_arguments(self, params: Sequence[WireParameter]) -> List[WireParameter]:
        return [param for param in params if param.is_input]

    def _bind(self, params: Sequence[WireParameter]) -> Tuple[List[str], QueryParams]:
        if not all(param.name for param in params):
            fragments = [self.placeholder(f"p{i}") for i in range(len(params))]
            return fragments, [param.value for param in params]
        return super()._bind(params)

    def compile_call(self, procedure: str, params: Sequence[WireParameter]) -> CompiledCall:
        return self._compile("SELECT * FROM {name}({args})", procedure, self.call_arguments(params))

    def column_type(self, type_code: Any) -> Any:
        if isinstance(type_code, int):
            return _PG_TYPES.get(type_code, object)
        return super().column_type(type_code)


_MYSQL_TYPES: Dict[int, type] = {
    0: Decimal,
    1: int,
    2: int,
    3: int,
    4: float,
    5: float,
    7: dt.datetime,
    8: int,
    9: int,
    10: dt.date,
    11: dt.timedelta,
    12: dt.datetime,
    13: int,
    15: str,
    16: int,
    245: str,
    246: Decimal,
    249: bytes,
    250: bytes,
    251: bytes,
    252: bytes,
    253: str,
    254: str,
}


class MySQLDialect(Dialect):
    """MySQL: `cursor.callproc` with output variables read back afterwards."""

    name = "mysql"
    paramstyle = "format"
    quote_char = "`"
    use_callproc = True
    outputs_in_result = False

    def output_query(self, procedure: str, params: Sequence[WireParameter]) -> Optional[CompiledCall]:
        """Select the `@_<procedure>_<n>` variables `callproc` leaves behind."""

        arguments = self.call_arguments(params)
        outputs = [
            (index, param)
            for index, param in enumerate(arguments)
            if param.direction is Direction.OUTPUT
        ]
        if not outputs:
            return None
        columns = ", ".join(f"@_{procedure}_{index}" for index, _ in outputs)
        return CompiledCall(
            sql=f"SELECT {columns}",
            procedure=procedure,
            bound=tuple(param for _, param in outputs),
        )

    def column_type(self, type_code: Any) -> Any:
        if isinstance(type_code, int):
            return _MYSQL_TYPES.get(type_code, object)
        return super().column_type(type_code)
