"""Extraction strategy registry.

The registry is an ordered table of `(predicate, strategy)` entries. The first
entry whose predicate accepts the requested `ResultShape` materializes the
result; appending an entry gives it the lowest priority. Strategies receive
the running `ProcedureCall` and the shape without its async wrapper, and
return an awaitable when the call runs asynchronously.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Sequence, Tuple

import structlog

from .coercion import check_scalar
from .cursors import ResultCursor, RowFactory
from .errors import ShapeResolutionError
from .models import bind_model
from .records import make_record, synthesize
from .shapes import ResultShape, ShapeKind

if TYPE_CHECKING:
    from .invocation import ProcedureCall

logger = structlog.get_logger(__name__)

Predicate = Callable[[ResultShape], bool]
Strategy = Callable[["ProcedureCall", ResultShape], Any]


@dataclass(frozen=True)
class ExtractorEntry:
    """One named row of the registry."""

    name: str
    predicate: Predicate
    strategy: Strategy


class ExtractorRegistry:
    """Ordered, first-match table of extraction strategies."""

    def __init__(self, entries: Sequence[ExtractorEntry] = ()) -> None:
        self._entries: List[ExtractorEntry] = list(entries)
        self._frozen = False

    @property
    def entries(self) -> Tuple[ExtractorEntry, ...]:
        return tuple(self._entries)

    @property
    def frozen(self) -> bool:
        return self._frozen

    def register(
        self,
        predicate: Predicate,
        strategy: Strategy,
        *,
        name: Optional[str] = None,
    ) -> ExtractorEntry:
        """Append a strategy with the lowest priority.

        Raises:
            RuntimeError: If the registry is frozen.
        """

        if self._frozen:
            raise RuntimeError("Extractor registry is frozen; register strategies before build().")
        entry = ExtractorEntry(
            name=name or getattr(strategy, "__name__", repr(strategy)),
            predicate=predicate,
            strategy=strategy,
        )
        self._entries.append(entry)
        logger.debug("extractor_registered", name=entry.name, position=len(self._entries) - 1)
        return entry

    def freeze(self) -> ExtractorRegistry:
        self._frozen = True
        return self

    def copy(self) -> ExtractorRegistry:
        """Unfrozen registry with the same entries."""

        return ExtractorRegistry(self._entries)

    def resolve(self, shape: ResultShape) -> ExtractorEntry:
        """Return the first entry accepting `shape`.

        Raises:
            ShapeResolutionError: If no predicate matches.
        """

        for entry in self._entries:
            if entry.predicate(shape):
                return entry
        raise ShapeResolutionError(f"No extraction strategy matches result shape {shape!r}.")

    def extract(self, call: ProcedureCall, shape: ResultShape) -> Any:
        """Run the strategy selected for `shape` against an executed call."""

        entry = self.resolve(shape)
        logger.debug("extractor_selected", name=entry.name, kind=shape.kind.value)
        return entry.strategy(call, shape.unwrap())

    def __len__(self) -> int:
        return len(self._entries)


# Row factories: each one is bound to a cursor once (column metadata is read
# before the first row) and returns a function building one element per row.


def _cells(values: Sequence[Any], null: Any) -> List[Any]:
    return [None if value is null else value for value in values]


def mapping_rows(call: ProcedureCall) -> RowFactory[Dict[str, Any]]:
    def bind(cursor: ResultCursor) -> Callable[[Sequence[Any]], Dict[str, Any]]:
        names = [call.naming.display_name(name) for name in cursor.column_names]
        null = cursor.null

        def build(values: Sequence[Any]) -> Dict[str, Any]:
            return dict(zip(names, _cells(values, null)))

        return build

    return bind


def record_rows(call: ProcedureCall) -> RowFactory[Any]:
    def bind(cursor: ResultCursor) -> Callable[[Sequence[Any]], Any]:
        record_type = synthesize(
            [(call.naming.display_name(column.name), column.type) for column in cursor.columns],
            intern=call.intern_records,
        )
        null = cursor.null

        def build(values: Sequence[Any]) -> Any:
            return make_record(record_type, _cells(values, null))

        return build

    return bind


def model_rows(call: ProcedureCall, model: type) -> RowFactory[Any]:
    def bind(cursor: ResultCursor) -> Callable[[Sequence[Any]], Any]:
        binding = bind_model(model, cursor.column_names, call.naming)
        null = cursor.null
        return lambda values: binding.build(values, null)

    return bind


def scalar_rows(target: Any) -> RowFactory[Any]:
    def bind(cursor: ResultCursor) -> Callable[[Sequence[Any]], Any]:
        null = cursor.null

        def build(values: Sequence[Any]) -> Any:
            value = values[0] if values else None
            if value is null:
                return None
            return check_scalar(value, target)

        return build

    return bind


def element_rows(call: ProcedureCall, inner: ResultShape) -> RowFactory[Any]:
    """Row factory of one sequence element shape."""

    if inner.kind is ShapeKind.STRUCTURED_OPEN:
        return record_rows(call)
    if inner.kind is ShapeKind.KEY_VALUE_MAP:
        return mapping_rows(call)
    if inner.kind is ShapeKind.SCALAR:
        return scalar_rows(inner.target)
    if inner.kind is ShapeKind.STRUCTURED_KNOWN:
        return model_rows(call, inner.target)
    raise ShapeResolutionError(f"Unsupported sequence element shape {inner!r}.")


# Default strategies.


async def extract_mapping_async(call: ProcedureCall, shape: ResultShape) -> Any:
    return await call.fetch_one_async(mapping_rows(call))


def extract_mapping(call: ProcedureCall, shape: ResultShape) -> Any:
    return call.fetch_one(mapping_rows(call))


def _scalar_value(call: ProcedureCall, shape: ResultShape, value: Any) -> Any:
    if value is None or value is call.null:
        return None
    return check_scalar(value, shape.target)


async def _extract_scalar_async(call: ProcedureCall, shape: ResultShape) -> Any:
    return _scalar_value(call, shape, await call.execute_scalar_async())


def extract_scalar(call: ProcedureCall, shape: ResultShape) -> Any:
    if call.is_async:
        return _extract_scalar_async(call, shape)
    return _scalar_value(call, shape, call.execute_scalar())


def extract_sequence(call: ProcedureCall, shape: ResultShape) -> Any:
    rows = element_rows(call, shape.inner)
    if call.is_async:
        return call.stream_async(rows)
    return call.stream(rows)


def extract_open(call: ProcedureCall, shape: ResultShape) -> Any:
    if call.is_async:
        return call.fetch_one_async(record_rows(call))
    return call.fetch_one(record_rows(call))


def extract_known(call: ProcedureCall, shape: ResultShape) -> Any:
    rows = model_rows(call, shape.target)
    if call.is_async:
        return call.fetch_one_async(rows)
    return call.fetch_one(rows)


def _is_kind(kind: ShapeKind, *, is_async: Optional[bool] = None) -> Predicate:
    def predicate(shape: ResultShape) -> bool:
        if shape.kind is not kind:
            return False
        return is_async is None or shape.is_async is is_async

    return predicate


def default_registry() -> ExtractorRegistry:
    """Registry holding the built-in strategies in priority order."""

    registry = ExtractorRegistry()
    registry.register(
        _is_kind(ShapeKind.KEY_VALUE_MAP, is_async=True),
        extract_mapping_async,
        name="key_value_map_async",
    )
    registry.register(
        _is_kind(ShapeKind.KEY_VALUE_MAP, is_async=False),
        extract_mapping,
        name="key_value_map",
    )
    registry.register(_is_kind(ShapeKind.SCALAR), extract_scalar, name="scalar")
    registry.register(_is_kind(ShapeKind.SEQUENCE), extract_sequence, name="sequence")
    registry.register(_is_kind(ShapeKind.STRUCTURED_OPEN), extract_open, name="structured_open")
    registry.register(_is_kind(ShapeKind.STRUCTURED_KNOWN), extract_known, name="structured_known")
    return registry
