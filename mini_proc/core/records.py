"""Structural type synthesizer for results without a declared shape.

A synthesized type is a real class (`type(...)` subclass of `Record`) whose
instances store their values in a flat list indexed by field position. Fields
are reachable by attribute, by `record["name"]` and through `get_field` /
`set_field`, which also work for column names that are not identifiers.
A column named like a `Record` member (`to_dict`, `_values`) is shadowed on
attribute access; read it with `record["to_dict"]` or `get_field`.

Pickled records are restored into the interned type for their signature.
"""

from __future__ import annotations

import copy
import itertools
import threading
from dataclasses import dataclass
from typing import Any, ClassVar, Dict, Iterable, Iterator, List, Sequence, Tuple, Type

import structlog

from .errors import ShapeResolutionError

logger = structlog.get_logger(__name__)

_TYPE_PREFIX = "Record_"
_sequence = itertools.count(1)


@dataclass(frozen=True)
class RecordField:
    """Name and declared type of one synthesized field."""

    name: str
    type: Any = object


Signature = Tuple[RecordField, ...]


class Record:
    """Base class of every synthesized record type; also the open-shape marker."""

    __slots__ = ("_values",)

    __record_fields__: ClassVar[Signature] = ()
    __record_index__: ClassVar[Dict[str, int]] = {}

    def __init__(self, *values: Any, **named: Any) -> None:
        fields = type(self).__record_fields__
        if len(values) > len(fields):
            raise TypeError(
                f"{type(self).__name__} takes {len(fields)} values, {len(values)} given."
            )
        object.__setattr__(self, "_values", list(values) + [None] * (len(fields) - len(values)))
        for name, value in named.items():
            set_field(self, name, value)

    def __getattr__(self, name: str) -> Any:
        index = type(self).__record_index__.get(name)
        if index is None:
            raise AttributeError(f"{type(self).__name__!r} record has no field {name!r}")
        return self._values[index]

    def __setattr__(self, name: str, value: Any) -> None:
        index = type(self).__record_index__.get(name)
        if index is None:
            raise AttributeError(f"{type(self).__name__!r} record has no field {name!r}")
        self._values[index] = value

    def __getitem__(self, name: str) -> Any:
        return get_field(self, name)

    def __setitem__(self, name: str, value: Any) -> None:
        set_field(self, name, value)

    def __iter__(self) -> Iterator[Tuple[str, Any]]:
        for field, value in zip(type(self).__record_fields__, self._values):
            yield field.name, value

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Record):
            return NotImplemented
        return (
            type(self).__record_fields__ == type(other).__record_fields__
            and self._values == other._values
        )

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        body = ", ".join(f"{name}={value!r}" for name, value in self)
        return f"{type(self).__name__}({body})"

    def to_dict(self) -> Dict[str, Any]:
        return dict(self)

    def __copy__(self) -> Record:
        return make_record(type(self), self._values)

    def __deepcopy__(self, memo: Dict[int, Any]) -> Record:
        clone = instantiate(type(self))
        memo[id(self)] = clone
        object.__setattr__(clone, "_values", copy.deepcopy(self._values, memo))
        return clone

    def __reduce__(self) -> Tuple[Any, ...]:
        return _restore_record, (type(self).__record_fields__, list(self._values))


def _field_index(instance: Record, name: str) -> int:
    index = type(instance).__record_index__.get(name)
    if index is None:
        raise KeyError(name)
    return index


def get_field(instance: Record, name: str) -> Any:
    """Read one field of a synthesized record by name."""

    return instance._values[_field_index(instance, name)]


def set_field(instance: Record, name: str, value: Any) -> None:
    """Write one field of a synthesized record by name."""

    instance._values[_field_index(instance, name)] = value


def record_fields(record_type: Type[Record] | Record) -> Signature:
    """Ordered field descriptors of a synthesized type or instance."""

    cls = record_type if isinstance(record_type, type) else type(record_type)
    return cls.__record_fields__


def instantiate(record_type: Type[Record]) -> Record:
    """Create an empty instance; every field starts as `None`."""

    return record_type()


def _signature(columns: Iterable[Any]) -> Signature:
    fields: List[RecordField] = []
    seen: set[str] = set()
    for column in columns:
        if isinstance(column, RecordField):
            field = column
        else:
            name, tp = column
            field = RecordField(name=name, type=tp)
        if not isinstance(field.name, str) or not field.name:
            raise ShapeResolutionError(f"Invalid record field name {field.name!r}.")
        if field.name in seen:
            raise ShapeResolutionError(f"Duplicate record field name {field.name!r}.")
        seen.add(field.name)
        fields.append(field)
    return tuple(fields)


def _build_type(signature: Signature) -> Type[Record]:
    name = f"{_TYPE_PREFIX}{next(_sequence)}"
    namespace = {
        "__slots__": (),
        "__record_fields__": signature,
        "__record_index__": {field.name: i for i, field in enumerate(signature)},
        "__module__": __name__,
    }
    record_type = type(name, (Record,), namespace)
    logger.debug(
        "record_type_synthesized",
        type_name=name,
        fields=[field.name for field in signature],
    )
    return record_type


class RecordTypeCache:
    """Process-wide cache interning synthesized types by column signature.

    Lookups read the dict without locking; creation is serialized so one
    signature never yields two types.
    """

    def __init__(self) -> None:
        self._types: Dict[Signature, Type[Record]] = {}
        self._lock = threading.Lock()

    def get_or_create(self, signature: Signature) -> Type[Record]:
        record_type = self._types.get(signature)
        if record_type is not None:
            return record_type
        with self._lock:
            record_type = self._types.get(signature)
            if record_type is None:
                record_type = _build_type(signature)
                self._types[signature] = record_type
            return record_type

    def clear(self) -> None:
        with self._lock:
            self._types.clear()

    def __len__(self) -> int:
        return len(self._types)


RECORD_TYPES = RecordTypeCache()


def synthesize(
    columns: Iterable[Tuple[str, Any] | RecordField],
    *,
    intern: bool = True,
    cache: RecordTypeCache | None = None,
) -> Type[Record]:
    """Create (or reuse) a record type for an ordered list of `(name, type)`.

    Args:
        columns: Ordered field specs, already in display naming.
        intern: Reuse one type per signature through the cache.
        cache: Cache to use instead of the process-wide one.

    Raises:
        ShapeResolutionError: On empty or duplicate field names.
    """

    signature = _signature(columns)
    if not intern:
        return _build_type(signature)
    return (cache if cache is not None else RECORD_TYPES).get_or_create(signature)


def make_record(record_type: Type[Record], values: Sequence[Any]) -> Record:
    """Instantiate `record_type` and populate it positionally."""

    instance = instantiate(record_type)
    for field, value in zip(record_type.__record_fields__, values):
        set_field(instance, field.name, value)
    return instance


def _restore_record(signature: Signature, values: Sequence[Any]) -> Record:
    return make_record(RECORD_TYPES.get_or_create(signature), values)
