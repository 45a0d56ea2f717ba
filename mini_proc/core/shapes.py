"""Result shapes requested by callers and their derivation from annotations."""

from __future__ import annotations

import collections.abc as cabc
import datetime as dt
import inspect
import typing
import uuid
from dataclasses import dataclass, is_dataclass, replace
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping, Optional, get_args, get_origin

from .annotations import describe_annotation
from .errors import ShapeResolutionError
from .records import Record


class ShapeKind(str, Enum):
    """Closed set of result shape categories."""

    SCALAR = "scalar"
    KEY_VALUE_MAP = "key_value_map"
    STRUCTURED_KNOWN = "structured_known"
    STRUCTURED_OPEN = "structured_open"
    SEQUENCE = "sequence"


SCALAR_TYPES: frozenset[type] = frozenset(
    {
        bool,
        int,
        float,
        complex,
        str,
        bytes,
        bytearray,
        Decimal,
        dt.datetime,
        dt.date,
        dt.time,
        dt.timedelta,
        uuid.UUID,
    }
)

_SYNC_SEQUENCES = {
    cabc.Iterator,
    cabc.Iterable,
    cabc.Generator,
}
_ASYNC_SEQUENCES = {
    cabc.AsyncIterator,
    cabc.AsyncIterable,
    cabc.AsyncGenerator,
}


@dataclass(frozen=True)
class ResultShape:
    """Tagged description of the value a caller asked for.

    `target` is the scalar or structured type for `SCALAR` and
    `STRUCTURED_KNOWN`; `inner` is the element shape of a `SEQUENCE` and
    `async_items` tells whether the sequence is pulled with `async for`.
    `is_async` marks a call whose execution suspends (an `async def` call).
    """

    kind: ShapeKind
    target: Any = None
    inner: Optional[ResultShape] = None
    async_items: bool = False
    is_async: bool = False

    def __post_init__(self) -> None:
        if self.kind is ShapeKind.SEQUENCE:
            if self.inner is None:
                raise ShapeResolutionError("Sequence shape requires an inner shape.")
            if self.inner.kind is ShapeKind.SEQUENCE:
                raise ShapeResolutionError("Nested sequence shapes are not supported.")
        if self.kind in (ShapeKind.SCALAR, ShapeKind.STRUCTURED_KNOWN) and self.target is None:
            raise ShapeResolutionError(f"{self.kind.value} shape requires a target type.")

    @classmethod
    def scalar(cls, target: type) -> ResultShape:
        return cls(ShapeKind.SCALAR, target=target)

    @classmethod
    def mapping(cls) -> ResultShape:
        return cls(ShapeKind.KEY_VALUE_MAP)

    @classmethod
    def known(cls, target: type) -> ResultShape:
        return cls(ShapeKind.STRUCTURED_KNOWN, target=target)

    @classmethod
    def open(cls) -> ResultShape:
        return cls(ShapeKind.STRUCTURED_OPEN)

    @classmethod
    def sequence(cls, inner: ResultShape, *, async_items: bool = False) -> ResultShape:
        return cls(ShapeKind.SEQUENCE, inner=inner, async_items=async_items)

    def as_async(self) -> ResultShape:
        """Wrap the shape for asynchronous execution."""

        return replace(self, is_async=True)

    def unwrap(self) -> ResultShape:
        """Inner shape without the asynchronous execution wrapper."""

        return replace(self, is_async=False)

    @property
    def is_async_sequence(self) -> bool:
        return self.kind is ShapeKind.SEQUENCE and self.async_items


def is_scalar_type(tp: Any) -> bool:
    if not isinstance(tp, type):
        return False
    if issubclass(tp, Enum):
        return True
    return any(base in SCALAR_TYPES for base in tp.__mro__)


def is_open_marker(tp: Any) -> bool:
    return (
        tp is Any
        or tp is object
        or tp is inspect.Signature.empty
        or tp is Record
    )


def is_mapping_type(tp: Any) -> bool:
    origin = get_origin(tp) or tp
    if origin not in (dict, Mapping, cabc.Mapping, cabc.MutableMapping, typing.Dict):
        return False
    args = get_args(tp)
    return not args or args[0] is str


def resolve_shape(annotation: Any, *, is_async: bool = False) -> Optional[ResultShape]:
    """Derive the result shape of a call from its return annotation.

    Returns `None` for calls declared to return nothing. Async-item sequences
    always run with asynchronous execution, even from a plain `def`.

    Raises:
        ShapeResolutionError: If the annotation maps to no shape category, or
            an `async def` call declares a blocking sequence.
    """

    if annotation is None or annotation is type(None):
        return None
    shape = _resolve(annotation, allow_sequence=True)
    if shape.kind is ShapeKind.SEQUENCE and not shape.async_items and is_async:
        raise ShapeResolutionError(
            f"Asynchronous calls cannot return the blocking sequence {annotation!r}; "
            "declare an AsyncIterator instead."
        )
    if is_async or shape.is_async_sequence:
        return shape.as_async()
    return shape


def _resolve(annotation: Any, *, allow_sequence: bool) -> ResultShape:
    base = describe_annotation(annotation).base
    if is_open_marker(base):
        return ResultShape.open()
    if is_mapping_type(base):
        return ResultShape.mapping()
    if is_scalar_type(base):
        return ResultShape.scalar(base)

    origin = get_origin(base) or base
    if origin in _SYNC_SEQUENCES or origin in _ASYNC_SEQUENCES:
        if not allow_sequence:
            raise ShapeResolutionError(f"Nested sequence type {annotation!r} is not supported.")
        args = get_args(base)
        inner = _resolve(args[0], allow_sequence=False) if args else ResultShape.open()
        return ResultShape.sequence(inner, async_items=origin in _ASYNC_SEQUENCES)

    if isinstance(base, type) and is_dataclass(base):
        return ResultShape.known(base)
    raise ShapeResolutionError(
        f"Cannot map return type {annotation!r} to a result shape; use a scalar, "
        "a mapping, a dataclass, an open record or an iterator of those."
    )
