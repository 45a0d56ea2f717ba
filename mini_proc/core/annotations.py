"""Per-method and per-argument metadata markers read by the binders."""

from __future__ import annotations

import types
from dataclasses import dataclass
from enum import Enum
from typing import (
    Annotated,
    Any,
    Callable,
    Generic,
    Optional,
    TypeVar,
    Union,
    get_args,
    get_origin,
)

from .naming import validate_name

T = TypeVar("T")
F = TypeVar("F", bound=Callable[..., Any])

DB_NAME_ATTR = "__db_name__"
RETURN_VALUE_AS_RESULT_ATTR = "__return_value_as_result__"


class Direction(str, Enum):
    """Direction of a wire parameter relative to the backend call."""

    INPUT = "input"
    OUTPUT = "output"
    RETURN_VALUE = "return_value"


@dataclass(frozen=True)
class Param:
    """Argument metadata used inside `typing.Annotated`.

    Example:
        `username: Annotated[str, Param(name="user_name", size=50)]`
    """

    name: Optional[str] = None
    size: Optional[int] = None
    direction: Optional[Direction] = None

    def __post_init__(self) -> None:
        if self.name is not None:
            validate_name(self.name)
        if self.size is not None and (not isinstance(self.size, int) or self.size < 1):
            raise ValueError(f"Param size must be a positive integer, got {self.size!r}.")
        if self.direction is not None:
            object.__setattr__(self, "direction", Direction(self.direction))

    def merge(self, other: Param) -> Param:
        """Return a marker where fields set on `other` win."""

        return Param(
            name=other.name if other.name is not None else self.name,
            size=other.size if other.size is not None else self.size,
            direction=other.direction if other.direction is not None else self.direction,
        )


class Out:
    """`Out[int]` declares an output argument."""

    def __class_getitem__(cls, item: Any) -> Any:
        return Annotated[item, Param(direction=Direction.OUTPUT)]


class ReturnValue:
    """`ReturnValue[int]` binds an argument to the procedure return value."""

    def __class_getitem__(cls, item: Any) -> Any:
        return Annotated[item, Param(direction=Direction.RETURN_VALUE)]


@dataclass
class Ref(Generic[T]):
    """Mutable holder passed for output arguments; receives the output value."""

    value: Optional[T] = None


def db_name(name: str) -> Callable[[F], F]:
    """Override the wire name of a procedure method.

    The name is validated immediately and used verbatim, without the
    configured inflector.
    """

    validated = validate_name(name)

    def decorate(func: F) -> F:
        setattr(func, DB_NAME_ATTR, validated)
        return func

    return decorate


def return_value_as_result(func: F) -> F:
    """Mark a procedure whose result is its return-value parameter."""

    setattr(func, RETURN_VALUE_AS_RESULT_ATTR, True)
    return func


def declared_db_name(func: Any) -> Optional[str]:
    return getattr(func, DB_NAME_ATTR, None)


def is_return_value_as_result(func: Any) -> bool:
    return bool(getattr(func, RETURN_VALUE_AS_RESULT_ATTR, False))


@dataclass(frozen=True)
class DeclaredType:
    """Annotation with `Annotated`/`Optional` layers peeled off."""

    base: Any
    nullable: bool
    param: Param


def describe_annotation(annotation: Any) -> DeclaredType:
    """Split an annotation into its base type, nullability and `Param` marker."""

    marker = Param()
    nullable = False
    current = annotation
    while True:
        if get_origin(current) is Annotated:
            base, *extras = get_args(current)
            for extra in extras:
                if isinstance(extra, Param):
                    marker = marker.merge(extra)
            current = base
            continue
        inner, is_optional = split_optional(current)
        if is_optional:
            nullable = True
            current = inner
            continue
        break
    return DeclaredType(base=current, nullable=nullable, param=marker)


def split_optional(annotation: Any) -> tuple[Any, bool]:
    """Return `(annotation without None, True)` for optional unions."""

    if annotation is None or annotation is type(None):
        return annotation, False
    origin = get_origin(annotation)
    if origin not in (Union, types.UnionType):
        return annotation, False

    all_args = get_args(annotation)
    args = tuple(arg for arg in all_args if arg is not type(None))
    if len(args) == len(all_args):
        return annotation, False
    if len(args) == 1:
        return args[0], True
    return Union[args], True
