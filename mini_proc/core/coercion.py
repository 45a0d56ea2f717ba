"""Value coercion for scalars, return values and model fields."""

from __future__ import annotations

import datetime as dt
import json
import uuid
from dataclasses import Field, fields, is_dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from functools import lru_cache
from typing import Any, Type, get_origin, get_type_hints

from .annotations import describe_annotation
from .errors import CoercionError

_TRUE_STRINGS = {"1", "true", "t", "yes", "y", "on"}
_FALSE_STRINGS = {"0", "false", "f", "no", "n", "off"}


def check_scalar(value: Any, target: Any) -> Any:
    """Return a fetched scalar as is when it already has the declared type.

    Enum targets are looked up by value and `int` is accepted for `float`.
    Everything else is a caller error.

    Raises:
        CoercionError: If `value` does not match `target`.
    """

    if value is None or not isinstance(target, type) or target is object:
        return value
    if isinstance(value, target):
        return value
    if issubclass(target, Enum):
        try:
            return _deserialize_enum(value, enum_type=target, field_name="<scalar>")
        except ValueError as exc:
            raise CoercionError(str(exc)) from exc
    if target is float and isinstance(value, int) and not isinstance(value, bool):
        return value
    raise CoercionError(
        f"Scalar result {value!r} of type {type(value).__name__} is not {target.__name__}."
    )


def coerce_scalar(value: Any, target: Any) -> Any:
    """Convert a value to `target`, the way return values are read back.

    Raises:
        CoercionError: If the conversion fails.
    """

    if value is None or not isinstance(target, type) or target is object:
        return value
    if isinstance(value, target) and not (
        (target is int and isinstance(value, bool))
        or (target is dt.date and isinstance(value, dt.datetime))
    ):
        return value
    try:
        return _convert(value, target)
    except (TypeError, ValueError, InvalidOperation, ArithmeticError) as exc:
        raise CoercionError(
            f"Cannot convert {value!r} of type {type(value).__name__} to {target.__name__}."
        ) from exc


def _convert(value: Any, target: type) -> Any:
    if issubclass(target, Enum):
        return _deserialize_enum(value, enum_type=target, field_name="<return value>")
    if target is bool:
        if isinstance(value, str):
            text = value.strip().lower()
            if text in _TRUE_STRINGS:
                return True
            if text in _FALSE_STRINGS:
                return False
            raise ValueError(f"not a boolean literal: {value!r}")
        return bool(value)
    if target is int:
        if isinstance(value, float) and not value.is_integer():
            raise ValueError(f"{value!r} is not integral")
        return int(value)
    if target is Decimal:
        return Decimal(str(value))
    if target is str:
        if isinstance(value, (bytes, bytearray, memoryview)):
            return bytes(value).decode("utf-8")
        return str(value)
    if target in (bytes, bytearray):
        if isinstance(value, str):
            return target(value.encode("utf-8"))
        return target(value)
    if target is dt.datetime and isinstance(value, str):
        return dt.datetime.fromisoformat(value)
    if target is dt.date:
        if isinstance(value, dt.datetime):
            return value.date()
        if isinstance(value, str):
            return dt.date.fromisoformat(value)
    if target is dt.time and isinstance(value, str):
        return dt.time.fromisoformat(value)
    if target is dt.timedelta and isinstance(value, (int, float)):
        return dt.timedelta(seconds=value)
    if target is uuid.UUID:
        if isinstance(value, (bytes, bytearray)):
            return uuid.UUID(bytes=bytes(value))
        return uuid.UUID(str(value))
    return target(value)


def deserialize_model_value(
    cls: Type[Any],
    field_name: str,
    value: Any,
) -> Any:
    """Decode one cell into a model field value.

    Enum fields (or `codec="enum"` metadata) are looked up by value or name,
    `dict`/`list` fields (or `codec="json"`) are decoded from JSON text. Other
    values pass through unchanged.
    """

    field = _model_field_map(cls).get(field_name)
    if field is None or value is None:
        return value
    annotation = _model_type_hints(cls).get(field_name, field.type)
    codec = _field_codec(field)
    base = describe_annotation(annotation).base

    enum_type = base if isinstance(base, type) and issubclass(base, Enum) else None
    if enum_type is not None or codec == "enum":
        return _deserialize_enum(value, enum_type=enum_type, field_name=field_name)
    if _is_json_field(base, codec):
        return _deserialize_json(value, field_name=field_name)
    return value


@lru_cache(maxsize=None)
def _model_field_map(cls: Type[Any]) -> dict[str, Field[Any]]:
    if not is_dataclass(cls):
        raise TypeError(f"{cls.__name__} must be a dataclass.")
    return {field.name: field for field in fields(cls)}


@lru_cache(maxsize=None)
def _model_type_hints(cls: Type[Any]) -> dict[str, Any]:
    try:
        return dict(get_type_hints(cls, include_extras=True))
    except (NameError, TypeError):
        return {}


def _deserialize_enum(
    value: Any,
    *,
    enum_type: type[Enum] | None,
    field_name: str,
) -> Any:
    if enum_type is None:
        raise ValueError(
            f"Field {field_name!r} uses enum codec but has no Enum annotation."
        )
    if isinstance(value, enum_type):
        return value
    try:
        return enum_type(value)
    except ValueError as exc:
        if isinstance(value, str) and value in enum_type.__members__:
            return enum_type[value]
        raise ValueError(
            f"Cannot deserialize value {value!r} to enum {enum_type.__name__} "
            f"for field {field_name!r}."
        ) from exc


def _deserialize_json(value: Any, *, field_name: str) -> Any:
    if isinstance(value, (dict, list)):
        return value
    if isinstance(value, str):
        text = value
    elif isinstance(value, (bytes, bytearray, memoryview)):
        text = bytes(value).decode("utf-8")
    else:
        return value

    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValueError(
            f"Cannot deserialize JSON for field {field_name!r}: {text!r}."
        ) from exc


def _field_codec(field: Field[Any]) -> str | None:
    codec = field.metadata.get("codec")
    if codec is None:
        return None
    if not isinstance(codec, str):
        raise TypeError(
            f"Field {field.name!r} metadata codec must be a string, got {type(codec).__name__}."
        )
    normalized = codec.strip().lower()
    if normalized in {"json", "enum"}:
        return normalized
    raise ValueError(
        f"Unsupported codec {codec!r} on field {field.name!r}. "
        "Supported codecs: 'json', 'enum'."
    )


def _is_json_field(base: Any, codec: str | None) -> bool:
    if codec == "json":
        return True
    if codec == "enum":
        return False
    if base in {dict, list}:
        return True
    return get_origin(base) in {dict, list}
