"""Known structured result types: dataclasses mapped from result columns."""

from __future__ import annotations

from dataclasses import Field, dataclass, fields, is_dataclass
from functools import lru_cache
from typing import Any, ClassVar, Dict, Protocol, Sequence, Type

from .coercion import deserialize_model_value
from .errors import CoercionError
from .naming import NamingTranslator, validate_name


class DataclassModel(Protocol):
    """Protocol for supported dataclass model types."""

    __dataclass_fields__: ClassVar[dict[str, Any]]


def require_dataclass_model(cls: Type[Any]) -> None:
    """Validate that a class is a dataclass model."""

    if not isinstance(cls, type) or not is_dataclass(cls):
        raise TypeError(f"{getattr(cls, '__name__', cls)!r} must be a dataclass.")


@lru_cache(maxsize=None)
def model_fields(cls: Type[DataclassModel]) -> tuple[Field[Any], ...]:
    """Return init-able dataclass fields of a model type.

    Field `db_name` metadata is validated here, so a bad override fails when
    the model is first resolved as a result shape.
    """

    require_dataclass_model(cls)
    result = []
    for field in fields(cls):
        if not field.init:
            continue
        override = field.metadata.get("db_name")
        if override is not None:
            validate_name(override)
        result.append(field)
    return tuple(result)


def field_wire_name(field: Field[Any], naming: NamingTranslator) -> str:
    """Resolve the column name a model field reads from."""

    return naming.resolve_wire_name(field.name, field.metadata.get("db_name"))


@dataclass(frozen=True)
class ModelBinding:
    """Column positions of the model fields found in one result set."""

    model: Type[Any]
    positions: Dict[str, int]

    def build(self, values: Sequence[Any], null: Any = None) -> Any:
        """Construct one model instance from a row of cell values.

        Fields without a matching column keep their construction-time default.

        Raises:
            CoercionError: If a cell cannot be decoded or the model rejects
                the values.
        """

        kwargs: Dict[str, Any] = {}
        for field_name, position in self.positions.items():
            value = values[position]
            if value is null:
                value = None
            try:
                kwargs[field_name] = deserialize_model_value(self.model, field_name, value)
            except ValueError as exc:
                raise CoercionError(str(exc)) from exc
        try:
            return self.model(**kwargs)
        except TypeError as exc:
            raise CoercionError(
                f"Cannot construct {self.model.__name__} from columns "
                f"{sorted(self.positions)}: {exc}"
            ) from exc


def bind_model(
    model: Type[Any],
    column_names: Sequence[str],
    naming: NamingTranslator,
) -> ModelBinding:
    """Match model fields to result columns by resolved wire name."""

    index = {name: i for i, name in enumerate(column_names)}
    positions: Dict[str, int] = {}
    for field in model_fields(model):
        position = index.get(field_wire_name(field, naming))
        if position is not None:
            positions[field.name] = position
    return ModelBinding(model=model, positions=positions)
