"""Dynamic caller surface: any attribute of the database is a procedure.

    db = configuration.dynamic()
    row = db.get_account(42)                     # open record
    total = db.count_accounts_[int]()            # return value as result
    names = db.list_names[Iterator[str]](owner="ann")
    account = await db.get_account_async[Account](42)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional, Tuple

from .invocation import CallDescriptor
from .naming import validate_name
from .procedures import ASYNC_SUFFIX
from .shapes import ResultShape, resolve_shape

if TYPE_CHECKING:
    from .config import Configuration

RETURN_VALUE_SUFFIX = "_"


def parse_operation(name: str) -> Tuple[str, bool, bool]:
    """Split an attribute name into `(operation, return_value_as_result, is_async)`.

    `_async` is stripped first, then one trailing `_`.
    """

    is_async = name.endswith(ASYNC_SUFFIX) and len(name) > len(ASYNC_SUFFIX)
    if is_async:
        name = name[: -len(ASYNC_SUFFIX)]
    return_value = name.endswith(RETURN_VALUE_SUFFIX) and len(name) > 1
    if return_value:
        name = name[: -len(RETURN_VALUE_SUFFIX)]
    return name, return_value, is_async


class DynamicProcedure:
    """Callable procedure reference; subscribe it to choose the result type."""

    def __init__(
        self,
        configuration: Configuration,
        operation: str,
        *,
        result: Any = Any,
        return_value_as_result: bool = False,
        is_async: bool = False,
    ) -> None:
        self.configuration = configuration
        self.operation = validate_name(operation)
        self.result = result
        self.return_value_as_result = return_value_as_result
        self.is_async = is_async
        self.shape: Optional[ResultShape] = resolve_shape(result, is_async=is_async)

    def __getitem__(self, result: Any) -> DynamicProcedure:
        return DynamicProcedure(
            self.configuration,
            self.operation,
            result=result,
            return_value_as_result=self.return_value_as_result,
            is_async=self.is_async,
        )

    def __call__(self, *args: Any, **kwargs: Any) -> Any:
        if args and kwargs:
            raise TypeError(
                f"Procedure {self.operation!r} takes either positional or keyword arguments, not both."
            )
        descriptor = CallDescriptor(
            operation=self.operation,
            shape=self.shape,
            arguments=tuple(kwargs.values()) if kwargs else args,
            argument_names=tuple(kwargs),
            return_value_as_result=self.return_value_as_result,
            is_async=self.is_async,
        )
        return self.configuration.invoker.invoke(descriptor)

    def __repr__(self) -> str:
        return f"<dynamic procedure {self.operation} -> {self.shape!r}>"


class DynamicDatabase:
    """Database object whose attributes resolve to `DynamicProcedure`s."""

    def __init__(self, configuration: Configuration) -> None:
        self._configuration = configuration

    def __getattr__(self, name: str) -> DynamicProcedure:
        if name.startswith("_"):
            raise AttributeError(name)
        operation, return_value, is_async = parse_operation(name)
        return DynamicProcedure(
            self._configuration,
            operation,
            return_value_as_result=return_value,
            is_async=is_async,
        )

    def call(
        self,
        name: str,
        *args: Any,
        result: Any = Any,
        return_value_as_result: bool = False,
        is_async: bool = False,
        **kwargs: Any,
    ) -> Any:
        """Call a procedure by its exact name, without suffix parsing."""

        procedure = DynamicProcedure(
            self._configuration,
            name,
            result=result,
            return_value_as_result=return_value_as_result,
            is_async=is_async,
        )
        return procedure(*args, **kwargs)
