"""Declarative caller surface: annotated methods become procedure calls.

Example:
    class Accounts(Procedures):
        def get_account(self, account_id: int) -> Account: ...

        def list_accounts(self, owner: Optional[str] = None) -> Iterator[Account]: ...

        async def close_account_async(self, account_id: int) -> None: ...

        @return_value_as_result
        def count_accounts(self) -> int: ...

        @db_name("acc_transfer")
        def transfer(
            self,
            source: int,
            target: int,
            amount: Annotated[Decimal, Param(size=18)],
            balance: Out[Decimal],
        ) -> None: ...

    accounts = configuration.create_instance(Accounts)
    balance = Ref()
    accounts.transfer(1, 2, Decimal("10"), balance)
"""

from __future__ import annotations

import functools
import inspect
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional, Tuple, get_type_hints

from .annotations import declared_db_name, is_return_value_as_result
from .errors import BindingError
from .invocation import ArgumentSpec, CallDescriptor
from .shapes import ResultShape, resolve_shape

if TYPE_CHECKING:
    from .config import Configuration

ASYNC_SUFFIX = "_async"


def operation_name(func_name: str) -> str:
    """Method name without a trailing `_async`."""

    if func_name.endswith(ASYNC_SUFFIX) and len(func_name) > len(ASYNC_SUFFIX):
        return func_name[: -len(ASYNC_SUFFIX)]
    return func_name


@dataclass(frozen=True)
class ProcedureSignature:
    """Resolved call metadata of one declared procedure method."""

    operation: str
    wire_name: Optional[str]
    shape: Optional[ResultShape]
    parameters: Tuple[ArgumentSpec, ...]
    signature: inspect.Signature
    return_value_as_result: bool
    is_async: bool

    @classmethod
    def from_function(cls, func: Callable[..., Any]) -> ProcedureSignature:
        signature = inspect.signature(func)
        hints = _type_hints(func)
        is_async = inspect.iscoroutinefunction(func)

        parameters = []
        for index, (name, parameter) in enumerate(signature.parameters.items()):
            if index == 0:
                continue
            if parameter.kind in (parameter.VAR_POSITIONAL, parameter.VAR_KEYWORD):
                raise BindingError(
                    f"Procedure method {func.__qualname__} cannot declare *{name}; "
                    "use DynamicDatabase for variadic calls."
                )
            parameters.append(
                ArgumentSpec.from_annotation(
                    name,
                    hints.get(name, parameter.annotation),
                    is_optional=parameter.default is not parameter.empty,
                )
            )

        return cls(
            operation=operation_name(func.__name__),
            wire_name=declared_db_name(func),
            shape=resolve_shape(
                hints.get("return", signature.return_annotation),
                is_async=is_async,
            ),
            parameters=tuple(parameters),
            signature=signature,
            return_value_as_result=is_return_value_as_result(func),
            is_async=is_async,
        )

    def describe(self, arguments: Tuple[Any, ...]) -> CallDescriptor:
        return CallDescriptor(
            operation=self.operation,
            shape=self.shape,
            arguments=arguments,
            parameters=self.parameters,
            wire_name=self.wire_name,
            return_value_as_result=self.return_value_as_result,
            is_async=self.is_async,
        )


def _type_hints(func: Callable[..., Any]) -> Dict[str, Any]:
    try:
        return get_type_hints(func, include_extras=True)
    except NameError as exc:
        raise TypeError(f"Cannot resolve annotations of {func.__qualname__}: {exc}") from exc


class ProcedureMethod:
    """Descriptor replacing a declared method with its procedure call."""

    def __init__(self, func: Callable[..., Any]) -> None:
        self.func = func
        self._signature: Optional[ProcedureSignature] = None
        functools.update_wrapper(self, func)

    def resolve(self) -> ProcedureSignature:
        if self._signature is None:
            self._signature = ProcedureSignature.from_function(self.func)
        return self._signature

    def __get__(self, instance: Any, owner: Any = None) -> Any:
        if instance is None:
            return self
        return functools.partial(self.call, instance)

    def call(self, instance: Procedures, *args: Any, **kwargs: Any) -> Any:
        resolved = self.resolve()
        bound = resolved.signature.bind(instance, *args, **kwargs)
        bound.apply_defaults()
        arguments = tuple(bound.arguments[spec.name] for spec in resolved.parameters)
        return instance.configuration.invoker.invoke(resolved.describe(arguments))

    def __repr__(self) -> str:
        return f"<procedure {self.func.__qualname__}>"


class Procedures:
    """Base class of declarative procedure sets.

    Every public function defined on a subclass is a stored-procedure call;
    its body is never executed. Annotations are resolved when the first
    instance is created, so unsupported return types fail early with
    `ShapeResolutionError`.
    """

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        for name, value in list(vars(cls).items()):
            if name.startswith("_") or not inspect.isfunction(value):
                continue
            setattr(cls, name, ProcedureMethod(value))

    def __init__(self, configuration: Configuration) -> None:
        self.configuration = configuration
        for method in self.procedure_methods().values():
            method.resolve()

    @classmethod
    def procedure_methods(cls) -> Dict[str, ProcedureMethod]:
        methods: Dict[str, ProcedureMethod] = {}
        for klass in reversed(cls.__mro__):
            for name, value in vars(klass).items():
                if isinstance(value, ProcedureMethod):
                    methods[name] = value
        return methods
