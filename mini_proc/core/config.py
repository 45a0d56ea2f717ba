"""Configuration of a stored-procedure database and its fluent builder."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional, Type, TypeVar

from .extractors import ExtractorRegistry, Predicate, Strategy, default_registry
from .invocation import Invoker
from .naming import IDENTITY, NamingTranslator, validate_name
from .parameters import TypeResolver
from .types import NameFunc

if TYPE_CHECKING:
    from .contracts import DriverPort
    from .dynamic import DynamicDatabase

P = TypeVar("P")

DEFAULT_RETURN_VALUE_NAME = "RETURN_VALUE"


@dataclass(frozen=True)
class Configuration:
    """Everything a call needs besides its own arguments.

    Attributes:
        driver: Backend driver creating connections and parameters.
        naming: Name translation between application and wire identifiers.
        type_resolver: Fallback mapping from declared types to wire types.
        ignore_return_value: Treat `return_value_as_result` calls like
            ordinary calls resolved through the registry.
        return_value_name: Wire name of the added return-value parameter.
        intern_records: Reuse one synthesized type per column signature.
        registry: Extraction strategies, frozen once the configuration is built.
    """

    driver: DriverPort
    naming: NamingTranslator = IDENTITY
    type_resolver: Optional[TypeResolver] = None
    ignore_return_value: bool = False
    return_value_name: str = DEFAULT_RETURN_VALUE_NAME
    intern_records: bool = True
    registry: ExtractorRegistry = field(default_factory=lambda: default_registry().freeze())
    invoker: Invoker = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.driver is None:
            raise ValueError("Configuration requires a driver.")
        if not isinstance(self.naming, NamingTranslator):
            raise TypeError("naming must be a NamingTranslator.")
        validate_name(self.return_value_name)
        self.registry.freeze()
        object.__setattr__(self, "invoker", Invoker(self))

    def create_instance(self, cls: Type[P]) -> P:
        """Instantiate a `Procedures` subclass bound to this configuration."""

        return cls(self)  # type: ignore[call-arg]

    def dynamic(self) -> DynamicDatabase:
        """Create a dynamic database where any attribute is a procedure."""

        from .dynamic import DynamicDatabase

        return DynamicDatabase(self)


class ConfigurationBuilder:
    """Fluent builder for `Configuration`.

    Example:
        config = (
            ConfigurationBuilder.for_database(driver)
            .inflector(to_snake_case)
            .ignore_return_value()
            .build()
        )
    """

    def __init__(self, driver: DriverPort) -> None:
        self._driver = driver
        self._to_wire: Optional[NameFunc] = None
        self._to_display: Optional[NameFunc] = None
        self._type_resolver: Optional[TypeResolver] = None
        self._ignore_return_value = False
        self._return_value_name = DEFAULT_RETURN_VALUE_NAME
        self._intern_records = True
        self._registry = default_registry()

    @classmethod
    def for_database(cls, driver: DriverPort) -> ConfigurationBuilder:
        return cls(driver)

    def inflector(self, to_wire: NameFunc) -> ConfigurationBuilder:
        """Translate application names to wire names."""

        self._to_wire = to_wire
        return self

    def deflector(self, to_display: NameFunc) -> ConfigurationBuilder:
        """Translate result column names back to application names."""

        self._to_display = to_display
        return self

    def type_resolver(self, resolver: TypeResolver) -> ConfigurationBuilder:
        self._type_resolver = resolver
        return self

    def ignore_return_value(self, ignore: bool = True) -> ConfigurationBuilder:
        self._ignore_return_value = ignore
        return self

    def return_value_name(self, name: str) -> ConfigurationBuilder:
        self._return_value_name = validate_name(name)
        return self

    def intern_records(self, enabled: bool = True) -> ConfigurationBuilder:
        self._intern_records = enabled
        return self

    def extractor(
        self,
        predicate: Predicate,
        strategy: Strategy,
        *,
        name: Optional[str] = None,
    ) -> ConfigurationBuilder:
        """Append a strategy after the built-in ones."""

        self._registry.register(predicate, strategy, name=name)
        return self

    def build(self) -> Configuration:
        registry = self._registry
        self._registry = registry.copy()
        return Configuration(
            driver=self._driver,
            naming=NamingTranslator(to_wire=self._to_wire, to_display=self._to_display),
            type_resolver=self._type_resolver,
            ignore_return_value=self._ignore_return_value,
            return_value_name=self._return_value_name,
            intern_records=self._intern_records,
            registry=registry.freeze(),
        )