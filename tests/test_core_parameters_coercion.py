from __future__ import annotations

import datetime as dt
import unittest
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from mini_proc import (
    ArgumentSpec,
    BindingError,
    CallDescriptor,
    CoercionError,
    DbApiDriver,
    Direction,
    InvalidNameError,
    NamingTranslator,
    Ref,
    SQLiteDialect,
    WireParameter,
    WireType,
    resolve_wire_type,
)
from mini_proc.core.coercion import check_scalar, coerce_scalar
from mini_proc.core.models import bind_model, model_fields
from mini_proc.core.parameters import bind_parameters
from tests._fake_db_api import DB_NULL, FakeBackend


class Color(str, Enum):
    RED = "red"
    BLUE = "blue"


class Level(Enum):
    LOW = 1
    HIGH = 2


class Point:
    pass


@dataclass
class Account:
    id: int = 0
    owner: str = field(default="", metadata={"db_name": "account_owner"})
    color: Optional[Color] = None
    tags: List[str] = field(default_factory=list)
    level: Optional[Level] = field(default=None, metadata={"codec": "enum"})


@dataclass
class StrictAccount:
    id: int
    owner: str


@dataclass
class BadOverride:
    id: int = field(default=0, metadata={"db_name": "bad name"})


class _DerivingCommand:
    procedure = "transfer"

    def __init__(self, derived: Any) -> None:
        self._derived = derived
        self.derive_calls = 0

    def derive_parameters(self) -> List[WireParameter]:
        self.derive_calls += 1
        if isinstance(self._derived, BaseException):
            raise self._derived
        return [
            WireParameter(name=param.name, direction=param.direction, wire_type=param.wire_type)
            for param in self._derived
        ]


class _NoneDriver:
    null = None

    def create_parameter(self, **kwargs: Any) -> None:
        return None


class _FailingDriver:
    null = None

    def create_parameter(self, **kwargs: Any) -> WireParameter:
        raise ValueError("unsupported type")


DERIVED = [
    WireParameter(name="a"),
    WireParameter(name="b", direction=Direction.OUTPUT),
    WireParameter(name="c"),
]


class WireTypeTests(unittest.TestCase):
    def test_primitive_table(self) -> None:
        for declared, expected in (
            (bool, WireType.BOOLEAN),
            (int, WireType.INT64),
            (float, WireType.DOUBLE),
            (Decimal, WireType.DECIMAL),
            (str, WireType.STRING),
            (bytes, WireType.BINARY),
            (dt.datetime, WireType.DATETIME),
            (dt.date, WireType.DATE),
            (dt.timedelta, WireType.INTERVAL),
            (uuid.UUID, WireType.GUID),
            (Dict[str, Any], WireType.JSON),
        ):
            with self.subTest(declared=declared):
                self.assertIs(resolve_wire_type(declared), expected)

    def test_enums_use_their_value_type(self) -> None:
        self.assertIs(resolve_wire_type(Color), WireType.STRING)
        self.assertIs(resolve_wire_type(Level), WireType.INT64)

    def test_resolver_is_consulted_for_unknown_types(self) -> None:
        def resolver(declared: Any) -> Optional[WireType]:
            return WireType.JSON if declared is Point else None

        self.assertIs(resolve_wire_type(Point, resolver), WireType.JSON)
        self.assertIs(resolve_wire_type(object, resolver), WireType.STRING)

    def test_unknown_types_default_to_string(self) -> None:
        self.assertIs(resolve_wire_type(Point), WireType.STRING)


class DeclaredBindingTests(unittest.TestCase):
    def setUp(self) -> None:
        self.driver = DbApiDriver(FakeBackend().connect)

    def _bind(self, specs: List[ArgumentSpec], arguments: tuple, naming: NamingTranslator = None) -> List[WireParameter]:  # noqa: E501
        call = CallDescriptor(operation="transfer", parameters=tuple(specs), arguments=arguments)
        return bind_parameters(call, _DerivingCommand(DERIVED), self.driver, naming or NamingTranslator())

    def test_parameters_follow_declaration_order(self) -> None:
        specs = [
            ArgumentSpec("user_id", int),
            ArgumentSpec("amount", Decimal, size=18),
            ArgumentSpec("balance", Decimal, Direction.OUTPUT),
        ]
        params = self._bind(specs, (7, Decimal("1.5"), Ref()))

        self.assertEqual([param.name for param in params], ["user_id", "amount", "balance"])
        self.assertEqual([param.argument_index for param in params], [0, 1, 2])
        self.assertEqual(params[0].value, 7)
        self.assertIs(params[1].wire_type, WireType.DECIMAL)
        self.assertEqual(params[1].size, 18)
        self.assertIs(params[2].direction, Direction.OUTPUT)
        self.assertIsNone(params[2].value)

    def test_ref_holders_are_unwrapped(self) -> None:
        params = self._bind([ArgumentSpec("counter", int, Direction.OUTPUT)], (Ref(3),))
        self.assertEqual(params[0].value, 3)

    def test_optional_nullable_input_left_as_none_is_skipped(self) -> None:
        specs = [
            ArgumentSpec("user_id", int),
            ArgumentSpec("note", str, is_optional=True, nullable=True),
        ]
        params = self._bind(specs, (1, None))
        self.assertEqual([param.name for param in params], ["user_id"])

    def test_none_is_bound_when_the_argument_is_required(self) -> None:
        specs = [ArgumentSpec("note", str, nullable=True)]
        params = self._bind(specs, (None,))
        self.assertEqual([(param.name, param.value) for param in params], [("note", None)])

    def test_optional_output_left_as_none_is_still_bound(self) -> None:
        specs = [ArgumentSpec("total", int, Direction.OUTPUT, is_optional=True, nullable=True)]
        self.assertEqual(len(self._bind(specs, (None,))), 1)

    def test_naming_translator_and_overrides(self) -> None:
        specs = [ArgumentSpec("user_id", int), ArgumentSpec("name", str, wire_name="UserName")]
        params = self._bind(specs, (1, "ann"), NamingTranslator(to_wire=str.upper))
        self.assertEqual([param.name for param in params], ["USER_ID", "UserName"])

    def test_declared_call_never_derives(self) -> None:
        command = _DerivingCommand(DERIVED)
        call = CallDescriptor(operation="p", parameters=(), arguments=())
        self.assertEqual(bind_parameters(call, command, self.driver, NamingTranslator()), [])
        self.assertEqual(command.derive_calls, 0)

    def test_argument_count_must_match_declaration(self) -> None:
        with self.assertRaises(BindingError):
            CallDescriptor(operation="p", parameters=(ArgumentSpec("a", int),), arguments=())


class DynamicBindingTests(unittest.TestCase):
    def setUp(self) -> None:
        self.driver = DbApiDriver(FakeBackend().connect)

    def test_keyword_call_binds_inputs_by_name(self) -> None:
        call = CallDescriptor(operation="p", arguments=(1, "ann"), argument_names=("user_id", "name"))
        params = bind_parameters(call, _DerivingCommand(DERIVED), self.driver, NamingTranslator())

        self.assertEqual([(param.name, param.value) for param in params], [("user_id", 1), ("name", "ann")])
        self.assertEqual([param.wire_type for param in params], [WireType.INT64, WireType.STRING])
        self.assertTrue(all(param.direction is Direction.INPUT for param in params))

    def test_positional_values_fill_derived_inputs_only(self) -> None:
        call = CallDescriptor(operation="transfer", arguments=(1, 2))
        params = bind_parameters(call, _DerivingCommand(DERIVED), self.driver, NamingTranslator())

        self.assertEqual([param.name for param in params], ["a", "b", "c"])
        self.assertEqual([param.value for param in params], [1, None, 2])
        self.assertEqual([param.argument_index for param in params], [0, None, 1])

    def test_trailing_unassigned_inputs_are_dropped(self) -> None:
        call = CallDescriptor(operation="transfer", arguments=(1,))
        params = bind_parameters(call, _DerivingCommand(DERIVED), self.driver, NamingTranslator())
        self.assertEqual([param.name for param in params], ["a", "b"])

    def test_too_many_positional_values(self) -> None:
        call = CallDescriptor(operation="transfer", arguments=(1, 2, 3))
        with self.assertRaises(BindingError):
            bind_parameters(call, _DerivingCommand(DERIVED), self.driver, NamingTranslator())

    def test_derivation_failures_become_binding_errors(self) -> None:
        call = CallDescriptor(operation="transfer", arguments=(1,))
        with self.assertRaises(BindingError) as ctx:
            bind_parameters(call, _DerivingCommand(RuntimeError("no catalog")), self.driver, NamingTranslator())
        self.assertIn("transfer", str(ctx.exception))


class CreateParameterTests(unittest.TestCase):
    def _call(self) -> CallDescriptor:
        return CallDescriptor(operation="p", parameters=(ArgumentSpec("a", int),), arguments=(1,))

    def test_driver_returning_nothing(self) -> None:
        with self.assertRaises(BindingError):
            bind_parameters(self._call(), _DerivingCommand(DERIVED), _NoneDriver(), NamingTranslator())

    def test_driver_failure_is_wrapped(self) -> None:
        with self.assertRaises(BindingError) as ctx:
            bind_parameters(self._call(), _DerivingCommand(DERIVED), _FailingDriver(), NamingTranslator())
        self.assertIsInstance(ctx.exception.__cause__, ValueError)

    def test_unsupported_direction_fails_before_execution(self) -> None:
        driver = DbApiDriver(FakeBackend().connect, SQLiteDialect())
        call = CallDescriptor(
            operation="p",
            parameters=(ArgumentSpec("total", int, Direction.OUTPUT),),
            arguments=(Ref(),),
        )
        with self.assertRaises(BindingError):
            bind_parameters(call, _DerivingCommand(DERIVED), driver, NamingTranslator())


class ScalarCoercionTests(unittest.TestCase):
    def test_check_scalar_accepts_matching_values(self) -> None:
        self.assertEqual(check_scalar(5, int), 5)
        self.assertEqual(check_scalar("x", str), "x")
        self.assertEqual(check_scalar(3, float), 3)
        self.assertIsNone(check_scalar(None, int))
        self.assertEqual(check_scalar("raw", object), "raw")

    def test_check_scalar_looks_up_enums(self) -> None:
        self.assertIs(check_scalar("red", Color), Color.RED)
        self.assertIs(check_scalar(2, Level), Level.HIGH)
        with self.assertRaises(CoercionError):
            check_scalar("green", Color)

    def test_check_scalar_rejects_mismatches(self) -> None:
        with self.assertRaises(CoercionError):
            check_scalar("5", int)
        with self.assertRaises(TypeError):
            check_scalar(1.5, int)

    def test_coerce_scalar_converts(self) -> None:
        self.assertEqual(coerce_scalar("7", int), 7)
        self.assertEqual(coerce_scalar(7.0, int), 7)
        self.assertEqual(coerce_scalar(True, int), 1)
        self.assertEqual(coerce_scalar("1.50", Decimal), Decimal("1.50"))
        self.assertIs(coerce_scalar("yes", bool), True)
        self.assertIs(coerce_scalar(0, bool), False)
        self.assertEqual(coerce_scalar(b"abc", str), "abc")
        self.assertEqual(coerce_scalar("2024-01-02", dt.date), dt.date(2024, 1, 2))
        self.assertEqual(coerce_scalar(dt.datetime(2024, 1, 2, 3, 4), dt.date), dt.date(2024, 1, 2))
        self.assertEqual(coerce_scalar(90, dt.timedelta), dt.timedelta(seconds=90))
        self.assertIs(coerce_scalar("blue", Color), Color.BLUE)
        value = uuid.uuid4()
        self.assertEqual(coerce_scalar(str(value), uuid.UUID), value)

    def test_coerce_scalar_failures(self) -> None:
        for value, target in ((7.5, int), ("maybe", bool), ("abc", Decimal), ("x", int)):
            with self.subTest(value=value, target=target):
                with self.assertRaises(CoercionError):
                    coerce_scalar(value, target)


class ModelBindingTests(unittest.TestCase):
    def test_fields_are_matched_by_wire_name(self) -> None:
        binding = bind_model(
            Account,
            ["id", "account_owner", "color", "tags", "level", "extra"],
            NamingTranslator(),
        )
        account = binding.build((1, "ann", "red", '["a", "b"]', "HIGH", "ignored"))
        self.assertEqual(account, Account(1, "ann", Color.RED, ["a", "b"], Level.HIGH))

    def test_missing_columns_keep_defaults_and_null_marker_becomes_none(self) -> None:
        binding = bind_model(Account, ["id", "color"], NamingTranslator())
        self.assertEqual(binding.build((5, DB_NULL), DB_NULL), Account(id=5))

    def test_inflector_applies_to_fields_without_override(self) -> None:
        binding = bind_model(Account, ["ID", "account_owner"], NamingTranslator(to_wire=str.upper))
        self.assertEqual(binding.positions, {"id": 0, "owner": 1})

    def test_undecodable_cell(self) -> None:
        binding = bind_model(Account, ["color"], NamingTranslator())
        with self.assertRaises(CoercionError):
            binding.build(("green",))

    def test_missing_required_field(self) -> None:
        binding = bind_model(StrictAccount, ["id"], NamingTranslator())
        with self.assertRaises(CoercionError):
            binding.build((1,))

    def test_invalid_db_name_metadata(self) -> None:
        with self.assertRaises(InvalidNameError):
            model_fields(BadOverride)


if __name__ == "__main__":
    unittest.main()
