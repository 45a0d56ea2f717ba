from __future__ import annotations

import inspect
import unittest
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import (
    Annotated,
    Any,
    AsyncIterator,
    Dict,
    Iterable,
    Iterator,
    List,
    Mapping,
    Optional,
    Union,
)

from mini_proc import (
    Direction,
    InvalidNameError,
    NamingTranslator,
    Out,
    Param,
    Record,
    ResultShape,
    ReturnValue,
    ShapeKind,
    ShapeResolutionError,
    db_name,
    resolve_shape,
    return_value_as_result,
)
from mini_proc.core.annotations import (
    declared_db_name,
    describe_annotation,
    is_return_value_as_result,
    split_optional,
)
from mini_proc.core.naming import validate_name


class Color(str, Enum):
    RED = "red"
    BLUE = "blue"


@dataclass
class Account:
    id: int = 0
    owner: str = ""


class NamingTests(unittest.TestCase):
    def test_validate_name_accepts_identifiers_and_dotted_names(self) -> None:
        self.assertEqual(validate_name("get_user"), "get_user")
        self.assertEqual(validate_name("dbo.get_user"), "dbo.get_user")

    def test_validate_name_rejects_invalid_names(self) -> None:
        for name in ("", "get user", "drop;table", "a..b", ".a"):
            with self.subTest(name=name):
                with self.assertRaises(InvalidNameError):
                    validate_name(name)

    def test_invalid_name_error_is_value_error(self) -> None:
        with self.assertRaises(ValueError):
            validate_name("x-y")

    def test_translator_defaults_to_identity(self) -> None:
        naming = NamingTranslator()
        self.assertEqual(naming.wire_name("getUser"), "getUser")
        self.assertEqual(naming.display_name("USER_ID"), "USER_ID")

    def test_translator_applies_functions_and_keeps_overrides(self) -> None:
        naming = NamingTranslator(to_wire=str.upper, to_display=str.lower)
        self.assertEqual(naming.wire_name("get_user"), "GET_USER")
        self.assertEqual(naming.display_name("USER_ID"), "user_id")
        self.assertEqual(naming.resolve_wire_name("get_user"), "GET_USER")
        self.assertEqual(naming.resolve_wire_name("get_user", "usp_GetUser"), "usp_GetUser")


class AnnotationTests(unittest.TestCase):
    def test_param_validates_name_and_size(self) -> None:
        self.assertEqual(Param(name="user_name", size=50).size, 50)
        with self.assertRaises(InvalidNameError):
            Param(name="user name")
        with self.assertRaises(ValueError):
            Param(size=0)

    def test_param_coerces_direction_strings(self) -> None:
        self.assertIs(Param(direction="output").direction, Direction.OUTPUT)

    def test_describe_annotation_peels_annotated_and_optional(self) -> None:
        declared = describe_annotation(Optional[Annotated[int, Param(name="n", size=4)]])
        self.assertIs(declared.base, int)
        self.assertTrue(declared.nullable)
        self.assertEqual(declared.param, Param(name="n", size=4))

    def test_out_and_return_value_markers(self) -> None:
        self.assertIs(describe_annotation(Out[int]).param.direction, Direction.OUTPUT)
        self.assertIs(
            describe_annotation(ReturnValue[int]).param.direction,
            Direction.RETURN_VALUE,
        )
        declared = describe_annotation(Annotated[Out[Decimal], Param(size=18)])
        self.assertIs(declared.base, Decimal)
        self.assertIs(declared.param.direction, Direction.OUTPUT)
        self.assertEqual(declared.param.size, 18)

    def test_split_optional(self) -> None:
        self.assertEqual(split_optional(Optional[int]), (int, True))
        self.assertEqual(split_optional(int), (int, False))
        self.assertEqual(split_optional(Union[int, str]), (Union[int, str], False))
        self.assertEqual(split_optional(Union[int, str, None]), (Union[int, str], True))

    def test_method_decorators(self) -> None:
        @db_name("usp_get_user")
        @return_value_as_result
        def get_user() -> int: ...

        self.assertEqual(declared_db_name(get_user), "usp_get_user")
        self.assertTrue(is_return_value_as_result(get_user))

    def test_db_name_is_validated_when_declared(self) -> None:
        with self.assertRaises(InvalidNameError):
            db_name("get user")


class ShapeTests(unittest.TestCase):
    def test_no_result(self) -> None:
        self.assertIsNone(resolve_shape(None))
        self.assertIsNone(resolve_shape(type(None)))

    def test_scalars(self) -> None:
        for annotation, target in (
            (int, int),
            (Optional[str], str),
            (Decimal, Decimal),
            (Color, Color),
            (bool, bool),
        ):
            with self.subTest(annotation=annotation):
                self.assertEqual(resolve_shape(annotation), ResultShape.scalar(target))

    def test_mappings(self) -> None:
        for annotation in (dict, Dict[str, Any], Mapping[str, int], Optional[Dict[str, Any]]):
            with self.subTest(annotation=annotation):
                self.assertIs(resolve_shape(annotation).kind, ShapeKind.KEY_VALUE_MAP)

    def test_open_markers(self) -> None:
        for annotation in (Any, object, Record, inspect.Signature.empty):
            with self.subTest(annotation=annotation):
                self.assertEqual(resolve_shape(annotation), ResultShape.open())

    def test_known_structured_type(self) -> None:
        self.assertEqual(resolve_shape(Optional[Account]), ResultShape.known(Account))

    def test_sequences(self) -> None:
        shape = resolve_shape(Iterator[Account])
        self.assertIs(shape.kind, ShapeKind.SEQUENCE)
        self.assertEqual(shape.inner, ResultShape.known(Account))
        self.assertFalse(shape.async_items)
        self.assertFalse(shape.is_async)

        self.assertEqual(resolve_shape(Iterable[int]).inner, ResultShape.scalar(int))
        self.assertEqual(resolve_shape(Iterator).inner, ResultShape.open())

    def test_async_item_sequences_run_asynchronously(self) -> None:
        shape = resolve_shape(AsyncIterator[Dict[str, Any]])
        self.assertTrue(shape.async_items)
        self.assertTrue(shape.is_async)
        self.assertTrue(shape.is_async_sequence)
        self.assertEqual(shape.inner, ResultShape.mapping())

    def test_async_wrapper_unwraps_to_inner_shape(self) -> None:
        shape = resolve_shape(int, is_async=True)
        self.assertTrue(shape.is_async)
        self.assertEqual(shape.unwrap(), ResultShape.scalar(int))

    def test_async_call_cannot_return_blocking_sequence(self) -> None:
        with self.assertRaises(ShapeResolutionError):
            resolve_shape(Iterator[int], is_async=True)

    def test_unsupported_annotations(self) -> None:
        for annotation in (List[int], Iterator[Iterator[int]], Dict[int, str], set):
            with self.subTest(annotation=annotation):
                with self.assertRaises(ShapeResolutionError):
                    resolve_shape(annotation)

    def test_shape_error_is_type_error(self) -> None:
        with self.assertRaises(TypeError):
            resolve_shape(List[int])

    def test_nested_sequence_shape_is_rejected(self) -> None:
        inner = ResultShape.sequence(ResultShape.open())
        with self.assertRaises(ShapeResolutionError):
            ResultShape.sequence(inner)


if __name__ == "__main__":
    unittest.main()
