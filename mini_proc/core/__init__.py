"""Public core API for procedure calls, result shapes and records."""

from .annotations import Direction, Out, Param, Ref, ReturnValue, db_name, return_value_as_result
from .config import Configuration, ConfigurationBuilder
from .cursors import AsyncRowIterator, ColumnSpec, DeferredAsyncIterator, ResultCursor, RowIterator
from .dynamic import DynamicDatabase, DynamicProcedure
from .errors import (
    BindingError,
    CoercionError,
    InvalidNameError,
    ProcedureError,
    ShapeResolutionError,
)
from .extractors import ExtractorEntry, ExtractorRegistry, default_registry
from .invocation import ArgumentSpec, CallDescriptor, CallState, Invoker, ProcedureCall
from .naming import NamingTranslator
from .parameters import WireParameter, WireType, resolve_wire_type
from .procedures import Procedures
from .records import Record, RecordField, get_field, instantiate, record_fields, set_field, synthesize
from .shapes import ResultShape, ShapeKind, resolve_shape

__all__ = [
    "ArgumentSpec",
    "AsyncRowIterator",
    "BindingError",
    "CallDescriptor",
    "CallState",
    "CoercionError",
    "ColumnSpec",
    "Configuration",
    "ConfigurationBuilder",
    "DeferredAsyncIterator",
    "Direction",
    "DynamicDatabase",
    "DynamicProcedure",
    "ExtractorEntry",
    "ExtractorRegistry",
    "InvalidNameError",
    "Invoker",
    "NamingTranslator",
    "Out",
    "Param",
    "ProcedureCall",
    "ProcedureError",
    "Procedures",
    "Record",
    "RecordField",
    "Ref",
    "ResultCursor",
    "ResultShape",
    "ReturnValue",
    "RowIterator",
    "ShapeKind",
    "ShapeResolutionError",
    "WireParameter",
    "WireType",
    "db_name",
    "default_registry",
    "get_field",
    "instantiate",
    "record_fields",
    "resolve_shape",
    "resolve_wire_type",
    "return_value_as_result",
    "set_field",
    "synthesize",
]
