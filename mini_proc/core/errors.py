"""Exception types raised by stored-procedure binding and materialization."""

from __future__ import annotations


class ProcedureError(Exception):
    """Base class for all errors raised by mini_proc."""


class BindingError(ProcedureError):
    """Raised when a connection, command or wire parameter cannot be created."""


class ShapeResolutionError(ProcedureError, TypeError):
    """Raised when a requested result shape has no extraction strategy."""


class InvalidNameError(ProcedureError, ValueError):
    """Raised when an explicit wire name is not a valid identifier."""


class CoercionError(ProcedureError, TypeError):
    """Raised when a fetched value cannot be converted to the declared type."""
