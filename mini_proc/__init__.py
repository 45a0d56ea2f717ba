"""Stored-procedure calls over DB-API drivers with shaped results."""

from .core import *  # noqa: F401,F403
from .core import __all__ as _core_all
from .ports import *  # noqa: F401,F403
from .ports import __all__ as _ports_all

__all__ = [*_core_all, *_ports_all]
