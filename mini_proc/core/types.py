"""Shared core type aliases used across naming, configuration, and dialects."""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Union

NamedParams = Dict[str, Any]
PositionalParams = List[Any]
QueryParams = Union[NamedParams, PositionalParams, None]

NameFunc = Callable[[str], str]
