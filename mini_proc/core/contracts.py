"""Core port contracts implemented by backend driver adapters."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, List, Optional, Protocol

from .annotations import Direction

if TYPE_CHECKING:
    from .cursors import ResultCursor
    from .parameters import WireParameter, WireType


class CommandPort(Protocol):
    """One stored-procedure command bound to an open connection."""

    procedure: str
    parameters: List[WireParameter]

    def derive_parameters(self) -> List[WireParameter]: ...

    def execute_scalar(self) -> Any: ...

    def execute_reader(self) -> ResultCursor: ...

    def execute_non_query(self) -> int: ...


class AsyncCommandPort(Protocol):
    """Suspending variant of `CommandPort`."""

    procedure: str
    parameters: List[WireParameter]

    async def derive_parameters_async(self) -> List[WireParameter]: ...

    async def execute_scalar_async(self) -> Any: ...

    async def execute_reader_async(self) -> ResultCursor: ...

    async def execute_non_query_async(self) -> int: ...


class ConnectionPort(Protocol):
    """Connection owned by exactly one call."""

    def create_command(self, procedure: str) -> Any: ...

    def release(self, error: Optional[BaseException] = None) -> None: ...

    async def release_async(self, error: Optional[BaseException] = None) -> None: ...


class DriverPort(Protocol):
    """Backend driver behavior required by the invocation binder.

    `null` is the backend's null marker; cells identical to it are
    materialized as `None`.
    """

    null: Any

    def connect(self) -> ConnectionPort: ...

    async def connect_async(self) -> ConnectionPort: ...

    def create_parameter(
        self,
        *,
        name: str,
        direction: Direction,
        wire_type: WireType,
        size: Optional[int],
        value: Any,
    ) -> WireParameter: ...
