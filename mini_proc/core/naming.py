"""Name translation between application identifiers and wire identifiers."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from .errors import InvalidNameError
from .types import NameFunc

VALID_NAME_PATTERN = re.compile(r"^\w+(\.\w+)*$")


def validate_name(name: str) -> str:
    """Validate an explicit wire name and return it unchanged.

    Dotted names (`schema.procedure`) are accepted, each part must be an
    alphanumeric identifier.

    Raises:
        InvalidNameError: If `name` is empty or not an identifier.
    """

    if not isinstance(name, str) or not VALID_NAME_PATTERN.match(name):
        raise InvalidNameError(
            f"The name {name!r} must be a valid alphanumeric variable name."
        )
    return name


@dataclass(frozen=True)
class NamingTranslator:
    """Pair of optional pure functions applied wherever a name crosses the wire.

    `to_wire` maps application names (method, argument and field names) to
    backend names; `to_display` maps backend column names back to the caller's
    convention. Missing functions behave as identity.
    """

    to_wire: Optional[NameFunc] = None
    to_display: Optional[NameFunc] = None

    def wire_name(self, name: str) -> str:
        if self.to_wire is None:
            return name
        return self.to_wire(name)

    def display_name(self, name: str) -> str:
        if self.to_display is None:
            return name
        return self.to_display(name)

    def resolve_wire_name(self, name: str, override: Optional[str] = None) -> str:
        """Return the explicit override verbatim, otherwise translate `name`."""

        if override is not None:
            return override
        return self.wire_name(name)


IDENTITY = NamingTranslator()
