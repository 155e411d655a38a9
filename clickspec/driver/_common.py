"""Shared definitions for the driver layer."""

from enum import Enum
from typing import Final

from clickspec.driver.reader import RESULT_FORMAT

__all__ = ("FORMAT_DIRECTIVE", "CommandShape", "ConnectionState", "apply_shape")

FORMAT_DIRECTIVE: Final[str] = f" FORMAT {RESULT_FORMAT}"


class ConnectionState(str, Enum):
    """Lifecycle states of a connection."""

    CLOSED = "closed"
    OPEN = "open"
    BROKEN = "broken"

    def __str__(self) -> str:
        return self.value


class CommandShape(str, Enum):
    """Requested execution mode of a command.

    Each shape maps to a fixed SQL suffix and to whether the statement asks the
    server for the self-describing binary result format.
    """

    NON_QUERY = "non_query"
    DEFAULT = "default"
    SINGLE_RESULT = "single_result"
    SINGLE_ROW = "single_row"
    SCHEMA_ONLY = "schema_only"

    @property
    def suffix(self) -> str:
        return _SHAPE_SQL[self][0]

    @property
    def emits_format(self) -> bool:
        return _SHAPE_SQL[self][1]

    def __str__(self) -> str:
        return self.value


_SHAPE_SQL: Final[dict[CommandShape, "tuple[str, bool]"]] = {
    CommandShape.NON_QUERY: ("", False),
    CommandShape.DEFAULT: ("", True),
    CommandShape.SINGLE_RESULT: (" LIMIT 1", True),
    CommandShape.SINGLE_ROW: (" LIMIT 1", True),
    CommandShape.SCHEMA_ONLY: (" LIMIT 0", True),
}


def apply_shape(sql: str, shape: CommandShape) -> str:
    """Append the shape's row limit and format directive to ``sql``."""
    if shape.emits_format:
        return f"{sql}{shape.suffix}{FORMAT_DIRECTIVE}"
    return f"{sql}{shape.suffix}"
