"""ClickHouse type tags attached to query parameters."""

import datetime
import decimal
import ipaddress
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Final, Optional

from clickspec.exceptions import UnsupportedParameterTypeError

__all__ = (
    "CONTAINER_TYPES",
    "WRAPPER_TYPES",
    "ClickHouseType",
    "infer_type_name",
    "parse_type_name",
    "split_arguments",
)

WRAPPER_TYPES: Final[frozenset[str]] = frozenset({"Nullable", "LowCardinality"})
CONTAINER_TYPES: Final[frozenset[str]] = frozenset({"Array", "Tuple", "Map"})
_NESTED_TYPES: Final[frozenset[str]] = WRAPPER_TYPES | CONTAINER_TYPES


@dataclass(frozen=True)
class ClickHouseType:
    """A parsed type tag such as ``Nullable(DateTime64(3, 'UTC'))``.

    ``arguments`` holds the raw text of scalar arguments (precision, scale,
    timezone), ``inner`` the parsed element types of wrapper and container types.
    """

    name: str
    arguments: "tuple[str, ...]" = ()
    inner: "tuple[ClickHouseType, ...]" = ()
    field_names: "tuple[Optional[str], ...]" = field(default=(), compare=False)

    @property
    def is_nullable(self) -> bool:
        return self.name == "Nullable"

    @property
    def element(self) -> "ClickHouseType":
        return self.inner[0]

    def unwrap(self) -> "ClickHouseType":
        """Strip ``LowCardinality`` wrappers, keeping ``Nullable``."""
        current = self
        while current.name == "LowCardinality":
            current = current.element
        return current

    def int_argument(self, index: int, default: int) -> int:
        if index >= len(self.arguments):
            return default
        try:
            return int(self.arguments[index])
        except ValueError as e:
            msg = f"Invalid argument {self.arguments[index]!r} for type {self}"
            raise UnsupportedParameterTypeError(msg) from e

    def str_argument(self, index: int) -> Optional[str]:
        if index >= len(self.arguments):
            return None
        return self.arguments[index].strip("'")

    def __str__(self) -> str:
        if self.inner:
            parts = [
                f"{name} {inner}" if name else str(inner)
                for name, inner in zip(self.field_names or (None,) * len(self.inner), self.inner)
            ]
            return f"{self.name}({', '.join(parts)})"
        if self.arguments:
            return f"{self.name}({', '.join(self.arguments)})"
        return self.name


def split_arguments(text: str) -> "list[str]":
    """Split ``text`` on top-level commas, honouring parentheses and quotes."""
    arguments: list[str] = []
    depth = 0
    quote: Optional[str] = None
    start = 0
    index = 0
    while index < len(text):
        char = text[index]
        if quote:
            if char == "\\":
                index += 1
            elif char == quote:
                quote = None
        elif char in "'`\"":
            quote = char
        elif char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth < 0:
                msg = f"Unbalanced parentheses in type arguments: {text}"
                raise UnsupportedParameterTypeError(msg)
        elif char == "," and depth == 0:
            arguments.append(text[start:index].strip())
            start = index + 1
        index += 1
    if quote or depth:
        msg = f"Unbalanced type arguments: {text}"
        raise UnsupportedParameterTypeError(msg)
    tail = text[start:].strip()
    if tail or arguments:
        arguments.append(tail)
    return arguments


@lru_cache(maxsize=512)
def parse_type_name(type_name: str) -> ClickHouseType:
    """Parse a ClickHouse type tag.

    Args:
        type_name: Tag text, e.g. ``Array(Nullable(String))``.

    Raises:
        UnsupportedParameterTypeError: If the text is not a well-formed tag.

    Returns:
        The parsed type.
    """
    text = type_name.strip()
    if not text:
        msg = "Parameter type cannot be empty"
        raise UnsupportedParameterTypeError(msg)
    open_index = text.find("(")
    if open_index == -1:
        if not text.isidentifier():
            msg = f"Unsupported parameter type: {type_name}"
            raise UnsupportedParameterTypeError(msg)
        return ClickHouseType(text)
    if not text.endswith(")"):
        msg = f"Unsupported parameter type: {type_name}"
        raise UnsupportedParameterTypeError(msg)
    name = text[:open_index].strip()
    if not name.isidentifier():
        msg = f"Unsupported parameter type: {type_name}"
        raise UnsupportedParameterTypeError(msg)
    arguments = split_arguments(text[open_index + 1 : -1])
    if name not in _NESTED_TYPES:
        return ClickHouseType(name, tuple(arguments))
    if not arguments:
        msg = f"Type {name} requires at least one element type"
        raise UnsupportedParameterTypeError(msg)
    if name == "Tuple":
        named = [_split_named_element(argument) for argument in arguments]
        return ClickHouseType(
            name,
            inner=tuple(parse_type_name(element) for _, element in named),
            field_names=tuple(field_name for field_name, _ in named),
        )
    expected = 2 if name == "Map" else 1
    if len(arguments) != expected:
        msg = f"Type {name} expects {expected} element type(s), got {len(arguments)}"
        raise UnsupportedParameterTypeError(msg)
    return ClickHouseType(name, inner=tuple(parse_type_name(argument) for argument in arguments))


def _split_named_element(argument: str) -> "tuple[Optional[str], str]":
    head, _, rest = argument.partition(" ")
    rest = rest.strip()
    if rest and head.isidentifier() and "(" not in head and rest[0].isalpha():
        return head, rest
    return None, argument


def infer_type_name(value: Any) -> str:
    """Derive a type tag for a parameter declared without one.

    Args:
        value: Parameter value.

    Raises:
        UnsupportedParameterTypeError: If no tag maps to the value's Python type.

    Returns:
        A type tag accepted by :func:`parse_type_name`.
    """
    if value is None:
        return "Nullable(Nothing)"
    if isinstance(value, bool):
        return "Bool"
    if isinstance(value, int):
        return "Int64"
    if isinstance(value, float):
        return "Float64"
    if isinstance(value, decimal.Decimal):
        exponent = value.as_tuple().exponent
        scale = -exponent if isinstance(exponent, int) and exponent < 0 else 0
        return f"Decimal(38, {min(scale, 38)})"
    if isinstance(value, str):
        return "String"
    if isinstance(value, datetime.datetime):
        return "DateTime64(6)" if value.microsecond else "DateTime"
    if isinstance(value, datetime.date):
        return "Date"
    if isinstance(value, uuid.UUID):
        return "UUID"
    if isinstance(value, ipaddress.IPv4Address):
        return "IPv4"
    if isinstance(value, ipaddress.IPv6Address):
        return "IPv6"
    if isinstance(value, Mapping):
        if not value:
            return "Map(String, String)"
        key, item = next(iter(value.items()))
        return f"Map({infer_type_name(key)}, {infer_type_name(item)})"
    if isinstance(value, (list, tuple, set, frozenset)):
        element = next((item for item in value if item is not None), None)
        if element is None:
            return "Array(Nullable(Nothing))" if value else "Array(Nothing)"
        inner = infer_type_name(element)
        if any(item is None for item in value):
            inner = f"Nullable({inner})"
        return f"Array({inner})"
    msg = f"Cannot infer a parameter type for {type(value).__name__}"
    raise UnsupportedParameterTypeError(msg)
