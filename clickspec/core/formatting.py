"""Parameter value encodings.

Every parameter can be rendered two ways:

* :func:`format_http_parameter` produces the text ClickHouse parses out of a
  ``param_<name>`` URL query pair. URL quoting is left to the URI builder.
* :func:`format_inline_parameter` produces a SQL literal that can replace a
  ``{name:Type}`` placeholder in the statement text.

Elements of arrays, tuples and maps are always literal-encoded, even on the HTTP
path, because the server parses container parameters as SQL literals.
"""

import datetime
import decimal
import ipaddress
import math
import uuid
import zoneinfo
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Callable, Final, Optional

from clickspec.core.types import ClickHouseType, infer_type_name, parse_type_name
from clickspec.exceptions import ParameterFormatError, UnsupportedParameterTypeError

__all__ = (
    "HTTP_NULL",
    "INLINE_NULL",
    "ClickHouseParameter",
    "escape_http_string",
    "escape_string_literal",
    "format_http_parameter",
    "format_http_value",
    "format_inline_parameter",
    "format_inline_value",
)

HTTP_NULL: Final[str] = "\\N"
INLINE_NULL: Final[str] = "null"

INTEGER_BITS: Final[dict[str, "tuple[int, bool]"]] = {
    "Int8": (8, True),
    "Int16": (16, True),
    "Int32": (32, True),
    "Int64": (64, True),
    "Int128": (128, True),
    "Int256": (256, True),
    "UInt8": (8, False),
    "UInt16": (16, False),
    "UInt32": (32, False),
    "UInt64": (64, False),
    "UInt128": (128, False),
    "UInt256": (256, False),
}
FLOAT_TYPES: Final[frozenset[str]] = frozenset({"Float32", "Float64"})
DECIMAL_BITS: Final[dict[str, int]] = {"Decimal32": 32, "Decimal64": 64, "Decimal128": 128, "Decimal256": 256}
STRING_TYPES: Final[frozenset[str]] = frozenset({"String", "FixedString", "Enum", "Enum8", "Enum16"})
BOOL_TYPES: Final[frozenset[str]] = frozenset({"Bool", "Boolean"})
DATE_TYPES: Final[frozenset[str]] = frozenset({"Date", "Date32"})

_HTTP_ESCAPES: Final[dict[int, str]] = str.maketrans({"\\": "\\\\", "\t": "\\t", "\n": "\\n", "'": "\\'"})
_LITERAL_ESCAPES: Final[dict[int, str]] = str.maketrans({"\\": "\\\\", "'": "\\'"})


@dataclass
class ClickHouseParameter:
    """A named query parameter.

    When ``type_name`` is omitted the tag is inferred from the value.
    """

    name: str
    value: Any
    type_name: Optional[str] = None

    @property
    def clickhouse_type(self) -> ClickHouseType:
        return parse_type_name(self.type_name or infer_type_name(self.value))


def escape_http_string(value: str) -> str:
    return value.translate(_HTTP_ESCAPES)


def escape_string_literal(value: str) -> str:
    return f"'{value.translate(_LITERAL_ESCAPES)}'"


def _fail(value: Any, ch_type: ClickHouseType) -> ParameterFormatError:
    return ParameterFormatError(f"Cannot convert {value!r} to {ch_type}")


def _to_int(value: Any, ch_type: ClickHouseType) -> int:
    if isinstance(value, bool):
        raise _fail(value, ch_type)
    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        try:
            result = int(value.strip())
        except ValueError as e:
            raise _fail(value, ch_type) from e
    else:
        raise _fail(value, ch_type)
    bits, signed = INTEGER_BITS[ch_type.name]
    low, high = (-(1 << (bits - 1)), (1 << (bits - 1)) - 1) if signed else (0, (1 << bits) - 1)
    if not low <= result <= high:
        msg = f"Value {value!r} is out of range for {ch_type}"
        raise ParameterFormatError(msg)
    return result


def _to_float(value: Any, ch_type: ClickHouseType) -> str:
    if isinstance(value, bool) or not isinstance(value, (int, float, decimal.Decimal, str)):
        raise _fail(value, ch_type)
    try:
        number = float(value)
    except ValueError as e:
        raise _fail(value, ch_type) from e
    if math.isnan(number):
        return "nan"
    if math.isinf(number):
        return "inf" if number > 0 else "-inf"
    return repr(number)


def _to_decimal(value: Any, ch_type: ClickHouseType) -> decimal.Decimal:
    if isinstance(value, bool):
        raise _fail(value, ch_type)
    try:
        if isinstance(value, float):
            result = decimal.Decimal(repr(value))
        elif isinstance(value, (int, str, decimal.Decimal)):
            result = decimal.Decimal(value)
        else:
            raise _fail(value, ch_type)
    except decimal.InvalidOperation as e:
        raise _fail(value, ch_type) from e
    if not result.is_finite():
        raise _fail(value, ch_type)
    return result


def _decimal_scale(ch_type: ClickHouseType) -> int:
    if ch_type.name == "Decimal":
        return ch_type.int_argument(1, 0)
    return ch_type.int_argument(0, 0)


def _decimal_bits(ch_type: ClickHouseType) -> int:
    if ch_type.name != "Decimal":
        return DECIMAL_BITS[ch_type.name]
    precision = ch_type.int_argument(0, 10)
    for limit, bits in ((9, 32), (18, 64), (38, 128)):
        if precision <= limit:
            return bits
    return 256


def _to_bool(value: Any, ch_type: ClickHouseType) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in {0, 1}:
        return bool(value)
    raise _fail(value, ch_type)


def _to_str(value: Any, ch_type: ClickHouseType) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (bytes, bytearray)):
        try:
            return bytes(value).decode("utf-8")
        except UnicodeDecodeError as e:
            raise _fail(value, ch_type) from e
    raise _fail(value, ch_type)


def _to_date(value: Any, ch_type: ClickHouseType) -> str:
    if isinstance(value, datetime.datetime):
        return value.date().isoformat()
    if isinstance(value, datetime.date):
        return value.isoformat()
    if isinstance(value, str):
        try:
            return datetime.date.fromisoformat(value.strip()).isoformat()
        except ValueError as e:
            raise _fail(value, ch_type) from e
    raise _fail(value, ch_type)


def _timezone_argument(ch_type: ClickHouseType) -> Optional[str]:
    return ch_type.str_argument(1 if ch_type.name == "DateTime64" else 0)


def _to_datetime(value: Any, ch_type: ClickHouseType) -> str:
    if isinstance(value, str):
        try:
            value = datetime.datetime.fromisoformat(value.strip())
        except ValueError as e:
            raise _fail(value, ch_type) from e
    elif isinstance(value, datetime.date) and not isinstance(value, datetime.datetime):
        value = datetime.datetime.combine(value, datetime.time())
    elif not isinstance(value, datetime.datetime):
        raise _fail(value, ch_type)
    timezone = _timezone_argument(ch_type)
    if timezone and value.tzinfo is not None:
        try:
            value = value.astimezone(zoneinfo.ZoneInfo(timezone))
        except (zoneinfo.ZoneInfoNotFoundError, ValueError) as e:
            msg = f"Unknown timezone {timezone!r} in {ch_type}"
            raise UnsupportedParameterTypeError(msg) from e
    text = value.strftime("%Y-%m-%d %H:%M:%S")
    if ch_type.name != "DateTime64":
        return text
    precision = ch_type.int_argument(0, 3)
    if precision <= 0:
        return text
    fraction = f"{value.microsecond:06d}".ljust(precision, "0")[:precision]
    return f"{text}.{fraction}"


def _to_uuid(value: Any, ch_type: ClickHouseType) -> str:
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, str):
        try:
            return str(uuid.UUID(value))
        except ValueError as e:
            raise _fail(value, ch_type) from e
    raise _fail(value, ch_type)


def _to_ip(value: Any, ch_type: ClickHouseType) -> str:
    factory: Callable[[Any], Any] = ipaddress.IPv4Address if ch_type.name == "IPv4" else ipaddress.IPv6Address
    try:
        return str(factory(value))
    except (ValueError, TypeError) as e:
        raise _fail(value, ch_type) from e


def _elements(value: Any, ch_type: ClickHouseType) -> "Sequence[Any]":
    if isinstance(value, (str, bytes, bytearray, Mapping)) or not isinstance(
        value, (Sequence, set, frozenset)
    ):
        raise _fail(value, ch_type)
    return list(value)


def _tuple_elements(value: Any, ch_type: ClickHouseType) -> "list[str]":
    items = _elements(value, ch_type)
    if len(items) != len(ch_type.inner):
        msg = f"Expected {len(ch_type.inner)} tuple elements for {ch_type}, got {len(items)}"
        raise ParameterFormatError(msg)
    return [format_inline_value(inner, item) for inner, item in zip(ch_type.inner, items)]


def _map_items(value: Any, ch_type: ClickHouseType) -> "list[tuple[str, str]]":
    if not isinstance(value, Mapping):
        raise _fail(value, ch_type)
    key_type, value_type = ch_type.inner
    return [(format_inline_value(key_type, key), format_inline_value(value_type, item)) for key, item in value.items()]


def format_http_value(ch_type: ClickHouseType, value: Any) -> str:
    """Render ``value`` as the text of an HTTP query parameter.

    Args:
        ch_type: Declared parameter type.
        value: Parameter value.

    Raises:
        UnsupportedParameterTypeError: If the type is unknown.
        ParameterFormatError: If the value does not fit the type.

    Returns:
        Unquoted parameter text.
    """
    ch_type = ch_type.unwrap()
    name = ch_type.name
    if name == "Nullable":
        return HTTP_NULL if value is None else format_http_value(ch_type.element, value)
    if name == "Nothing":
        if value is not None:
            raise _fail(value, ch_type)
        return HTTP_NULL
    if value is None:
        raise _fail(value, ch_type)
    if name in INTEGER_BITS:
        return str(_to_int(value, ch_type))
    if name in FLOAT_TYPES:
        return _to_float(value, ch_type)
    if name == "Decimal" or name in DECIMAL_BITS:
        return format(_to_decimal(value, ch_type), "f")
    if name in BOOL_TYPES:
        return "true" if _to_bool(value, ch_type) else "false"
    if name in STRING_TYPES:
        return escape_http_string(_to_str(value, ch_type))
    if name in DATE_TYPES:
        return _to_date(value, ch_type)
    if name in {"DateTime", "DateTime64"}:
        return _to_datetime(value, ch_type)
    if name == "UUID":
        return _to_uuid(value, ch_type)
    if name in {"IPv4", "IPv6"}:
        return _to_ip(value, ch_type)
    if name == "Array":
        return f"[{','.join(format_inline_value(ch_type.element, item) for item in _elements(value, ch_type))}]"
    if name == "Tuple":
        return f"({','.join(_tuple_elements(value, ch_type))})"
    if name == "Map":
        return "{" + ",".join(f"{key}:{item}" for key, item in _map_items(value, ch_type)) + "}"
    msg = f"Unsupported parameter type: {ch_type}"
    raise UnsupportedParameterTypeError(msg)


def format_inline_value(ch_type: ClickHouseType, value: Any) -> str:
    """Render ``value`` as a SQL literal of type ``ch_type``.

    Raises:
        UnsupportedParameterTypeError: If the type is unknown.
        ParameterFormatError: If the value does not fit the type.
    """
    ch_type = ch_type.unwrap()
    name = ch_type.name
    if name == "Nullable":
        return INLINE_NULL if value is None else format_inline_value(ch_type.element, value)
    if name == "Nothing":
        if value is not None:
            raise _fail(value, ch_type)
        return INLINE_NULL
    if value is None:
        raise _fail(value, ch_type)
    if name in INTEGER_BITS:
        return str(_to_int(value, ch_type))
    if name in FLOAT_TYPES:
        return _to_float(value, ch_type)
    if name == "Decimal" or name in DECIMAL_BITS:
        number = format(_to_decimal(value, ch_type), "f")
        return f"toDecimal{_decimal_bits(ch_type)}('{number}', {_decimal_scale(ch_type)})"
    if name in BOOL_TYPES:
        return "true" if _to_bool(value, ch_type) else "false"
    if name in STRING_TYPES:
        return escape_string_literal(_to_str(value, ch_type))
    if name in DATE_TYPES:
        return f"to{name}('{_to_date(value, ch_type)}')"
    if name in {"DateTime", "DateTime64"}:
        arguments = [f"'{_to_datetime(value, ch_type)}'"]
        if name == "DateTime64":
            arguments.append(str(ch_type.int_argument(0, 3)))
        timezone = _timezone_argument(ch_type)
        if timezone:
            arguments.append(escape_string_literal(timezone))
        return f"to{name}({', '.join(arguments)})"
    if name == "UUID":
        return f"toUUID('{_to_uuid(value, ch_type)}')"
    if name in {"IPv4", "IPv6"}:
        return f"to{name}('{_to_ip(value, ch_type)}')"
    if name == "Array":
        return f"[{', '.join(format_inline_value(ch_type.element, item) for item in _elements(value, ch_type))}]"
    if name == "Tuple":
        return f"tuple({', '.join(_tuple_elements(value, ch_type))})"
    if name == "Map":
        return f"map({', '.join(f'{key}, {item}' for key, item in _map_items(value, ch_type))})"
    msg = f"Unsupported parameter type: {ch_type}"
    raise UnsupportedParameterTypeError(msg)


def format_http_parameter(parameter: ClickHouseParameter) -> str:
    """Encode a parameter for the native ``param_<name>`` URL transport."""
    return format_http_value(parameter.clickhouse_type, parameter.value)


def format_inline_parameter(parameter: ClickHouseParameter) -> str:
    """Encode a parameter as a SQL literal for textual substitution.

    Negative numbers are parenthesized so a ``-`` written before the placeholder
    cannot merge with the sign into a ``--`` comment.
    """
    literal = format_inline_value(parameter.clickhouse_type, parameter.value)
    if literal.startswith("-"):
        return f"({literal})"
    return literal
