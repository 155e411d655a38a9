import re
from typing import Any, Final, Optional

__all__ = (
    "ClickHouseError",
    "ClickHouseServerError",
    "ConnectionStateError",
    "ImproperConfigurationError",
    "InvalidServerVersionError",
    "MissingParameterError",
    "MissingTypeAnnotationError",
    "ParameterError",
    "ParameterFormatError",
    "ProtocolMismatchError",
    "QueryCancelledError",
    "UnsupportedParameterTypeError",
    "UnterminatedPlaceholderError",
)

SERVER_ERROR_CODE_REGEX: Final["re.Pattern[str]"] = re.compile(r"Code:\s*(\d+)")


class ClickHouseError(Exception):
    """Base exception class from which all clickspec exceptions inherit."""

    detail: str

    def __init__(self, *args: Any, detail: str = "") -> None:
        """Initialize ``ClickHouseError``.

        Args:
            *args: args are converted to :class:`str` before passing to :class:`Exception`
            detail: detail of the exception.
        """
        str_args = [str(arg) for arg in args if arg]
        if not detail:
            if str_args:
                detail, *str_args = str_args
            elif hasattr(self, "detail"):
                detail = self.detail
        self.detail = detail
        super().__init__(*str_args)

    def __repr__(self) -> str:
        if self.detail:
            return f"{self.__class__.__name__} - {self.detail}"
        return self.__class__.__name__

    def __str__(self) -> str:
        return " ".join((*self.args, self.detail)).strip()


class ImproperConfigurationError(ClickHouseError):
    """Improper Configuration error.

    Raised synchronously, before any network call, when the driver cannot proceed
    with the configuration it was given.
    """


class InvalidServerVersionError(ImproperConfigurationError, ValueError):
    """The server reported a version string that cannot be parsed."""


class ProtocolMismatchError(ImproperConfigurationError):
    """The server response does not match what the transport was configured to expect."""


class ConnectionStateError(RuntimeError):
    """A connection member was used in a state where it is undefined.

    This is a programming error, so it deliberately sits outside the
    :class:`ClickHouseError` hierarchy.
    """


# -- Parameter Errors --
class ParameterError(ClickHouseError):
    """Base class for parameter-related errors."""

    sql: Optional[str]

    def __init__(self, message: str, sql: Optional[str] = None) -> None:
        """Initialize with optional SQL context."""
        detail_message = message
        if sql:
            detail_message = f"{message}\nSQL: {sql}"
        super().__init__(detail=detail_message)
        self.sql = sql


class UnsupportedParameterTypeError(ParameterError):
    """Raised when a parameter carries a type tag the formatter does not know."""


class ParameterFormatError(ParameterError):
    """Raised when a value cannot be represented in its declared type."""


class MissingParameterError(ParameterError):
    """Raised when a placeholder references a parameter that was not supplied."""


class MissingTypeAnnotationError(ParameterError):
    """Raised when a ``{name}`` placeholder has no ``:type`` part."""


class UnterminatedPlaceholderError(ParameterError):
    """Raised when a ``{`` placeholder is never closed."""


# -- Execution Errors --
class QueryCancelledError(ClickHouseError):
    """The operation was cancelled through its cancellation token."""

    def __init__(self, message: Optional[str] = None) -> None:
        if message is None:
            message = "The operation was cancelled."
        super().__init__(message)


class ClickHouseServerError(ClickHouseError):
    """The server answered with a non-success HTTP status.

    ``server_message`` is the response body exactly as the server sent it.
    """

    sql: Optional[str]
    server_message: str
    error_code: Optional[int]
    status: Optional[int]

    def __init__(self, server_message: str, sql: Optional[str] = None, status: Optional[int] = None) -> None:
        detail_message = server_message
        if sql:
            detail_message = f"{server_message}\nSQL: {sql}"
        super().__init__(detail=detail_message)
        self.server_message = server_message
        self.sql = sql
        self.status = status
        match = SERVER_ERROR_CODE_REGEX.search(server_message)
        self.error_code = int(match.group(1)) if match else None
