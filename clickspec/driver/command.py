"""Command objects binding SQL text, parameters and a cancellation token."""

import re
from collections.abc import Iterable, Mapping
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Final, Optional

from clickspec.core.formatting import ClickHouseParameter
from clickspec.driver._common import CommandShape
from clickspec.driver.cancellation import CancellationToken
from clickspec.driver.reader import ClickHouseDataReader
from clickspec.exceptions import ImproperConfigurationError, ParameterError
from clickspec.utils.logging import correlation_context, get_logger

if TYPE_CHECKING:
    from aiohttp import ClientResponse

    from clickspec.driver.connection import ClickHouseConnection

__all__ = ("ClickHouseCommand", "CommandShape")

LEADING_INTEGER_REGEX: Final["re.Pattern[str]"] = re.compile(r"^\s*(-?\d+)")

logger = get_logger("driver.command")


class ClickHouseCommand:
    """A SQL statement ready to run on a connection.

    The command owns one :class:`CancellationToken` used by executions that are not
    given their own. The token travels with each call down to the transport, so
    cancelling it never affects other commands on the same connection. Replace
    :attr:`cancellation_token` to start from a fresh signal; calling :meth:`cancel`
    after an execution finished has no effect on that execution.
    """

    def __init__(
        self,
        connection: "Optional[ClickHouseConnection]" = None,
        command_text: str = "",
        parameters: "Optional[Iterable[ClickHouseParameter]]" = None,
        *,
        timeout: Optional[float] = None,
    ) -> None:
        self.connection = connection
        self.command_text = command_text
        self.timeout = timeout
        self.cancellation_token = CancellationToken()
        self._parameters: dict[str, ClickHouseParameter] = {}
        for parameter in parameters or ():
            self._add(parameter)

    @property
    def parameters(self) -> "Mapping[str, ClickHouseParameter]":
        return MappingProxyType(self._parameters)

    def add_parameter(self, name: str, value: Any, type_name: Optional[str] = None) -> ClickHouseParameter:
        """Bind ``value`` to the ``{name:Type}`` placeholder called ``name``.

        Raises:
            ParameterError: If a parameter with that name already exists.
        """
        return self._add(ClickHouseParameter(name, value, type_name))

    def _add(self, parameter: ClickHouseParameter) -> ClickHouseParameter:
        if parameter.name in self._parameters:
            msg = f"Parameter {parameter.name} is already defined"
            raise ParameterError(msg, self.command_text)
        self._parameters[parameter.name] = parameter
        return parameter

    def remove_parameter(self, name: str) -> None:
        self._parameters.pop(name, None)

    def clear_parameters(self) -> None:
        self._parameters.clear()

    def cancel(self) -> None:
        self.cancellation_token.cancel()

    def _require_connection(self) -> "ClickHouseConnection":
        if self.connection is None:
            msg = "Connection is not set"
            raise ImproperConfigurationError(msg)
        return self.connection

    async def _execute(self, shape: CommandShape, cancellation: CancellationToken) -> "ClientResponse":
        connection = self._require_connection()
        with correlation_context():
            logger.debug(
                "Executing %s command with %d parameters",
                shape,
                len(self._parameters),
                extra={"extra_fields": {"sql": self.command_text}},
            )
            return await connection.executor.execute(
                self.command_text,
                list(self._parameters.values()),
                shape,
                cancellation,
                timeout=self.timeout,
            )

    async def execute_non_query(self, cancellation: Optional[CancellationToken] = None) -> int:
        """Run a statement that returns no rows.

        Args:
            cancellation: Token for this call, defaults to :attr:`cancellation_token`.

        Returns:
            The affected-row count if the server reports one, otherwise 0.
        """
        token = cancellation or self.cancellation_token
        response = await self._execute(CommandShape.NON_QUERY, token)
        try:
            body = await token.guard(response.read())
        finally:
            response.release()
        match = LEADING_INTEGER_REGEX.match(body.decode("utf-8", errors="replace"))
        return int(match.group(1)) if match else 0

    async def execute_reader(
        self, shape: CommandShape = CommandShape.DEFAULT, cancellation: Optional[CancellationToken] = None
    ) -> ClickHouseDataReader:
        """Run a query and stream its rows.

        Args:
            shape: Any shape except ``NON_QUERY``.
            cancellation: Token for this call, defaults to :attr:`cancellation_token`.

        Raises:
            ImproperConfigurationError: If no connection or row decoder is configured.

        Returns:
            A single-pass reader; close it (or exhaust it) to release the response.
        """
        connection = self._require_connection()
        if shape is CommandShape.NON_QUERY:
            msg = "NON_QUERY executions do not produce a reader"
            raise ValueError(msg)
        if connection.row_decoder is None:
            msg = "A row decoder is required to read query results"
            raise ImproperConfigurationError(msg)
        response = await self._execute(shape, cancellation or self.cancellation_token)
        return ClickHouseDataReader(response, connection.row_decoder)

    async def execute_scalar(self, cancellation: Optional[CancellationToken] = None) -> Any:
        """Return the first column of the first row, or ``None`` if there are no rows."""
        async with await self.execute_reader(cancellation=cancellation) as reader:
            row = await reader.read()
        if not row:
            return None
        return row[0]

    def __repr__(self) -> str:
        return f"{type(self).__name__}(command_text={self.command_text!r}, parameters={list(self._parameters)!r})"
