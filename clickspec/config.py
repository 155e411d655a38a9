"""ClickHouse HTTP configuration with direct field-based configuration."""

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, ClassVar, Optional, Union

from clickspec.core.settings import ClickHouseConnectionConfig, ConnectionSettings
from clickspec.driver.connection import ClickHouseConnection

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from aiohttp import ClientSession

    from clickspec.driver.command import ClickHouseCommand
    from clickspec.driver.reader import RowDecoder

__all__ = ("ClickHouseConfig", "ClickHouseConnectionConfig")


class ClickHouseConfig:
    """Configuration for ClickHouse connections.

    Connections created from one config may share a single
    :class:`aiohttp.ClientSession`, which then provides the HTTP connection pool.
    """

    __slots__ = ("connection_config", "row_decoder", "session")
    connection_type: "ClassVar[type[ClickHouseConnection]]" = ClickHouseConnection

    def __init__(
        self,
        *,
        connection_config: "Optional[Union[ClickHouseConnectionConfig, dict[str, Any]]]" = None,
        session: "Optional[ClientSession]" = None,
        row_decoder: "Optional[RowDecoder]" = None,
    ) -> None:
        """Initialize the configuration.

        Args:
            connection_config: Connection parameters (TypedDict or dict)
            session: Shared HTTP session, created per connection when omitted
            row_decoder: Decoder for reader-producing commands
        """
        self.connection_config: dict[str, Any] = dict(connection_config) if connection_config else {}
        self.session = session
        self.row_decoder = row_decoder

    @classmethod
    def from_connection_string(cls, connection_string: str, **kwargs: Any) -> "ClickHouseConfig":
        settings = ConnectionSettings.from_connection_string(connection_string)
        return cls(connection_config=settings.to_mapping(), **kwargs)

    def _get_connection_settings(self) -> ConnectionSettings:
        """Build the settings bundle, filtering out None values."""
        config = {key: value for key, value in self.connection_config.items() if value is not None}
        return ConnectionSettings.from_mapping(config)

    def create_connection(self) -> ClickHouseConnection:
        """Create a new, closed connection."""
        return self.connection_type(
            self._get_connection_settings(), session=self.session, row_decoder=self.row_decoder
        )

    @asynccontextmanager
    async def provide_connection(self) -> "AsyncGenerator[ClickHouseConnection, None]":
        """Provide an open connection, closed and disposed on exit.

        Yields:
            An open connection.
        """
        connection = self.create_connection()
        try:
            await connection.open()
            yield connection
        finally:
            await connection.aclose()

    @asynccontextmanager
    async def provide_command(self, command_text: str = "") -> "AsyncGenerator[ClickHouseCommand, None]":
        """Provide a command bound to a fresh open connection.

        Yields:
            A command ready to execute.
        """
        async with self.provide_connection() as connection:
            yield connection.create_command(command_text)

    def __repr__(self) -> str:
        settings = self._get_connection_settings()
        return f"{type(self).__name__}(host={settings.host!r}, port={settings.port!r}, database={settings.database!r})"
