"""Connection lifecycle and version handshake."""

import asyncio
import dataclasses
import uuid
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Final, Optional, Union

from aiohttp import ClientResponse, ClientSession
from mypy_extensions import mypyc_attr
from yarl import URL

from clickspec.core.features import FeatureFlags, ServerVersion, derive_features
from clickspec.core.settings import DEFAULT_PORT, ConnectionSettings
from clickspec.core.uri import ClickHouseUriBuilder
from clickspec.driver._common import ConnectionState
from clickspec.driver._executor import QueryExecutor
from clickspec.driver.cancellation import CancellationToken
from clickspec.driver.command import ClickHouseCommand
from clickspec.exceptions import ConnectionStateError, ProtocolMismatchError
from clickspec.utils.logging import correlation_context, get_logger

if TYPE_CHECKING:
    from types import TracebackType

    from typing_extensions import Self

    from clickspec.driver._executor import StreamData
    from clickspec.driver.reader import RowDecoder

__all__ = ("GZIP_MAGIC", "VERSION_QUERY", "ClickHouseConnection")

VERSION_QUERY: Final[str] = "SELECT version() FORMAT TSV"
GZIP_MAGIC: Final[bytes] = b"\x1f\x8b"

logger = get_logger("driver.connection")


@mypyc_attr(allow_interpreted_subclasses=True)
class ClickHouseConnection:
    """A logical connection to a ClickHouse server over its HTTP interface.

    The connection starts ``CLOSED``. :meth:`open` runs the version handshake and
    moves it to ``OPEN``; a failed handshake leaves it ``BROKEN``, from which it can
    be opened again. The negotiated feature set and server version only exist while
    the connection is open.

    HTTP connection pooling is left to the :class:`aiohttp.ClientSession`, which is
    created lazily unless one is supplied. A supplied session is never closed by the
    connection and must decompress responses automatically when compression is on.
    """

    def __init__(
        self,
        settings: "Union[ConnectionSettings, Mapping[str, Any], str, None]" = None,
        *,
        session: Optional[ClientSession] = None,
        row_decoder: "Optional[RowDecoder]" = None,
    ) -> None:
        """Initialize the connection.

        Args:
            settings: A settings bundle, a mapping of connection parameters or a
                connection string such as ``Host=localhost;Port=8123``.
            session: Optional shared HTTP session.
            row_decoder: Decoder used by reader-producing commands.
        """
        if settings is None:
            settings = ConnectionSettings()
        elif isinstance(settings, str):
            settings = ConnectionSettings.from_connection_string(settings)
        elif not isinstance(settings, ConnectionSettings):
            settings = ConnectionSettings.from_mapping(settings)

        self.base_url = URL.build(scheme=settings.protocol, host=settings.host, port=settings.port, path="/")
        self.database = settings.database
        self.username = settings.username
        self.password = settings.password
        self.use_compression = settings.compression
        self.timeout = settings.timeout
        self.custom_settings: dict[str, Any] = dict(settings.custom_settings)
        self.session_id: Optional[str] = (settings.session_id or str(uuid.uuid4())) if settings.use_session else None
        self.row_decoder = row_decoder
        self.executor = QueryExecutor(self)

        self._state = ConnectionState.CLOSED
        self._server_version: Optional[ServerVersion] = None
        self._features: Optional[FeatureFlags] = None
        self._open_lock = asyncio.Lock()
        self._session = session
        self._owns_session = session is None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def server_version(self) -> ServerVersion:
        """Version reported by the server during the handshake.

        Raises:
            ConnectionStateError: If the connection is not open.
        """
        if self._state is not ConnectionState.OPEN or self._server_version is None:
            msg = f"Server version is only available on an open connection (state: {self._state})"
            raise ConnectionStateError(msg)
        return self._server_version

    @property
    def supported_features(self) -> FeatureFlags:
        """Features available on the connected server version.

        Raises:
            ConnectionStateError: If the connection is not open.
        """
        if self._state is not ConnectionState.OPEN or self._features is None:
            msg = f"Supported features are only available on an open connection (state: {self._state})"
            raise ConnectionStateError(msg)
        return self._features

    @property
    def settings(self) -> ConnectionSettings:
        """The current configuration as a settings bundle."""
        return ConnectionSettings(
            host=self.base_url.host or "localhost",
            port=self.base_url.port or DEFAULT_PORT,
            protocol=self.base_url.scheme,
            database=self.database,
            username=self.username,
            password=self.password,
            compression=self.use_compression,
            use_session=self.session_id is not None,
            session_id=self.session_id,
            timeout=self.timeout,
            custom_settings=dict(self.custom_settings),
        )

    @property
    def connection_string(self) -> str:
        return self.settings.to_connection_string()

    async def open(self, cancellation: Optional[CancellationToken] = None) -> None:
        """Run the version handshake unless the connection is already open.

        Concurrent callers share a single handshake.

        Args:
            cancellation: Token that aborts the handshake.

        Raises:
            ProtocolMismatchError: If the server response is compressed or empty.
            InvalidServerVersionError: If the reported version cannot be parsed.
        """
        if self._state is ConnectionState.OPEN:
            return
        async with self._open_lock:
            if self._state is ConnectionState.OPEN:
                return
            with correlation_context():
                try:
                    version = await self._handshake(cancellation or CancellationToken())
                except BaseException:
                    self._state = ConnectionState.BROKEN
                    self._server_version = None
                    self._features = None
                    logger.debug("Handshake with %s failed, connection is broken", self.base_url)
                    raise
                self._server_version = version
                self._features = derive_features(version)
                self._state = ConnectionState.OPEN
                logger.debug("Connected to %s, server version %s", self.base_url, version)

    async def ensure_open(self, cancellation: Optional[CancellationToken] = None) -> None:
        """Open the connection if needed; a no-op when it is already open."""
        if self._state is not ConnectionState.OPEN:
            await self.open(cancellation)

    async def _handshake(self, cancellation: CancellationToken) -> ServerVersion:
        response = await self.executor.execute(VERSION_QUERY, cancellation=cancellation)
        try:
            data = await cancellation.guard(response.read())
        finally:
            response.release()
        if len(data) > len(GZIP_MAGIC) and data.startswith(GZIP_MAGIC):
            msg = (
                "Server returned a compressed result but the HTTP client did not decompress it. "
                "Check the client session settings"
            )
            raise ProtocolMismatchError(msg)
        if not data:
            msg = "Server did not return its version, check if the server is functional"
            raise ProtocolMismatchError(msg)
        return ServerVersion.parse(data.decode("utf-8").strip())

    def close(self) -> None:
        """Mark the connection closed. No network round-trip is made."""
        if self._state is not ConnectionState.CLOSED:
            logger.debug("Closing connection to %s", self.base_url)
        self._state = ConnectionState.CLOSED

    async def aclose(self) -> None:
        """Close the connection and dispose of the HTTP session it created."""
        self.close()
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    async def get_http_session(self) -> ClientSession:
        if self._session is None or (self._owns_session and self._session.closed):
            self._session = ClientSession()
            self._owns_session = True
        return self._session

    def change_database(self, database: str) -> None:
        self.database = database

    def clone(self) -> "ClickHouseConnection":
        """Create a closed connection with the same configuration and a fresh session id."""
        settings = dataclasses.replace(self.settings, session_id=None)
        session = None if self._owns_session else self._session
        return type(self)(settings, session=session, row_decoder=self.row_decoder)

    def create_command(self, command_text: str = "") -> ClickHouseCommand:
        return ClickHouseCommand(self, command_text)

    def create_uri_builder(self, sql: Optional[str] = None) -> ClickHouseUriBuilder:
        return ClickHouseUriBuilder(
            self.base_url,
            database=self.database,
            session_id=self.session_id,
            use_compression=self.use_compression,
            custom_settings=self.custom_settings,
            sql=sql,
        )

    async def post_sql_query(
        self, sql: str, cancellation: Optional[CancellationToken] = None, timeout: Optional[float] = None
    ) -> ClientResponse:
        """Send raw SQL without parameters or shape suffix; the caller releases the response."""
        return await self.executor.execute(sql, cancellation=cancellation, timeout=timeout)

    async def post_stream(
        self,
        sql: str,
        data: "StreamData",
        *,
        compressed: bool = False,
        cancellation: Optional[CancellationToken] = None,
        timeout: Optional[float] = None,
    ) -> None:
        """Upload a data payload for ``sql``, e.g. ``INSERT INTO t FORMAT CSV``."""
        await self.executor.post_stream(sql, data, compressed=compressed, cancellation=cancellation, timeout=timeout)

    async def __aenter__(self) -> "Self":
        await self.open()
        return self

    async def __aexit__(
        self,
        exc_type: "Optional[type[BaseException]]",
        exc_val: "Optional[BaseException]",
        exc_tb: "Optional[TracebackType]",
    ) -> None:
        await self.aclose()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(url={str(self.base_url)!r}, database={self.database!r}, state={self._state})"
