"""HTTP request construction and error mapping for query execution."""

import asyncio
import gzip
from collections.abc import AsyncIterable, Sequence
from typing import TYPE_CHECKING, Final, Optional, Union

from aiohttp import BasicAuth, ClientResponse, ClientSession, ClientTimeout, hdrs
from yarl import URL

from clickspec.core.features import FeatureFlags
from clickspec.core.formatting import ClickHouseParameter, format_http_parameter, format_inline_parameter
from clickspec.core.substitution import substitute_parameters
from clickspec.driver._common import CommandShape, apply_shape
from clickspec.driver.cancellation import CancellationToken
from clickspec.exceptions import ClickHouseServerError
from clickspec.utils.logging import correlation_context, get_logger

if TYPE_CHECKING:
    from clickspec.core.uri import ClickHouseUriBuilder
    from clickspec.driver.connection import ClickHouseConnection

__all__ = ("ACCEPT_ENCODINGS", "ACCEPTED_CONTENT_TYPES", "QueryExecutor", "StreamData")

ACCEPTED_CONTENT_TYPES: Final[str] = "application/json, text/csv, application/octet-stream"
ACCEPT_ENCODINGS: Final[str] = "gzip, deflate"
SQL_CONTENT_TYPE: Final[str] = "text/sql"
STREAM_CONTENT_TYPE: Final[str] = "application/octet-stream"
UNBOUNDED_TIMEOUT: Final[ClientTimeout] = ClientTimeout(total=None)

StreamData = Union[bytes, "AsyncIterable[bytes]"]

logger = get_logger("driver.executor")


class QueryExecutor:
    """Sends statements for one connection.

    The executor never changes connection state itself; when parameters need the
    negotiated feature set it asks the connection to open through
    :meth:`ClickHouseConnection.ensure_open`.
    """

    __slots__ = ("_connection",)

    def __init__(self, connection: "ClickHouseConnection") -> None:
        self._connection = connection

    async def execute(
        self,
        sql: str,
        parameters: "Optional[Sequence[ClickHouseParameter]]" = None,
        shape: CommandShape = CommandShape.NON_QUERY,
        cancellation: Optional[CancellationToken] = None,
        timeout: Optional[float] = None,
    ) -> ClientResponse:
        """Send ``sql`` and return the successful response.

        The caller owns the returned response and must release it.

        Args:
            sql: Statement text, possibly containing ``{name:Type}`` placeholders.
            parameters: Parameters to bind.
            shape: Execution shape controlling the SQL suffix.
            cancellation: Token that aborts the request when triggered.
            timeout: Seconds to wait for response headers, defaults to the connection's.

        Raises:
            QueryCancelledError: If the token fires before the response arrives.
            ClickHouseServerError: If the server answers with a non-success status.

        Returns:
            The HTTP response with an unread body.
        """
        cancellation = cancellation or CancellationToken()
        cancellation.raise_if_cancelled()
        builder = self._connection.create_uri_builder()
        if parameters:
            await self._connection.ensure_open(cancellation)
            sql = self.bind_parameters(sql, parameters, builder, self._connection.supported_features)
        sql = apply_shape(sql, shape)
        return await self.post(builder, sql.encode("utf-8"), sql, SQL_CONTENT_TYPE, cancellation, timeout=timeout)

    @staticmethod
    def bind_parameters(
        sql: str,
        parameters: "Sequence[ClickHouseParameter]",
        builder: "ClickHouseUriBuilder",
        features: FeatureFlags,
    ) -> str:
        """Attach parameters to the URL or inline them into ``sql``.

        Returns:
            The statement text to send.
        """
        if FeatureFlags.HTTP_PARAMETERS in features:
            for parameter in parameters:
                builder.add_query_parameter(parameter.name, format_http_parameter(parameter))
            return sql
        literals: dict[str, str] = {}
        for parameter in parameters:
            literals.setdefault(parameter.name, format_inline_parameter(parameter))
        return substitute_parameters(sql, literals)

    async def post_stream(
        self,
        sql: str,
        data: StreamData,
        *,
        compressed: bool = False,
        cancellation: Optional[CancellationToken] = None,
        timeout: Optional[float] = None,
    ) -> None:
        """Upload raw data, e.g. an ``INSERT ... FORMAT`` payload.

        The statement travels in the ``query`` URL parameter and ``data`` is sent
        as-is; ``compressed`` marks it as already gzip-encoded.
        """
        cancellation = cancellation or CancellationToken()
        cancellation.raise_if_cancelled()
        builder = self._connection.create_uri_builder(sql=sql)
        with correlation_context():
            response = await self.post(
                builder,
                data,
                sql,
                STREAM_CONTENT_TYPE,
                cancellation,
                compress_body=False,
                content_encoding="gzip" if compressed else None,
                timeout=timeout,
            )
        response.release()

    async def post(
        self,
        builder: "ClickHouseUriBuilder",
        body: StreamData,
        sql: str,
        content_type: str,
        cancellation: CancellationToken,
        *,
        compress_body: Optional[bool] = None,
        content_encoding: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> ClientResponse:
        connection = self._connection
        headers = self.default_headers()
        headers[hdrs.CONTENT_TYPE] = content_type
        if compress_body is None:
            compress_body = connection.use_compression
        if compress_body and isinstance(body, bytes):
            body = gzip.compress(body)
            content_encoding = "gzip"
        if content_encoding:
            headers[hdrs.CONTENT_ENCODING] = content_encoding

        url = builder.build()
        session = await connection.get_http_session()
        headers_timeout = timeout if timeout is not None else connection.timeout
        logger.debug(
            "POST %s (%d parameters)",
            url.with_query(None),
            len(builder.query_parameters),
            extra={"extra_fields": {"database": builder.database, "session_id": builder.session_id}},
        )
        cancellation.raise_if_cancelled()
        send = asyncio.wait_for(self._send(session, url, body, headers, self.basic_auth()), headers_timeout)
        response = await cancellation.guard(send, discard=ClientResponse.release)
        if 200 <= response.status < 300:
            return response
        try:
            payload = await cancellation.guard(response.read())
        finally:
            response.release()
        error = ClickHouseServerError(payload.decode("utf-8", errors="replace"), sql, status=response.status)
        logger.debug(
            "Server returned HTTP %d",
            response.status,
            extra={"extra_fields": {"status": error.status, "error_code": error.error_code, "sql": sql}},
        )
        raise error

    @staticmethod
    async def _send(
        session: ClientSession, url: URL, body: StreamData, headers: "dict[str, str]", auth: BasicAuth
    ) -> ClientResponse:
        # Only the wait for response headers is bounded; readers stream the body for as long as it takes.
        return await session.post(url, data=body, headers=headers, auth=auth, timeout=UNBOUNDED_TIMEOUT)

    def basic_auth(self) -> BasicAuth:
        connection = self._connection
        return BasicAuth(connection.username or "", connection.password or "", "utf-8")

    def default_headers(self) -> "dict[str, str]":
        """Content negotiation headers sent with every request."""
        headers = {hdrs.ACCEPT: ACCEPTED_CONTENT_TYPES}
        if self._connection.use_compression:
            headers[hdrs.ACCEPT_ENCODING] = ACCEPT_ENCODINGS
        return headers
