"""Forward-only access to query results.

Decoding the ``RowBinaryWithNamesAndTypes`` body is delegated to a pluggable
:class:`RowDecoder`; this module only manages the response lifetime around it.
"""

from collections.abc import AsyncIterator, Sequence
from typing import TYPE_CHECKING, Any, Final, Optional, Protocol, runtime_checkable

if TYPE_CHECKING:
    from types import TracebackType

    from aiohttp import ClientResponse, StreamReader
    from typing_extensions import Self

__all__ = ("RESULT_FORMAT", "ClickHouseDataReader", "RowDecoder")

RESULT_FORMAT: Final[str] = "RowBinaryWithNamesAndTypes"


@runtime_checkable
class RowDecoder(Protocol):
    """Turns a response body into rows."""

    def decode(self, stream: "StreamReader") -> "AsyncIterator[Sequence[Any]]":
        """Yield rows from a ``RowBinaryWithNamesAndTypes`` body.

        Args:
            stream: The response body, readable exactly once.
        """
        ...


class ClickHouseDataReader:
    """Single-pass async iterator over the rows of one response.

    Once exhausted, closed or failed the reader stays exhausted; it cannot be
    restarted.
    """

    __slots__ = ("_closed", "_response", "_rows")

    def __init__(self, response: "ClientResponse", decoder: RowDecoder) -> None:
        self._response = response
        self._rows = decoder.decode(response.content).__aiter__()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def response(self) -> "ClientResponse":
        return self._response

    def __aiter__(self) -> "ClickHouseDataReader":
        return self

    async def __anext__(self) -> "Sequence[Any]":
        if self._closed:
            raise StopAsyncIteration
        try:
            return await self._rows.__anext__()
        except BaseException:
            await self.aclose()
            raise

    async def read(self) -> "Optional[Sequence[Any]]":
        """Return the next row, or ``None`` once the result is exhausted."""
        try:
            return await self.__anext__()
        except StopAsyncIteration:
            return None

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        close = getattr(self._rows, "aclose", None)
        if close is not None:
            await close()
        self._response.release()

    async def __aenter__(self) -> "Self":
        return self

    async def __aexit__(
        self,
        exc_type: "Optional[type[BaseException]]",
        exc_val: "Optional[BaseException]",
        exc_tb: "Optional[TracebackType]",
    ) -> None:
        await self.aclose()
