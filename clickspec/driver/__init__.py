from clickspec.driver._common import CommandShape, ConnectionState
from clickspec.driver._executor import QueryExecutor
from clickspec.driver.cancellation import CancellationToken
from clickspec.driver.command import ClickHouseCommand
from clickspec.driver.connection import ClickHouseConnection
from clickspec.driver.reader import ClickHouseDataReader, RowDecoder

__all__ = (
    "CancellationToken",
    "ClickHouseCommand",
    "ClickHouseConnection",
    "ClickHouseDataReader",
    "CommandShape",
    "ConnectionState",
    "QueryExecutor",
    "RowDecoder",
)
