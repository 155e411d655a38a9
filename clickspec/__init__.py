"""clickspec: an asyncio driver for the ClickHouse HTTP interface."""

from clickspec import core, driver, exceptions, utils
from clickspec.__metadata__ import __version__
from clickspec.config import ClickHouseConfig
from clickspec.core import (
    ClickHouseConnectionConfig,
    ClickHouseParameter,
    ConnectionSettings,
    FeatureFlags,
    ServerVersion,
)
from clickspec.driver import (
    CancellationToken,
    ClickHouseCommand,
    ClickHouseConnection,
    ClickHouseDataReader,
    CommandShape,
    ConnectionState,
    RowDecoder,
)
from clickspec.exceptions import (
    ClickHouseError,
    ClickHouseServerError,
    ConnectionStateError,
    ImproperConfigurationError,
    ParameterError,
    QueryCancelledError,
)

__all__ = (
    "CancellationToken",
    "ClickHouseCommand",
    "ClickHouseConfig",
    "ClickHouseConnection",
    "ClickHouseConnectionConfig",
    "ClickHouseDataReader",
    "ClickHouseError",
    "ClickHouseParameter",
    "ClickHouseServerError",
    "CommandShape",
    "ConnectionSettings",
    "ConnectionState",
    "ConnectionStateError",
    "FeatureFlags",
    "ImproperConfigurationError",
    "ParameterError",
    "QueryCancelledError",
    "RowDecoder",
    "ServerVersion",
    "__version__",
    "core",
    "driver",
    "exceptions",
    "utils",
)
