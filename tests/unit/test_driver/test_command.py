"""Command execution tests against an in-process HTTP server."""

import asyncio
import base64
import logging

import pytest
from aiohttp import web

from clickspec.driver import CancellationToken, ClickHouseCommand, ClickHouseConnection, CommandShape, ConnectionState
from clickspec.driver.connection import VERSION_QUERY
from clickspec.exceptions import (
    ClickHouseServerError,
    ImproperConfigurationError,
    MissingParameterError,
    ParameterError,
    ParameterFormatError,
    QueryCancelledError,
)
from clickspec.utils.logging import correlation_context
from tests.unit.test_driver._server import FakeClickHouse

pytestmark = pytest.mark.anyio


async def test_non_query_returns_affected_rows(
    clickhouse_server: FakeClickHouse, connection: ClickHouseConnection
) -> None:
    clickhouse_server.responses["ALTER TABLE t DELETE WHERE 1"] = (200, b"3\n")

    count = await connection.create_command("ALTER TABLE t DELETE WHERE 1").execute_non_query()

    assert count == 3
    assert clickhouse_server.queries == ["ALTER TABLE t DELETE WHERE 1"]


@pytest.mark.parametrize("body", [b"", b"Ok.\n", b"   "])
async def test_non_query_defaults_to_zero(
    clickhouse_server: FakeClickHouse, connection: ClickHouseConnection, body: bytes
) -> None:
    clickhouse_server.default_response = (200, body)
    assert await connection.create_command("CREATE TABLE t (x UInt8) ENGINE = Memory").execute_non_query() == 0


async def test_query_without_parameters_skips_handshake(
    clickhouse_server: FakeClickHouse, connection: ClickHouseConnection
) -> None:
    await connection.create_command("SELECT 1").execute_non_query()

    assert connection.state is ConnectionState.CLOSED
    assert clickhouse_server.queries == ["SELECT 1"]


async def test_native_parameters_on_recent_server(
    clickhouse_server: FakeClickHouse, connection: ClickHouseConnection
) -> None:
    command = connection.create_command("SELECT {x:Int32}, {name:String}")
    command.add_parameter("x", 5)
    command.add_parameter("name", "O'Brien")

    await command.execute_non_query()

    assert connection.state is ConnectionState.OPEN
    assert clickhouse_server.queries == [VERSION_QUERY, "SELECT {x:Int32}, {name:String}"]
    request = clickhouse_server.last_request
    assert request.query["param_x"] == "5"
    assert request.query["param_name"] == "O\\'Brien"


async def test_inline_parameters_on_old_server(
    clickhouse_server: FakeClickHouse, connection: ClickHouseConnection
) -> None:
    clickhouse_server.version = b"19.11.3.11\n"
    command = connection.create_command("SELECT {x:Int32}, {name:String}")
    command.add_parameter("x", 5)
    command.add_parameter("name", "O'Brien")

    await command.execute_non_query()

    assert clickhouse_server.last_request.sql == "SELECT 5, 'O\\'Brien'"
    assert not any(key.startswith("param_") for key in clickhouse_server.last_request.query)


async def test_inline_substitution_reports_missing_parameter(
    clickhouse_server: FakeClickHouse, connection: ClickHouseConnection
) -> None:
    clickhouse_server.version = b"19.1.1.1\n"
    command = connection.create_command("SELECT {x:Int32}, {y:String}")
    command.add_parameter("x", 5)

    with pytest.raises(MissingParameterError):
        await command.execute_non_query()
    assert clickhouse_server.queries == [VERSION_QUERY]


async def test_invalid_parameter_value_fails_before_send(
    clickhouse_server: FakeClickHouse, connection: ClickHouseConnection
) -> None:
    command = connection.create_command("SELECT {x:UInt8}")
    command.add_parameter("x", 300, "UInt8")

    with pytest.raises(ParameterFormatError):
        await command.execute_non_query()
    assert clickhouse_server.queries == [VERSION_QUERY]


async def test_server_error_is_translated(clickhouse_server: FakeClickHouse, connection: ClickHouseConnection) -> None:
    clickhouse_server.responses["SELEC 1"] = (500, b"Code: 62. DB::Exception: Syntax error")

    with pytest.raises(ClickHouseServerError) as exc_info:
        await connection.create_command("SELEC 1").execute_non_query()

    error = exc_info.value
    assert error.server_message == "Code: 62. DB::Exception: Syntax error"
    assert error.sql == "SELEC 1"
    assert error.status == 500
    assert error.error_code == 62
    assert "Code: 62. DB::Exception: Syntax error" in str(error)
    assert "SELEC 1" in str(error)
    assert connection.state is ConnectionState.CLOSED


async def test_server_error_leaves_open_connection_open(
    clickhouse_server: FakeClickHouse, connection: ClickHouseConnection
) -> None:
    await connection.open()
    clickhouse_server.default_response = (404, b"Code: 60. DB::Exception: Table default.t doesn't exist")

    with pytest.raises(ClickHouseServerError):
        await connection.create_command("SELECT * FROM t").execute_non_query()
    assert connection.state is ConnectionState.OPEN


async def test_single_row_shape(clickhouse_server: FakeClickHouse, connection: ClickHouseConnection) -> None:
    clickhouse_server.default_response = (200, b"1\n")

    async with await connection.create_command("SELECT 1").execute_reader(CommandShape.SINGLE_ROW) as reader:
        rows = [row async for row in reader]

    assert rows == [("1",)]
    assert clickhouse_server.queries == ["SELECT 1 LIMIT 1 FORMAT RowBinaryWithNamesAndTypes"]


async def test_schema_only_shape(clickhouse_server: FakeClickHouse, connection: ClickHouseConnection) -> None:
    reader = await connection.create_command("SELECT * FROM t").execute_reader(CommandShape.SCHEMA_ONLY)

    assert await reader.read() is None
    assert reader.closed
    assert clickhouse_server.queries == ["SELECT * FROM t LIMIT 0 FORMAT RowBinaryWithNamesAndTypes"]


async def test_reader_is_single_pass(clickhouse_server: FakeClickHouse, connection: ClickHouseConnection) -> None:
    clickhouse_server.default_response = (200, b"1\ta\n2\tb\n")

    reader = await connection.create_command("SELECT n, s FROM t").execute_reader()
    first_pass = [row async for row in reader]
    second_pass = [row async for row in reader]

    assert first_pass == [("1", "a"), ("2", "b")]
    assert second_pass == []
    assert reader.closed
    assert clickhouse_server.queries == ["SELECT n, s FROM t FORMAT RowBinaryWithNamesAndTypes"]


async def test_reader_closed_early(clickhouse_server: FakeClickHouse, connection: ClickHouseConnection) -> None:
    clickhouse_server.default_response = (200, b"1\n2\n3\n")

    reader = await connection.create_command("SELECT n FROM t").execute_reader()
    assert await reader.read() == ("1",)
    await reader.aclose()

    assert reader.closed
    assert await reader.read() is None


async def test_scalar(clickhouse_server: FakeClickHouse, connection: ClickHouseConnection) -> None:
    clickhouse_server.default_response = (200, b"42\tx\n43\ty\n")
    assert await connection.create_command("SELECT count(), 'x'").execute_scalar() == "42"


async def test_scalar_without_rows(clickhouse_server: FakeClickHouse, connection: ClickHouseConnection) -> None:
    assert await connection.create_command("SELECT 1 WHERE 0").execute_scalar() is None


async def test_reader_requires_decoder(clickhouse_server: FakeClickHouse) -> None:
    connection = ClickHouseConnection(clickhouse_server.connection_config())
    try:
        with pytest.raises(ImproperConfigurationError):
            await connection.create_command("SELECT 1").execute_reader()
    finally:
        await connection.aclose()
    assert clickhouse_server.requests == []


async def test_reader_rejects_non_query_shape(connection: ClickHouseConnection) -> None:
    with pytest.raises(ValueError):
        await connection.create_command("SELECT 1").execute_reader(CommandShape.NON_QUERY)


async def test_command_without_connection() -> None:
    command = ClickHouseCommand(command_text="SELECT 1")
    with pytest.raises(ImproperConfigurationError, match="Connection is not set"):
        await command.execute_non_query()
    with pytest.raises(ImproperConfigurationError):
        await command.execute_scalar()


async def test_cancel_before_send(clickhouse_server: FakeClickHouse, connection: ClickHouseConnection) -> None:
    command = connection.create_command("SELECT {x:Int32}")
    command.add_parameter("x", 1)
    command.cancel()

    with pytest.raises(QueryCancelledError):
        await command.execute_non_query()

    assert connection.state is ConnectionState.CLOSED
    assert clickhouse_server.requests == []


async def test_cancel_in_flight(clickhouse_server: FakeClickHouse, connection: ClickHouseConnection) -> None:
    arrived = asyncio.Event()
    release = asyncio.Event()

    async def slow(request: web.Request, body: bytes) -> web.Response:
        if body.startswith(b"SELECT sleep"):
            arrived.set()
            await release.wait()
        return web.Response(text="1")

    await connection.open()
    clickhouse_server.hook = slow
    slow_command = connection.create_command("SELECT sleep(3)")
    other_command = connection.create_command("SELECT 2")

    task = asyncio.ensure_future(slow_command.execute_non_query())
    await arrived.wait()
    slow_command.cancel()

    try:
        with pytest.raises(QueryCancelledError):
            await task
        assert await other_command.execute_non_query() == 1
    finally:
        release.set()
    assert connection.state is ConnectionState.OPEN


async def test_cancel_after_completion_is_a_no_op(
    clickhouse_server: FakeClickHouse, connection: ClickHouseConnection
) -> None:
    clickhouse_server.default_response = (200, b"7\n")
    command = connection.create_command("INSERT INTO t SELECT 1")

    assert await command.execute_non_query() == 7
    command.cancel()
    assert command.cancellation_token.cancelled


async def test_per_call_cancellation_token(
    clickhouse_server: FakeClickHouse, connection: ClickHouseConnection
) -> None:
    token = CancellationToken()
    token.cancel()
    command = connection.create_command("SELECT 1")

    with pytest.raises(QueryCancelledError):
        await command.execute_non_query(cancellation=token)
    assert not command.cancellation_token.cancelled
    assert await command.execute_non_query() == 0


async def test_timeout(clickhouse_server: FakeClickHouse, connection: ClickHouseConnection) -> None:
    release = asyncio.Event()

    async def hang(request: web.Request, body: bytes) -> web.Response:
        await release.wait()
        return web.Response(text="")

    clickhouse_server.hook = hang
    command = connection.create_command("SELECT sleep(3)")
    command.timeout = 0.1

    try:
        with pytest.raises(asyncio.TimeoutError):
            await command.execute_non_query()
    finally:
        release.set()
    assert connection.state is ConnectionState.CLOSED


async def test_request_headers(clickhouse_server: FakeClickHouse) -> None:
    connection = ClickHouseConnection(
        clickhouse_server.connection_config(username="analyst", password="s3cret", set_max_threads=4)
    )
    try:
        await connection.create_command("SELECT 1").execute_non_query()
    finally:
        await connection.aclose()

    request = clickhouse_server.last_request
    expected = "Basic " + base64.b64encode(b"analyst:s3cret").decode()
    assert request.headers["Authorization"] == expected
    assert request.headers["Accept"] == "application/json, text/csv, application/octet-stream"
    assert request.headers["Content-Type"] == "text/sql"
    assert "Content-Encoding" not in request.headers
    assert request.query["max_threads"] == "4"
    assert request.query["database"] == "default"
    assert "enable_http_compression" not in request.query


async def test_compressed_request(clickhouse_server: FakeClickHouse) -> None:
    connection = ClickHouseConnection(clickhouse_server.connection_config(compression=True))
    try:
        await connection.create_command("SELECT 1").execute_non_query()
    finally:
        await connection.aclose()

    request = clickhouse_server.last_request
    assert request.headers["Content-Encoding"] == "gzip"
    assert request.headers["Accept-Encoding"] == "gzip, deflate"
    assert request.query["enable_http_compression"] == "1"
    assert request.sql == "SELECT 1"


async def test_parameters_are_unique() -> None:
    command = ClickHouseCommand(command_text="SELECT {x:Int32}")
    command.add_parameter("x", 1)

    with pytest.raises(ParameterError):
        command.add_parameter("x", 2)

    command.remove_parameter("x")
    command.add_parameter("x", 3)
    assert command.parameters["x"].value == 3

    command.clear_parameters()
    assert dict(command.parameters) == {}


async def test_timeout_does_not_cut_off_streaming_reader(
    clickhouse_server: FakeClickHouse, connection: ClickHouseConnection
) -> None:
    async def trickle(request: web.Request, body: bytes) -> web.StreamResponse:
        response = web.StreamResponse()
        await response.prepare(request)
        for n in range(4):
            await response.write(f"{n}\n".encode())
            await asyncio.sleep(0.2)
        await response.write_eof()
        return response

    clickhouse_server.hook = trickle
    command = connection.create_command("SELECT number FROM numbers(4)")
    command.timeout = 0.5

    async with await command.execute_reader() as reader:
        rows = [row async for row in reader]

    assert rows == [("0",), ("1",), ("2",), ("3",)]


def _driver_records(caplog: pytest.LogCaptureFixture) -> "list[logging.LogRecord]":
    return [record for record in caplog.records if record.name.startswith("clickspec.driver")]


async def test_execution_logs_share_correlation_id(
    clickhouse_server: FakeClickHouse, connection: ClickHouseConnection, caplog: pytest.LogCaptureFixture
) -> None:
    clickhouse_server.responses["SELEC 1"] = (500, b"Code: 62. DB::Exception: Syntax error")

    with caplog.at_level(logging.DEBUG, logger="clickspec"):
        await connection.create_command("SELECT 1").execute_non_query()
        with pytest.raises(ClickHouseServerError):
            await connection.create_command("SELEC 1").execute_non_query()

    records = _driver_records(caplog)
    ids = [record.correlation_id for record in records]  # type: ignore[attr-defined]
    assert len(records) == 5
    assert ids[0] == ids[1] != "-"
    assert ids[2] == ids[3] == ids[4] != ids[0]
    assert records[0].extra_fields == {"sql": "SELECT 1"}  # type: ignore[attr-defined]
    assert records[-1].extra_fields == {"status": 500, "error_code": 62, "sql": "SELEC 1"}  # type: ignore[attr-defined]


async def test_execution_logs_reuse_caller_correlation_id(
    clickhouse_server: FakeClickHouse, caplog: pytest.LogCaptureFixture
) -> None:
    connection = ClickHouseConnection(clickhouse_server.connection_config(use_session=True, session_id="s-1"))
    command = connection.create_command("SELECT {x:Int32}")
    command.add_parameter("x", 1)
    try:
        with caplog.at_level(logging.DEBUG, logger="clickspec"), correlation_context("req-1"):
            await command.execute_non_query()
    finally:
        await connection.aclose()

    records = _driver_records(caplog)
    assert records
    assert {record.correlation_id for record in records} == {"req-1"}  # type: ignore[attr-defined]
    posts = [record for record in records if record.getMessage().startswith("POST")]
    assert len(posts) == 2
    assert all(record.extra_fields == {"database": "default", "session_id": "s-1"} for record in posts)  # type: ignore[attr-defined]
