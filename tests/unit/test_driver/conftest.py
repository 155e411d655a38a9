from collections.abc import AsyncIterator

import pytest
from aiohttp import test_utils, web

from clickspec.driver import ClickHouseConnection
from tests.unit.test_driver._server import FakeClickHouse, TsvDecoder


@pytest.fixture
async def clickhouse_server() -> AsyncIterator[FakeClickHouse]:
    fake = FakeClickHouse()
    app = web.Application()
    app.router.add_post("/", fake.handle)
    server = test_utils.TestServer(app)
    await server.start_server()
    fake.host = server.host
    fake.port = server.port  # type: ignore[assignment]
    try:
        yield fake
    finally:
        await server.close()


@pytest.fixture
async def connection(clickhouse_server: FakeClickHouse) -> AsyncIterator[ClickHouseConnection]:
    conn = ClickHouseConnection(clickhouse_server.connection_config(), row_decoder=TsvDecoder())
    try:
        yield conn
    finally:
        await conn.aclose()
