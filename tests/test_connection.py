import asyncio

import pytest

from conftest import FakeDriver, FakeDriverError
from txpool.connection import Connection, ConnectionState
from txpool.driver.base import QueryInfo, QueryResult
from txpool.errors import DBConnectionError, ErrorKind, QueryError


async def _connected(**kwargs):
    driver = FakeDriver()
    conn = Connection(driver, {"host": "db"}, reconnect_delay=0, **kwargs)
    await conn.connect()
    return conn, driver


@pytest.mark.asyncio
async def test_connect_marks_connection_ready():
    driver = FakeDriver()
    conn = Connection(driver, {"host": "db"})
    events = []
    conn.on("ready", lambda: events.append("ready"))

    assert conn.state is ConnectionState.CONNECTING
    await conn.connect()

    assert conn.state is ConnectionState.READY
    assert conn.connected
    assert driver.config == {"host": "db"}
    assert events == ["ready"]


@pytest.mark.asyncio
async def test_connect_failure_raises_and_emits_error():
    driver = FakeDriver()
    driver.fail_connect = 1
    conn = Connection(driver, {})
    errors = []
    conn.on("error", errors.append)

    with pytest.raises(DBConnectionError) as excinfo:
        await conn.connect()

    assert excinfo.value.info.kind is ErrorKind.DB_CONNECTION
    assert excinfo.value.info.retryable
    assert len(errors) == 1
    assert conn.state is ConnectionState.CONNECTING


@pytest.mark.asyncio
async def test_command_coerces_info_fields_to_int():
    conn, driver = await _connected()

    info = await conn.command("UPDATE t SET a = 1")

    assert (info.num_rows, info.affected_rows, info.insert_id) == (0, 1, 7)


@pytest.mark.asyncio
async def test_command_propagates_unparseable_info():
    conn, driver = await _connected()
    driver.results["INSERT INTO t DEFAULT VALUES"] = QueryResult(info=QueryInfo(insert_id="not-a-number"))

    with pytest.raises(ValueError):
        await conn.command("INSERT INTO t DEFAULT VALUES")


@pytest.mark.asyncio
async def test_command_without_info_returns_empty_record():
    conn, driver = await _connected()
    driver.results["DO 1"] = QueryResult()

    info = await conn.command("DO 1")

    assert info == QueryInfo()


@pytest.mark.asyncio
async def test_query_before_connect_fails_fast():
    conn = Connection(FakeDriver(), {})

    with pytest.raises(QueryError) as excinfo:
        await conn.query("SELECT 1")

    assert excinfo.value.info.code == "CONN_CONNECTING"
    assert conn.driver.statements == []


@pytest.mark.asyncio
async def test_unexpected_close_triggers_reconnect():
    conn, driver = await _connected()
    events = []
    conn.on("close", lambda: events.append("close"))
    conn.on("ready", lambda: events.append("ready"))

    driver.drop()

    assert conn.state is ConnectionState.RECONNECTING
    with pytest.raises(QueryError) as excinfo:
        await conn.query("SELECT 1")
    assert excinfo.value.info.retryable

    await conn._reconnect_task

    assert conn.state is ConnectionState.READY
    assert driver.connect_count == 2
    assert driver.config == {"host": "db"}
    assert events == ["close", "ready"]
    await conn.query("SELECT 1")


@pytest.mark.asyncio
async def test_reconnect_gives_up_after_configured_attempts():
    conn, driver = await _connected(reconnect_attempts=2)
    errors = []
    conn.on("error", errors.append)
    driver.fail_connect = 5

    driver.drop()
    await conn._reconnect_task

    assert driver.connect_count == 3
    assert len(errors) == 2
    assert all(isinstance(e, FakeDriverError) for e in errors)
    assert conn.state is ConnectionState.RECONNECTING


@pytest.mark.asyncio
async def test_reconnect_retries_until_success():
    conn, driver = await _connected(reconnect_attempts=3)
    driver.fail_connect = 2

    driver.drop()
    await conn._reconnect_task

    assert driver.connect_count == 4
    assert conn.state is ConnectionState.READY


@pytest.mark.asyncio
async def test_second_close_event_while_reconnecting_is_ignored():
    conn, driver = await _connected()

    driver.drop()
    task = conn._reconnect_task
    driver.drop()

    assert conn._reconnect_task is task
    await task
    assert driver.connect_count == 2


@pytest.mark.asyncio
async def test_close_is_final():
    conn, driver = await _connected()

    await conn.close()
    driver.drop()
    await asyncio.sleep(0)

    assert conn.state is ConnectionState.CLOSED
    assert conn._reconnect_task is None
    assert driver.close_count == 1
    with pytest.raises(QueryError):
        await conn.query("SELECT 1")


@pytest.mark.asyncio
async def test_close_cancels_pending_reconnect():
    conn, driver = await _connected(reconnect_attempts=5)
    driver.fail_connect = 100
    conn.reconnect_delay = 10

    driver.drop()
    task = conn._reconnect_task
    await asyncio.sleep(0)
    await conn.close()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert conn.state is ConnectionState.CLOSED


@pytest.mark.asyncio
async def test_driver_failure_is_wrapped_in_query_error():
    conn, driver = await _connected()
    driver.fail_on["SELECT x"] = FakeDriverError("duplicate key value", sqlstate="23505")

    with pytest.raises(QueryError) as excinfo:
        await conn.query("SELECT x")

    assert excinfo.value.info.kind is ErrorKind.DB_CONSTRAINT
    assert excinfo.value.cause is driver.fail_on["SELECT x"]


@pytest.mark.asyncio
async def test_shortcuts_require_a_manager():
    conn, driver = await _connected()

    with pytest.raises(QueryError):
        await conn.fetch_one("SELECT 1")
    assert driver.sql() == []


@pytest.mark.asyncio
async def test_reconnect_replays_session_statements():
    conn, driver = await _connected(session_sql=["SET autocommit = 0"])

    driver.drop()
    await conn._reconnect_task

    assert driver.sql() == ["SET autocommit = 0"]
    assert conn.state is ConnectionState.READY


@pytest.mark.asyncio
async def test_failed_session_replay_is_reported_and_connection_stays_usable():
    conn, driver = await _connected(session_sql=["SET autocommit = 0"])
    driver.fail_on["SET autocommit = 0"] = FakeDriverError("unknown variable")
    errors = []
    conn.on("error", errors.append)

    driver.drop()
    await conn._reconnect_task

    assert len(errors) == 1
    assert isinstance(errors[0], QueryError)
    assert errors[0].info.details == {"sql": "SET autocommit = 0"}
    assert conn.state is ConnectionState.READY


@pytest.mark.asyncio
async def test_use_after_giving_up_starts_new_reconnect_round():
    conn, driver = await _connected(reconnect_attempts=1)
    driver.fail_connect = 1
    driver.drop()
    await conn._reconnect_task
    assert conn.state is ConnectionState.RECONNECTING

    with pytest.raises(QueryError) as excinfo:
        await conn.query("SELECT 1")

    assert excinfo.value.info.retryable
    await conn._reconnect_task
    assert conn.state is ConnectionState.READY
    assert driver.connect_count == 3
    await conn.query("SELECT 1")


@pytest.mark.asyncio
async def test_use_while_reconnecting_does_not_start_a_second_round():
    conn, driver = await _connected()

    driver.drop()
    task = conn._reconnect_task
    with pytest.raises(QueryError):
        await conn.query("SELECT 1")

    assert conn._reconnect_task is task
    await task
    assert driver.connect_count == 2
