import time

import pytest

from sqlcheck.common.errors import (
    ConnectionNotFoundError,
    DatabaseConnectionError,
    QueryExecutionError,
    QueryTimeoutError,
    UnsupportedDialectError,
)
from sqlcheck.common.resilience import BreakerRegistry
from sqlcheck.connection_manager import ConnectionManager
from sqlcheck.drivers import SqliteDriver
from sqlcheck.models import ConnectionDescriptor, Dialect

SQLITE = ConnectionDescriptor(dialect=Dialect.SQLITE, database="test.db")
POSTGRES = ConnectionDescriptor(dialect=Dialect.POSTGRES, host="db", database="shop")


def test_create_connection_registers_fresh_ids(stub_manager, stub_driver):
    first = stub_manager.create_connection(SQLITE)
    second = stub_manager.create_connection(SQLITE)

    assert first.startswith("conn_")
    assert first != second
    assert stub_manager.active_connections == 2
    assert set(stub_manager.list_connection_ids()) == {first, second}
    assert stub_driver.connects == 2


def test_statement_timeout_is_handed_to_driver(stub_manager, stub_driver):
    stub_manager.create_connection(SQLITE, statement_timeout_ms=4000)
    assert stub_driver.statement_timeouts == [4000]


def test_connect_failure_is_wrapped(make_driver, make_manager):
    cause = OSError("connection refused")
    manager = make_manager(make_driver(connect_error=cause))

    with pytest.raises(DatabaseConnectionError) as excinfo:
        manager.create_connection(SQLITE)

    assert excinfo.value.__cause__ is cause
    assert "connection refused" in str(excinfo.value)
    assert manager.active_connections == 0


def test_unsupported_dialect():
    manager = ConnectionManager(drivers={Dialect.SQLITE: SqliteDriver()})
    try:
        with pytest.raises(UnsupportedDialectError):
            manager.create_connection(POSTGRES)
    finally:
        manager.shutdown()


def test_breaker_opens_after_repeated_connect_failures(make_driver, make_manager):
    driver = make_driver(connect_error=OSError("refused"))
    manager = make_manager(driver, breakers=BreakerRegistry(fail_max=2, reset_timeout=60))

    for _ in range(3):
        with pytest.raises(DatabaseConnectionError):
            manager.create_connection(POSTGRES)

    # Third attempt is rejected by the open breaker without reaching the driver
    assert driver.connects == 2


def test_breakers_are_per_target(make_driver, make_manager):
    driver = make_driver(connect_error=OSError("refused"))
    manager = make_manager(driver, breakers=BreakerRegistry(fail_max=1, reset_timeout=60))

    with pytest.raises(DatabaseConnectionError):
        manager.create_connection(POSTGRES)

    driver.connect_error = None
    other = ConnectionDescriptor(dialect=Dialect.POSTGRES, host="db", database="other")
    assert manager.create_connection(other).startswith("conn_")


def test_execute_query_truncates_rows(make_driver, make_manager):
    rows = [{"id": i} for i in range(10)]
    manager = make_manager(make_driver(rows=rows))
    connection_id = manager.create_connection(SQLITE)

    result = manager.execute_query(connection_id, "SELECT id FROM t", max_rows=3)

    assert result.rows == rows[:3]
    assert result.row_count == 10


def test_execute_query_under_cap_is_untouched(stub_manager):
    connection_id = stub_manager.create_connection(SQLITE)
    result = stub_manager.execute_query(connection_id, "SELECT 1", max_rows=5)
    assert result.rows == [{"id": 1}]


def test_execute_query_unknown_id(stub_manager):
    with pytest.raises(ConnectionNotFoundError):
        stub_manager.execute_query("conn_missing", "SELECT 1")


def test_execute_query_after_close(stub_manager):
    connection_id = stub_manager.create_connection(SQLITE)
    stub_manager.close_connection(connection_id)

    with pytest.raises(ConnectionNotFoundError):
        stub_manager.execute_query(connection_id, "SELECT 1")


def test_driver_error_becomes_query_execution_error(make_driver, make_manager):
    manager = make_manager(make_driver(fail_when=lambda sql: True))
    connection_id = manager.create_connection(SQLITE)

    with pytest.raises(QueryExecutionError) as excinfo:
        manager.execute_query(connection_id, "SELECT broken")

    assert not isinstance(excinfo.value, QueryTimeoutError)
    assert "driver rejected" in str(excinfo.value)


def test_deadline_interrupts_and_raises_timeout(make_driver, make_manager):
    driver = make_driver(delay_sec=0.5)
    manager = make_manager(driver, interrupt_grace_ms=1000)
    connection_id = manager.create_connection(SQLITE)

    with pytest.raises(QueryTimeoutError, match="50 ms"):
        manager.execute_query(connection_id, "SELECT pg_sleep(10)", timeout_ms=50)

    assert driver.interrupts == 1


def test_close_connection_is_idempotent(stub_manager, stub_driver):
    connection_id = stub_manager.create_connection(SQLITE)

    stub_manager.close_connection(connection_id)
    stub_manager.close_connection(connection_id)
    stub_manager.close_connection("conn_never_existed")

    assert stub_driver.closes == 1
    assert stub_manager.active_connections == 0


def test_close_errors_are_swallowed(make_driver, make_manager):
    manager = make_manager(make_driver(close_error=RuntimeError("socket closed")))
    connection_id = manager.create_connection(SQLITE)

    manager.close_connection(connection_id)

    assert manager.active_connections == 0


def test_close_all_connections(make_driver, make_manager):
    driver = make_driver(close_error=RuntimeError("flaky"))
    manager = make_manager(driver)
    for _ in range(4):
        manager.create_connection(SQLITE)

    manager.close_all_connections()

    assert manager.active_connections == 0
    assert driver.closes == 4


def test_close_all_with_nothing_open(stub_manager):
    stub_manager.close_all_connections()
    assert stub_manager.active_connections == 0


def test_test_connection(stub_manager, stub_driver):
    assert stub_manager.test_connection(SQLITE) is True
    assert stub_driver.closes == 1
    assert stub_manager.active_connections == 0


def test_test_connection_never_raises(make_driver, make_manager):
    manager = make_manager(make_driver(connect_error=OSError("no route to host")))
    assert manager.test_connection(SQLITE) is False


def test_scoped_connection_is_released_on_error(stub_manager, stub_driver):
    with pytest.raises(RuntimeError):
        with stub_manager.connection(SQLITE) as connection_id:
            assert stub_manager.active_connections == 1
            assert connection_id.startswith("conn_")
            raise RuntimeError("boom")

    assert stub_manager.active_connections == 0
    assert stub_driver.closes == 1


def test_manager_context_closes_everything(make_driver):
    driver = make_driver()
    with ConnectionManager(drivers={Dialect.SQLITE: driver}) as manager:
        manager.create_connection(SQLITE)
        manager.create_connection(SQLITE)

    assert driver.closes == 2


def _wait_for(predicate, timeout_sec=3.0):
    deadline = time.monotonic() + timeout_sec
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def test_interrupted_statement_leaves_connection_usable(make_driver, make_manager):
    driver = make_driver(delay_sec=5, interruptible=True)
    manager = make_manager(driver)
    connection_id = manager.create_connection(SQLITE)

    with pytest.raises(QueryTimeoutError):
        manager.execute_query(connection_id, "SELECT slow", timeout_ms=50)

    driver.delay_sec = 0
    result = manager.execute_query(connection_id, "SELECT 1")

    assert result.rows == [{"id": 1}]
    assert driver.interrupts == 1


def test_statement_ignoring_interrupt_retires_connection(make_driver, make_manager):
    driver = make_driver(delay_sec=0.5)
    manager = make_manager(driver, interrupt_grace_ms=50)
    connection_id = manager.create_connection(SQLITE)

    with pytest.raises(QueryTimeoutError):
        manager.execute_query(connection_id, "SELECT slow", timeout_ms=50)

    with pytest.raises(QueryTimeoutError, match="still running"):
        manager.execute_query(connection_id, "SELECT 1")

    # The second statement never reached the busy connection
    assert driver.calls == ["SELECT slow"]
    assert driver.max_running_per_connection == 1


def test_close_waits_for_abandoned_statement(make_driver, make_manager):
    driver = make_driver(delay_sec=0.5)
    manager = make_manager(driver, interrupt_grace_ms=50)
    connection_id = manager.create_connection(SQLITE)
    with pytest.raises(QueryTimeoutError):
        manager.execute_query(connection_id, "SELECT slow", timeout_ms=50)

    manager.close_connection(connection_id)

    assert manager.active_connections == 0
    assert driver.closes == 0
    assert _wait_for(lambda: driver.closes == 1)
    assert driver.closed_while_running is False


def test_stuck_connections_do_not_delay_other_connections(make_driver, make_manager):
    driver = make_driver(delay_sec=2, delay_when=lambda sql: "slow" in sql)
    manager = make_manager(driver, interrupt_grace_ms=20)
    for _ in range(10):
        stuck = manager.create_connection(SQLITE)
        with pytest.raises(QueryTimeoutError):
            manager.execute_query(stuck, "SELECT slow", timeout_ms=20)

    fresh = manager.create_connection(SQLITE)
    started = time.monotonic()
    result = manager.execute_query(fresh, "SELECT 1", timeout_ms=1000)

    assert result.rows == [{"id": 1}]
    assert time.monotonic() - started < 0.5


def test_retired_connection_rejects_statements(stub_manager, stub_driver):
    connection_id = stub_manager.create_connection(SQLITE)

    stub_manager.retire_connection(connection_id, QueryExecutionError("left in SHOWPLAN_ALL mode"))

    with pytest.raises(QueryExecutionError, match="SHOWPLAN_ALL"):
        stub_manager.execute_query(connection_id, "SELECT 1")
    assert stub_driver.calls == []
