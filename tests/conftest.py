import sqlite3
import threading
from typing import Callable, Dict, List, Optional

import pytest

from sqlcheck.connection_manager import ConnectionManager
from sqlcheck.models import Dialect, FieldInfo, QueryResult


class StubDriver:
    """In-memory driver that records every statement it is asked to run.

    `delay_sec` makes matching statements (all of them unless `delay_when`
    is given) block. An `interruptible` driver ends a blocked statement
    with an error as soon as `interrupt()` is called; otherwise interrupt
    is only counted, like MySQL.
    """

    dialect = Dialect.SQLITE
    default_port = None

    def __init__(
        self,
        rows: Optional[List[dict]] = None,
        fields: Optional[List[FieldInfo]] = None,
        fail_when: Optional[Callable[[str], bool]] = None,
        connect_error: Optional[Exception] = None,
        close_error: Optional[Exception] = None,
        delay_sec: float = 0,
        delay_when: Optional[Callable[[str], bool]] = None,
        interruptible: bool = False,
    ):
        self.rows = rows if rows is not None else [{"id": 1}]
        self.fields = fields or []
        self.fail_when = fail_when
        self.connect_error = connect_error
        self.close_error = close_error
        self.delay_sec = delay_sec
        self.delay_when = delay_when
        self.interruptible = interruptible
        self.calls: List[str] = []
        self.connects = 0
        self.closes = 0
        self.interrupts = 0
        self.statement_timeouts: List[Optional[int]] = []
        self.running: Dict[int, int] = {}
        self.max_running_per_connection = 0
        self.closed_while_running = False
        self._cancelled: Dict[int, threading.Event] = {}
        self._lock = threading.Lock()

    def connect(self, descriptor, *, connect_timeout_sec, statement_timeout_ms=None):
        self.connects += 1
        self.statement_timeouts.append(statement_timeout_ms)
        if self.connect_error is not None:
            raise self.connect_error
        connection = object()
        self._cancelled[id(connection)] = threading.Event()
        return connection

    def execute_raw(self, connection, sql):
        key = id(connection)
        with self._lock:
            self.calls.append(sql)
            self.running[key] = self.running.get(key, 0) + 1
            self.max_running_per_connection = max(self.max_running_per_connection, self.running[key])
        try:
            if self.delay_sec and (self.delay_when is None or self.delay_when(sql)):
                cancelled = self._cancelled[key]
                cancelled.clear()
                if cancelled.wait(self.delay_sec):
                    raise RuntimeError("statement interrupted")
            if self.fail_when is not None and self.fail_when(sql):
                raise RuntimeError(f"driver rejected: {sql}")
            return QueryResult(rows=list(self.rows), fields=list(self.fields), row_count=len(self.rows))
        finally:
            with self._lock:
                self.running[key] -= 1

    def interrupt(self, connection):
        self.interrupts += 1
        if self.interruptible:
            self._cancelled[id(connection)].set()

    def close(self, connection):
        with self._lock:
            self.closes += 1
            if self.running.get(id(connection), 0):
                self.closed_while_running = True
        if self.close_error is not None:
            raise self.close_error


@pytest.fixture
def make_driver():
    """Factory for StubDriver instances with custom behaviour."""
    return StubDriver


@pytest.fixture
def make_manager():
    """Builds ConnectionManagers serving every dialect from one driver, shut down after the test."""
    managers = []

    def _make(driver, **kwargs):
        manager = ConnectionManager(drivers={dialect: driver for dialect in Dialect}, **kwargs)
        managers.append(manager)
        return manager

    yield _make
    for manager in managers:
        manager.shutdown()


@pytest.fixture
def stub_driver():
    return StubDriver()


@pytest.fixture
def stub_manager(stub_driver):
    """A ConnectionManager whose every dialect is served by the same stub driver."""
    manager = ConnectionManager(drivers={dialect: stub_driver for dialect in Dialect})
    yield manager
    manager.shutdown()


@pytest.fixture
def sqlite_db(tmp_path):
    """A SQLite file with small orders/customers tables and one binary row in files."""
    path = tmp_path / "shop.db"
    conn = sqlite3.connect(path)
    conn.executescript(
        """
        CREATE TABLE customers (id INTEGER PRIMARY KEY, name TEXT);
        CREATE TABLE orders (id INTEGER PRIMARY KEY, a INTEGER, cid INTEGER);
        INSERT INTO customers (id, name) VALUES (1, 'ada'), (2, 'grace');
        INSERT INTO orders (id, a, cid) VALUES (1, 10, 1), (2, 20, 1), (3, 30, 2), (4, 40, 2), (5, 50, 1);
        CREATE TABLE files (id INTEGER PRIMARY KEY, b BLOB);
        INSERT INTO files (id, b) VALUES (1, X'FFFE00');
        """
    )
    conn.commit()
    conn.close()
    return path


@pytest.fixture
def manager():
    manager = ConnectionManager()
    yield manager
    manager.shutdown()
