"""
Registry of live, per-request database connections.

Each validation opens its own physical connection through the dialect
driver and closes it when done; nothing is pooled or shared between
requests. Keys are freshly generated uuids, so concurrent requests only
ever add and remove distinct entries and the registry needs no lock.

Every connection owns a single worker thread, so its statements run one at
a time and a stuck statement on one connection never delays another. Each
statement runs under a deadline. When the deadline expires the driver is
asked to interrupt the statement and the caller gets a QueryTimeoutError.
If the statement does not stop within the interrupt grace period, the
connection is retired: it accepts no further statements and is closed only
once the abandoned statement has returned.
"""
from __future__ import annotations

import uuid
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from concurrent.futures import wait
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional

import pybreaker

from sqlcheck.common.errors import (
    ConnectionNotFoundError,
    DatabaseConnectionError,
    QueryExecutionError,
    QueryTimeoutError,
    SqlCheckError,
)
from sqlcheck.common.logger import get_logger
from sqlcheck.common.resilience import BreakerRegistry
from sqlcheck.common.settings import settings
from sqlcheck.drivers import DialectDriver, default_drivers, resolve_driver
from sqlcheck.models import ConnectionDescriptor, ConnectionHandle, Dialect, QueryResult

logger = get_logger("connection_manager")


class ConnectionManager:
    """Owns every live connection handle and dispatches work to dialect drivers."""

    def __init__(
        self,
        drivers: Optional[Dict[Dialect, DialectDriver]] = None,
        breakers: Optional[BreakerRegistry] = None,
        connect_timeout_sec: Optional[int] = None,
        interrupt_grace_ms: Optional[int] = None,
    ):
        """
        Args:
            drivers: Dialect -> driver map. Defaults to the four built-in drivers.
            breakers: Circuit breakers guarding connection establishment.
            connect_timeout_sec: Connect timeout handed to drivers.
            interrupt_grace_ms: How long a timed-out statement may take to stop
                after interrupt before its connection is retired.
        """
        self._drivers = drivers if drivers is not None else default_drivers()
        self._breakers = breakers or BreakerRegistry()
        self._connect_timeout_sec = connect_timeout_sec or settings.connect_timeout_sec
        self._interrupt_grace_ms = (
            interrupt_grace_ms if interrupt_grace_ms is not None else settings.interrupt_grace_ms
        )
        self._connections: Dict[str, ConnectionHandle] = {}

    def __enter__(self) -> "ConnectionManager":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()

    @property
    def active_connections(self) -> int:
        return len(self._connections)

    def list_connection_ids(self) -> List[str]:
        return list(self._connections.keys())

    def get_handle(self, connection_id: str) -> ConnectionHandle:
        handle = self._connections.get(connection_id)
        if handle is None:
            raise ConnectionNotFoundError(f"Database connection does not exist: {connection_id}")
        return handle

    def create_connection(
        self,
        descriptor: ConnectionDescriptor,
        statement_timeout_ms: Optional[int] = None,
    ) -> str:
        """
        Opens a connection and registers it under a new id.

        Args:
            descriptor: Target database.
            statement_timeout_ms: Native statement timeout for drivers that
                support one at connect time.

        Returns:
            The connection id.

        Raises:
            UnsupportedDialectError: If no driver serves the dialect.
            DatabaseConnectionError: If the driver fails to connect or the
                target's breaker is open.
        """
        driver = resolve_driver(self._drivers, descriptor.dialect)
        connection_id = self._generate_connection_id()
        breaker = self._breakers.get(descriptor.target_key)

        try:
            connection = breaker.call(
                driver.connect,
                descriptor,
                connect_timeout_sec=self._connect_timeout_sec,
                statement_timeout_ms=statement_timeout_ms,
            )
        except pybreaker.CircuitBreakerError as e:
            raise DatabaseConnectionError(
                f"Database connection failed: too many recent failures for {descriptor.target_key} ({e})"
            ) from e
        except Exception as e:
            raise DatabaseConnectionError(f"Database connection failed: {e}") from e

        self._connections[connection_id] = ConnectionHandle(
            id=connection_id,
            descriptor=descriptor,
            driver=driver,
            connection=connection,
            worker=ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"sqlcheck-{connection_id[:13]}"),
        )
        logger.info(f"Opened {descriptor.dialect.value} connection {connection_id}")
        return connection_id

    def test_connection(self, descriptor: ConnectionDescriptor) -> bool:
        """Creates then closes a connection. Never raises."""
        try:
            connection_id = self.create_connection(descriptor)
            self.close_connection(connection_id)
            return True
        except Exception as e:
            logger.warning(f"Connection test failed for {descriptor.target_key}: {e}")
            return False

    def execute_query(
        self,
        connection_id: str,
        sql: str,
        timeout_ms: Optional[int] = None,
        max_rows: Optional[int] = None,
    ) -> QueryResult:
        """
        Runs a statement on a registered connection.

        Rows are truncated to `max_rows` here for every dialect, whatever
        limiter the statement itself carries. `row_count` keeps the number
        the driver returned.

        Raises:
            ConnectionNotFoundError: If the id is unknown or closed.
            QueryTimeoutError: If the deadline expired, or an earlier statement
                on this connection outlived its deadline and never stopped.
            QueryExecutionError: If the driver failed the statement, or the
                connection was retired.
        """
        handle = self.get_handle(connection_id)
        if handle.retired is not None:
            raise type(handle.retired)(handle.retired.message)
        if handle.busy:
            raise QueryExecutionError(f"Connection {connection_id} is already running a statement")

        timeout_ms = timeout_ms or settings.default_timeout_ms
        max_rows = max_rows or settings.default_max_rows

        future = handle.worker.submit(handle.driver.execute_raw, handle.connection, sql)
        handle.in_flight = future
        try:
            result = future.result(timeout=timeout_ms / 1000)
        except FutureTimeoutError:
            logger.error(f"Statement on {connection_id} exceeded its {timeout_ms} ms deadline")
            self._stop(handle)
            raise QueryTimeoutError(f"Query timed out after {timeout_ms} ms") from None
        except SqlCheckError:
            raise
        except Exception as e:
            raise QueryExecutionError(f"Query execution failed: {e}") from e

        if len(result.rows) > max_rows:
            result = result.model_copy(update={"rows": result.rows[:max_rows]})
        return result

    def retire_connection(self, connection_id: str, error: SqlCheckError) -> None:
        """Marks a connection unusable; every later statement raises `error`'s type and message."""
        handle = self._connections.get(connection_id)
        if handle is not None and handle.retired is None:
            logger.warning(f"Retiring connection {connection_id}: {error}")
            handle.retired = error

    def close_connection(self, connection_id: str) -> None:
        """
        Closes and forgets a connection. Unknown ids are a no-op; close errors are logged only.

        A connection whose statement is still running is closed as soon as
        that statement returns, never underneath it.
        """
        handle = self._connections.pop(connection_id, None)
        if handle is None:
            return
        if handle.busy:
            logger.warning(f"Deferring close of {connection_id} until its running statement returns")
            handle.in_flight.add_done_callback(lambda _: self._release(handle))
            return
        self._release(handle)

    def close_all_connections(self) -> None:
        """Closes every live connection concurrently."""
        ids = list(self._connections.keys())
        if not ids:
            return
        with ThreadPoolExecutor(max_workers=len(ids)) as closer:
            list(closer.map(self.close_connection, ids))

    @contextmanager
    def connection(
        self,
        descriptor: ConnectionDescriptor,
        statement_timeout_ms: Optional[int] = None,
    ) -> Iterator[str]:
        """Scoped acquisition: yields a connection id and always releases it."""
        connection_id = self.create_connection(descriptor, statement_timeout_ms=statement_timeout_ms)
        try:
            yield connection_id
        finally:
            self.close_connection(connection_id)

    def shutdown(self) -> None:
        """Closes every connection."""
        self.close_all_connections()

    def _stop(self, handle: ConnectionHandle) -> None:
        """Interrupts a timed-out statement and retires the connection if it keeps running."""
        try:
            handle.driver.interrupt(handle.connection)
        except Exception as e:
            logger.warning(f"Failed to interrupt statement on {handle.id}: {e}")

        wait([handle.in_flight], timeout=self._interrupt_grace_ms / 1000)
        if handle.busy:
            handle.retired = QueryTimeoutError(
                f"Connection {handle.id} is still running a statement that exceeded its deadline"
            )
            logger.error(f"Statement on {handle.id} ignored the interrupt; connection retired")

    def _release(self, handle: ConnectionHandle) -> None:
        try:
            handle.driver.close(handle.connection)
            logger.info(f"Closed connection {handle.id}")
        except Exception as e:
            logger.warning(f"Error while closing database connection {handle.id}: {e}")
        finally:
            handle.worker.shutdown(wait=False)

    @staticmethod
    def _generate_connection_id() -> str:
        return f"conn_{uuid.uuid4().hex}"
