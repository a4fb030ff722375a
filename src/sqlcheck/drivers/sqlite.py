from typing import Optional

from sqlalchemy.engine import Connection, URL, make_url

from sqlcheck.drivers.common import (
    close_connection,
    dbapi_connection,
    open_connection,
    run_statement,
)
from sqlcheck.models import ConnectionDescriptor, Dialect, QueryResult


class SqliteDriver:
    """SQLite through the standard library driver. `database` is a file path."""

    dialect = Dialect.SQLITE
    default_port = None
    drivername = "sqlite+pysqlite"

    def build_url(self, descriptor: ConnectionDescriptor) -> URL:
        if descriptor.connection_string:
            return make_url(descriptor.connection_string)
        return URL.create(self.drivername, database=descriptor.database)

    def connect(
        self,
        descriptor: ConnectionDescriptor,
        *,
        connect_timeout_sec: int,
        statement_timeout_ms: Optional[int] = None,
    ) -> Connection:
        # No native statement timeout; the manager's deadline covers it.
        # Statements run on deadline worker threads, hence check_same_thread.
        return open_connection(
            self.build_url(descriptor),
            {"timeout": connect_timeout_sec, "check_same_thread": False},
        )

    def execute_raw(self, connection: Connection, sql: str) -> QueryResult:
        # sqlite3 reports no column types, so fields stay empty
        return run_statement(connection, sql, None)

    def interrupt(self, connection: Connection) -> None:
        dbapi_connection(connection).interrupt()

    def close(self, connection: Connection) -> None:
        close_connection(connection)
