from typing import Any, Optional

from sqlalchemy.engine import Connection

from sqlcheck.drivers.common import (
    close_connection,
    dbapi_connection,
    open_connection,
    run_statement,
    server_url,
)
from sqlcheck.models import ConnectionDescriptor, Dialect, QueryResult

# pymssql DB-API type codes
MSSQL_TYPE_NAMES = {
    1: "string",
    2: "binary",
    3: "number",
    4: "datetime",
    5: "decimal",
}


def mssql_type_name(type_code: Any) -> str:
    return MSSQL_TYPE_NAMES.get(type_code, "unknown")


class MssqlDriver:
    """SQL Server through pymssql."""

    dialect = Dialect.MSSQL
    default_port = 1433
    drivername = "mssql+pymssql"

    def connect_args(
        self,
        descriptor: ConnectionDescriptor,
        *,
        connect_timeout_sec: int,
        statement_timeout_ms: Optional[int] = None,
    ) -> dict:
        args = {"login_timeout": connect_timeout_sec}
        if statement_timeout_ms:
            args["timeout"] = max(1, -(-int(statement_timeout_ms) // 1000))
        if descriptor.ssl:
            args["encryption"] = "require"
        return args

    def connect(
        self,
        descriptor: ConnectionDescriptor,
        *,
        connect_timeout_sec: int,
        statement_timeout_ms: Optional[int] = None,
    ) -> Connection:
        url = server_url(self.drivername, descriptor, self.default_port)
        return open_connection(
            url,
            self.connect_args(
                descriptor,
                connect_timeout_sec=connect_timeout_sec,
                statement_timeout_ms=statement_timeout_ms,
            ),
        )

    def execute_raw(self, connection: Connection, sql: str) -> QueryResult:
        return run_statement(connection, sql, mssql_type_name)

    def interrupt(self, connection: Connection) -> None:
        # pymssql keeps the cancellable handle on _conn
        dbapi_connection(connection)._conn.cancel()

    def close(self, connection: Connection) -> None:
        close_connection(connection)
