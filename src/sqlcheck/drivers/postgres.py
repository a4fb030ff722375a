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

# psycopg2 reports pg_type OIDs in cursor.description
PG_TYPE_NAMES = {
    16: "boolean",
    17: "bytea",
    20: "bigint",
    21: "smallint",
    23: "integer",
    25: "text",
    114: "json",
    700: "real",
    701: "double precision",
    1042: "char",
    1043: "varchar",
    1082: "date",
    1083: "time",
    1114: "timestamp",
    1184: "timestamptz",
    1700: "numeric",
    2950: "uuid",
    3802: "jsonb",
}


def pg_type_name(type_code: Any) -> str:
    return PG_TYPE_NAMES.get(type_code, "unknown")


class PostgresDriver:
    """PostgreSQL through psycopg2."""

    dialect = Dialect.POSTGRES
    default_port = 5432
    drivername = "postgresql+psycopg2"

    def connect_args(
        self,
        descriptor: ConnectionDescriptor,
        *,
        connect_timeout_sec: int,
        statement_timeout_ms: Optional[int] = None,
    ) -> dict:
        args = {
            "connect_timeout": connect_timeout_sec,
            "sslmode": "require" if descriptor.ssl else "disable",
        }
        if statement_timeout_ms:
            args["options"] = f"-c statement_timeout={int(statement_timeout_ms)}"
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
        return run_statement(connection, sql, pg_type_name)

    def interrupt(self, connection: Connection) -> None:
        dbapi_connection(connection).cancel()

    def close(self, connection: Connection) -> None:
        close_connection(connection)
