from typing import Any, Optional

from pymysql.constants import FIELD_TYPE
from sqlalchemy.engine import Connection

from sqlcheck.common.logger import get_logger
from sqlcheck.drivers.common import (
    close_connection,
    open_connection,
    run_statement,
    server_url,
)
from sqlcheck.models import ConnectionDescriptor, Dialect, QueryResult

logger = get_logger(__name__)

MYSQL_TYPE_NAMES = {
    FIELD_TYPE.DECIMAL: "decimal",
    FIELD_TYPE.NEWDECIMAL: "decimal",
    FIELD_TYPE.TINY: "tinyint",
    FIELD_TYPE.SHORT: "smallint",
    FIELD_TYPE.LONG: "int",
    FIELD_TYPE.INT24: "mediumint",
    FIELD_TYPE.LONGLONG: "bigint",
    FIELD_TYPE.FLOAT: "float",
    FIELD_TYPE.DOUBLE: "double",
    FIELD_TYPE.BIT: "bit",
    FIELD_TYPE.DATE: "date",
    FIELD_TYPE.TIME: "time",
    FIELD_TYPE.DATETIME: "datetime",
    FIELD_TYPE.TIMESTAMP: "timestamp",
    FIELD_TYPE.YEAR: "year",
    FIELD_TYPE.VARCHAR: "varchar",
    FIELD_TYPE.VAR_STRING: "varchar",
    FIELD_TYPE.STRING: "char",
    FIELD_TYPE.JSON: "json",
    FIELD_TYPE.ENUM: "enum",
    FIELD_TYPE.SET: "set",
    FIELD_TYPE.BLOB: "blob",
    FIELD_TYPE.TINY_BLOB: "blob",
    FIELD_TYPE.MEDIUM_BLOB: "blob",
    FIELD_TYPE.LONG_BLOB: "blob",
    FIELD_TYPE.GEOMETRY: "geometry",
}


def mysql_type_name(type_code: Any) -> str:
    return MYSQL_TYPE_NAMES.get(type_code, "unknown")


class MysqlDriver:
    """MySQL / MariaDB through PyMySQL."""

    dialect = Dialect.MYSQL
    default_port = 3306
    drivername = "mysql+pymysql"

    def connect_args(
        self,
        descriptor: ConnectionDescriptor,
        *,
        connect_timeout_sec: int,
        statement_timeout_ms: Optional[int] = None,
    ) -> dict:
        args = {"connect_timeout": connect_timeout_sec}
        if statement_timeout_ms:
            # read_timeout is whole seconds, round up
            args["read_timeout"] = max(1, -(-int(statement_timeout_ms) // 1000))
        if descriptor.ssl:
            # Non-empty ssl dict turns TLS on; without a CA nothing is verified
            args["ssl"] = {"check_hostname": False}
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
        return run_statement(connection, sql, mysql_type_name)

    def interrupt(self, connection: Connection) -> None:
        # KILL QUERY would need a second connection; read_timeout bounds the call instead
        logger.debug("MySQL driver has no in-band cancel; relying on read_timeout")

    def close(self, connection: Connection) -> None:
        close_connection(connection)
