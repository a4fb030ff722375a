"""SQLAlchemy plumbing shared by the dialect drivers."""
from typing import Any, Callable, Dict, Optional

from pydantic import SecretStr
from sqlalchemy import create_engine
from sqlalchemy.engine import Connection, URL, make_url
from sqlalchemy.pool import NullPool

from sqlcheck.common.logger import get_logger
from sqlcheck.models import ConnectionDescriptor, FieldInfo, QueryResult

logger = get_logger(__name__)

DEFAULT_HOST = "localhost"

TypeNamer = Callable[[Any], str]


def secret_value(secret: Optional[SecretStr]) -> Optional[str]:
    return secret.get_secret_value() if secret is not None else None


def server_url(drivername: str, descriptor: ConnectionDescriptor, default_port: int) -> URL:
    """
    Builds the URL for a networked server from the descriptor.
    An explicit connection string wins over the individual fields.
    """
    if descriptor.connection_string:
        return make_url(descriptor.connection_string)
    return URL.create(
        drivername,
        username=descriptor.username,
        password=secret_value(descriptor.password),
        host=descriptor.host or DEFAULT_HOST,
        port=descriptor.port or default_port,
        database=descriptor.database,
    )


def open_connection(url: URL, connect_args: Dict[str, Any]) -> Connection:
    """
    Opens exactly one connection on a private, unpooled engine.
    AUTOCOMMIT keeps a failed EXPLAIN from poisoning later statements.
    """
    logger.debug(f"Connecting to {url.render_as_string(hide_password=True)}")
    engine = create_engine(
        url,
        poolclass=NullPool,
        isolation_level="AUTOCOMMIT",
        connect_args=connect_args,
    )
    try:
        return engine.connect()
    except Exception:
        engine.dispose()
        raise


def dbapi_connection(connection: Connection) -> Any:
    return connection.connection.dbapi_connection


def _plain_value(value: Any) -> Any:
    # psycopg2 hands BYTEA back as memoryview
    if isinstance(value, (memoryview, bytearray)):
        return bytes(value)
    return value


def run_statement(connection: Connection, sql: str, type_namer: Optional[TypeNamer] = None) -> QueryResult:
    """
    Executes raw SQL without bind-parameter processing.

    Args:
        connection: The open SQLAlchemy connection.
        sql: Statement text, passed to the DBAPI cursor untouched.
        type_namer: Maps a cursor.description type code to a type name.
            None means the driver exposes no usable type metadata and
            the field list stays empty.

    Returns:
        QueryResult with rows as dicts keyed by column name.
    """
    result = connection.exec_driver_sql(sql, execution_options={"no_parameters": True})
    if not result.returns_rows:
        row_count = max(result.rowcount, 0)
        result.close()
        return QueryResult(rows=[], fields=[], row_count=row_count)

    description = result.cursor.description if result.cursor is not None else None
    keys = list(result.keys())
    rows = [dict(zip(keys, map(_plain_value, row))) for row in result.fetchall()]

    fields = []
    if type_namer is not None and description:
        fields = [FieldInfo(name=col[0], type=type_namer(col[1])) for col in description]

    return QueryResult(rows=rows, fields=fields, row_count=len(rows))


def close_connection(connection: Connection) -> None:
    engine = connection.engine
    try:
        connection.close()
    finally:
        engine.dispose()
