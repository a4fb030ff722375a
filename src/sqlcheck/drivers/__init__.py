from typing import Dict, Union

from sqlcheck.common.errors import UnsupportedDialectError
from sqlcheck.models import Dialect

from .mssql import MssqlDriver
from .mysql import MysqlDriver
from .postgres import PostgresDriver
from .protocol import DialectDriver
from .sqlite import SqliteDriver


def default_drivers() -> Dict[Dialect, DialectDriver]:
    """Returns a fresh dialect -> driver map covering every supported engine."""
    drivers = (PostgresDriver(), MysqlDriver(), SqliteDriver(), MssqlDriver())
    return {driver.dialect: driver for driver in drivers}


def resolve_driver(drivers: Dict[Dialect, DialectDriver], dialect: Union[Dialect, str]) -> DialectDriver:
    """
    Looks up the driver for a dialect.

    Raises:
        UnsupportedDialectError: If the dialect is unknown or has no driver.
    """
    try:
        return drivers[Dialect(dialect)]
    except (KeyError, ValueError):
        raise UnsupportedDialectError(
            f"Unsupported database dialect: '{dialect}'. "
            f"Available: {[d.value for d in drivers]}."
        ) from None


__all__ = [
    "DialectDriver",
    "PostgresDriver",
    "MysqlDriver",
    "SqliteDriver",
    "MssqlDriver",
    "default_drivers",
    "resolve_driver",
]
