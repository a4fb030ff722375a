"""Multi-dialect SQL validation engine."""
from sqlcheck.common.errors import (
    ConnectionNotFoundError,
    DatabaseConnectionError,
    ErrorCode,
    QueryExecutionError,
    QueryTimeoutError,
    SqlCheckError,
    UnsupportedDialectError,
)
from sqlcheck.connection_manager import ConnectionManager
from sqlcheck.executor import SqlExecutor
from sqlcheck.models import (
    ConnectionDescriptor,
    Dialect,
    ExecutionOptions,
    ValidationRequest,
    ValidationResponse,
    ValidationResult,
)
from sqlcheck.security import analyze, safety_gate
from sqlcheck.service import ValidationService

__all__ = [
    "ConnectionDescriptor",
    "ConnectionManager",
    "ConnectionNotFoundError",
    "DatabaseConnectionError",
    "Dialect",
    "ErrorCode",
    "ExecutionOptions",
    "QueryExecutionError",
    "QueryTimeoutError",
    "SqlCheckError",
    "SqlExecutor",
    "UnsupportedDialectError",
    "ValidationRequest",
    "ValidationResponse",
    "ValidationResult",
    "ValidationService",
    "analyze",
    "safety_gate",
]
