from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict


class ErrorCode(str, Enum):
    """Standardized error codes surfaced at the validation boundary."""
    VALIDATION_ERROR = "VALIDATION_ERROR"
    CONNECTION_ERROR = "CONNECTION_ERROR"
    CONNECTION_NOT_FOUND = "CONNECTION_NOT_FOUND"
    QUERY_FAILED = "QUERY_FAILED"
    QUERY_TIMEOUT = "QUERY_TIMEOUT"
    UNSUPPORTED_DIALECT = "UNSUPPORTED_DIALECT"
    EXECUTION_ERROR = "EXECUTION_ERROR"


SAFE_ERROR_MESSAGES = {
    ErrorCode.VALIDATION_ERROR: "Request parameter validation failed.",
    ErrorCode.CONNECTION_ERROR: "Database connection failed.",
    ErrorCode.EXECUTION_ERROR: "SQL validation failed to execute.",
}


class SqlCheckError(Exception):
    """Base class for every error raised by the validation engine."""

    error_code: ErrorCode = ErrorCode.EXECUTION_ERROR

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class DatabaseConnectionError(SqlCheckError):
    """Raised when a connection to the target database cannot be established."""
    error_code = ErrorCode.CONNECTION_ERROR


class ConnectionNotFoundError(SqlCheckError):
    """Raised when a connection id is unknown or already closed."""
    error_code = ErrorCode.CONNECTION_NOT_FOUND


class QueryExecutionError(SqlCheckError):
    """Raised when the driver rejects or fails a statement."""
    error_code = ErrorCode.QUERY_FAILED


class QueryTimeoutError(QueryExecutionError):
    """Raised when a statement outlives its deadline."""
    error_code = ErrorCode.QUERY_TIMEOUT


class UnsupportedDialectError(SqlCheckError, ValueError):
    """Raised when no driver is registered for the requested dialect."""
    error_code = ErrorCode.UNSUPPORTED_DIALECT


class ErrorEnvelope(BaseModel):
    """Structured error returned to the caller instead of a result.

    Attributes:
        code (ErrorCode): The standardized error code.
        message (str): A safe, human-readable summary.
        details (Optional[Any]): The underlying failure description.
    """
    model_config = ConfigDict(extra="ignore")

    code: ErrorCode
    message: str
    details: Optional[Any] = None

    @classmethod
    def from_exception(cls, exc: Exception) -> "ErrorEnvelope":
        """Builds an envelope from an engine exception.

        Args:
            exc (Exception): The failure to describe.

        Returns:
            ErrorEnvelope: Envelope with the safe message for the exception's code.
        """
        code = getattr(exc, "error_code", ErrorCode.EXECUTION_ERROR)
        return cls(
            code=code,
            message=SAFE_ERROR_MESSAGES.get(code, str(exc)),
            details=str(exc),
        )
