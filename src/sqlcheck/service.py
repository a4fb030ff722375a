"""
Boundary adapter between a caller (HTTP handler, CLI, job runner) and the
validation engine. Requests arrive as already-shaped objects; every
response carries a success flag and an opaque request id.
"""
import uuid
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError

from sqlcheck.common.errors import ErrorCode, ErrorEnvelope, SAFE_ERROR_MESSAGES, SqlCheckError
from sqlcheck.common.logger import get_logger, request_context
from sqlcheck.connection_manager import ConnectionManager
from sqlcheck.executor import SqlExecutor
from sqlcheck.models import (
    ConnectionDescriptor,
    ConnectionStatus,
    ConnectionTestResponse,
    Dialect,
    DialectInfo,
    ValidationRequest,
    ValidationResponse,
)

logger = get_logger("validation_service")

DIALECT_FEATURES = ["syntax check", "execution plan", "sample execution", "security check"]

SUPPORTED_DIALECTS = [
    DialectInfo(name="PostgreSQL", value=Dialect.POSTGRES, description="PostgreSQL database", features=DIALECT_FEATURES),
    DialectInfo(name="MySQL", value=Dialect.MYSQL, description="MySQL database", features=DIALECT_FEATURES),
    DialectInfo(name="SQLite", value=Dialect.SQLITE, description="SQLite database", features=DIALECT_FEATURES),
    DialectInfo(name="SQL Server", value=Dialect.MSSQL, description="Microsoft SQL Server database", features=DIALECT_FEATURES),
]


def supported_dialects() -> List[DialectInfo]:
    return list(SUPPORTED_DIALECTS)


def _new_request_id() -> str:
    return uuid.uuid4().hex


def _validation_error(exc: ValidationError) -> ErrorEnvelope:
    return ErrorEnvelope(
        code=ErrorCode.VALIDATION_ERROR,
        message=SAFE_ERROR_MESSAGES[ErrorCode.VALIDATION_ERROR],
        details=exc.errors(include_url=False, include_context=False),
    )


class ValidationService:
    """Runs validation requests against a shared ConnectionManager."""

    def __init__(self, manager: Optional[ConnectionManager] = None):
        self.manager = manager or ConnectionManager()

    def validate(
        self,
        request: Union[ValidationRequest, Dict[str, Any]],
        request_id: Optional[str] = None,
    ) -> ValidationResponse:
        """
        Validates one statement end to end.

        Args:
            request: A ValidationRequest, or a dict in its wire shape.
            request_id: Caller-supplied correlation id; generated when absent.

        Returns:
            ValidationResponse. Security and syntax outcomes are always a
            successful response with `data.is_valid` set; only malformed
            input and connection failures give `success=False`.
        """
        request_id = request_id or _new_request_id()
        with request_context(request_id):
            try:
                if not isinstance(request, ValidationRequest):
                    request = ValidationRequest.model_validate(request)
            except ValidationError as e:
                return ValidationResponse(
                    success=False, error=_validation_error(e), request_id=request_id
                )

            executor = SqlExecutor(request.connection, request.options, self.manager)
            try:
                executor.initialize()
                result = executor.validate_sql(request.sql)
                return ValidationResponse(success=True, data=result, request_id=request_id)
            except SqlCheckError as e:
                logger.error(f"SQL validation failed: {e}")
                return ValidationResponse(
                    success=False,
                    error=ErrorEnvelope.from_exception(e),
                    request_id=request_id,
                )
            finally:
                executor.cleanup()

    def test_connection(
        self,
        connection: Union[ConnectionDescriptor, Dict[str, Any]],
        request_id: Optional[str] = None,
    ) -> ConnectionTestResponse:
        request_id = request_id or _new_request_id()
        with request_context(request_id):
            try:
                if not isinstance(connection, ConnectionDescriptor):
                    connection = ConnectionDescriptor.model_validate(connection)
            except ValidationError as e:
                return ConnectionTestResponse(
                    success=False, error=_validation_error(e), request_id=request_id
                )

            connected = self.manager.test_connection(connection)
            return ConnectionTestResponse(
                success=True,
                data=ConnectionStatus(
                    connected=connected,
                    dialect=connection.dialect,
                    database=connection.database,
                ),
                request_id=request_id,
            )

    def supported_dialects(self) -> List[DialectInfo]:
        return supported_dialects()

    def shutdown(self) -> None:
        self.manager.shutdown()
