from __future__ import annotations

import dataclasses
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator
from pydantic.alias_generators import to_camel

from sqlcheck.common.errors import ErrorEnvelope, SqlCheckError

MIN_TIMEOUT_MS = 1000
MAX_TIMEOUT_MS = 300000
MIN_MAX_ROWS = 1
MAX_MAX_ROWS = 10000


class Dialect(str, Enum):
    """Supported database engines."""
    POSTGRES = "postgres"
    MYSQL = "mysql"
    SQLITE = "sqlite"
    MSSQL = "mssql"


class WireModel(BaseModel):
    """Base for models exchanged with callers: camelCase on the wire, snake_case in Python.

    Binary column values (BLOB, BYTEA, VARBINARY) are base64 in JSON.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, ser_json_bytes="base64")


class ConnectionDescriptor(WireModel):
    """Connection details for one target database, supplied per request."""

    dialect: Dialect
    host: Optional[str] = None
    port: Optional[int] = None
    database: str = Field(..., min_length=1)
    username: Optional[str] = None
    password: Optional[SecretStr] = None
    connection_string: Optional[str] = None
    ssl: bool = False

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, ser_json_bytes="base64", frozen=True
    )

    @property
    def target_key(self) -> str:
        """Identifies the physical target, without credentials."""
        return f"{self.dialect.value}://{self.host or 'localhost'}:{self.port or ''}/{self.database}"


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


class ExecutionOptions(WireModel):
    """Per-request execution policy. Out-of-range numbers are clamped, not rejected."""

    readonly: bool = True
    timeout_ms: int = Field(default=30000, alias="timeout")
    max_rows: int = 1000
    explain: bool = True

    @field_validator("timeout_ms")
    @classmethod
    def clamp_timeout(cls, v: int) -> int:
        return _clamp(v, MIN_TIMEOUT_MS, MAX_TIMEOUT_MS)

    @field_validator("max_rows")
    @classmethod
    def clamp_max_rows(cls, v: int) -> int:
        return _clamp(v, MIN_MAX_ROWS, MAX_MAX_ROWS)


class FieldInfo(WireModel):
    """Column metadata normalized across drivers."""

    name: str
    type: str = "unknown"


class QueryResult(WireModel):
    """Normalized results from a single driver call."""

    rows: List[Dict[str, Any]] = Field(default_factory=list)
    fields: List[FieldInfo] = Field(default_factory=list)
    row_count: int = 0


@dataclasses.dataclass
class ConnectionHandle:
    """
    A live connection owned by the ConnectionManager.

    Attributes:
        id: Registry key, freshly generated and never reused.
        descriptor: The descriptor the connection was opened from.
        driver: The dialect driver that opened it.
        connection: The driver-level connection object.
        worker: Single thread that runs this connection's statements, one at a time.
        in_flight: The statement currently running on the worker, if any.
        retired: Set once the connection must not receive further statements;
            raised again for every later statement.
        created_at: When the connection was opened.
    """
    id: str
    descriptor: ConnectionDescriptor
    driver: Any
    connection: Any
    worker: Optional[ThreadPoolExecutor] = None
    in_flight: Optional[Future] = None
    retired: Optional[SqlCheckError] = None
    created_at: datetime = dataclasses.field(default_factory=datetime.now)

    @property
    def busy(self) -> bool:
        return self.in_flight is not None and not self.in_flight.done()


class SyntaxCheck(WireModel):
    valid: bool = False
    error: Optional[str] = None


class SecurityCheck(WireModel):
    is_read_only: bool = False
    warnings: List[str] = Field(default_factory=list)
    blocked_operations: List[str] = Field(default_factory=list)


class ExecutionPlan(WireModel):
    plan: Optional[Any] = None
    cost: Optional[float] = None
    warnings: List[str] = Field(default_factory=list)


class SampleResults(WireModel):
    columns: List[FieldInfo] = Field(default_factory=list)
    rows: List[Dict[str, Any]] = Field(default_factory=list)
    total_rows: Optional[int] = None
    execution_time: float = 0


class QueryMetadata(WireModel):
    affected_tables: List[str] = Field(default_factory=list)
    estimated_rows: int = 0
    complexity: Literal["low", "medium", "high"] = "low"


class ValidationResult(WireModel):
    """Outcome of one validation run.

    `is_valid` is true only when both the security gate and the syntax
    check pass. Plan and sample failures show up as warnings instead.
    """

    is_valid: bool = False
    syntax_check: SyntaxCheck = Field(default_factory=SyntaxCheck)
    security_check: SecurityCheck = Field(default_factory=SecurityCheck)
    execution_plan: Optional[ExecutionPlan] = None
    sample_results: Optional[SampleResults] = None
    metadata: Optional[QueryMetadata] = None


class ValidationRequest(WireModel):
    sql: str = Field(..., min_length=1)
    connection: ConnectionDescriptor
    options: ExecutionOptions = Field(default_factory=ExecutionOptions)


class ValidationResponse(WireModel):
    success: bool
    data: Optional[ValidationResult] = None
    error: Optional[ErrorEnvelope] = None
    request_id: str


class ConnectionStatus(WireModel):
    connected: bool
    dialect: Dialect
    database: str


class ConnectionTestResponse(WireModel):
    success: bool
    data: Optional[ConnectionStatus] = None
    error: Optional[ErrorEnvelope] = None
    request_id: str


class DialectInfo(WireModel):
    name: str
    value: Dialect
    description: str
    features: List[str] = Field(default_factory=list)
