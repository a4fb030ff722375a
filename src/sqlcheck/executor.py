from __future__ import annotations

import json
import re
import time
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from sqlcheck import security
from sqlcheck.common.errors import QueryExecutionError, SqlCheckError
from sqlcheck.common.logger import get_logger
from sqlcheck.connection_manager import ConnectionManager
from sqlcheck.models import (
    ConnectionDescriptor,
    Dialect,
    ExecutionOptions,
    ExecutionPlan,
    FieldInfo,
    QueryMetadata,
    QueryResult,
    SampleResults,
    SyntaxCheck,
    ValidationResult,
)

logger = get_logger("sql_executor")


class ExecutorState(str, Enum):
    UNINITIALIZED = "uninitialized"
    CONNECTED = "connected"
    SECURITY_CHECKED = "security_checked"
    SYNTAX_CHECKED = "syntax_checked"
    PLAN_ATTEMPTED = "plan_attempted"
    SAMPLE_ATTEMPTED = "sample_attempted"
    METADATA_ANNOTATED = "metadata_annotated"
    FINALIZED = "finalized"


# (statement prefix, SQL Server session toggle) per dialect
SYNTAX_CHECKS: Dict[Dialect, Tuple[str, Optional[str]]] = {
    Dialect.POSTGRES: ("EXPLAIN (FORMAT JSON) ", None),
    Dialect.MYSQL: ("EXPLAIN ", None),
    Dialect.SQLITE: ("EXPLAIN QUERY PLAN ", None),
    Dialect.MSSQL: ("", "SHOWPLAN_ALL"),
}

PLAN_REQUESTS: Dict[Dialect, Tuple[str, Optional[str]]] = {
    Dialect.POSTGRES: ("EXPLAIN (ANALYZE, BUFFERS, FORMAT JSON) ", None),
    Dialect.MYSQL: ("EXPLAIN FORMAT=JSON ", None),
    Dialect.SQLITE: ("EXPLAIN QUERY PLAN ", None),
    Dialect.MSSQL: ("", "SHOWPLAN_XML"),
}

_HAS_LIMITER = re.compile(r"\b(LIMIT|TOP)\b", re.IGNORECASE)
_LIMITABLE = re.compile(r"^\s*(SELECT|WITH)\b", re.IGNORECASE)
_LEADING_SELECT = re.compile(r"^(\s*SELECT)(\s+(?:DISTINCT|ALL)\b)?", re.IGNORECASE)
_TABLE_REFERENCE = re.compile(
    r"(?:FROM|JOIN|UPDATE|INSERT\s+INTO|DELETE\s+FROM)\s+([a-zA-Z_][a-zA-Z0-9_]*)",
    re.IGNORECASE,
)
_HIGH_COMPLEXITY = re.compile(r"\b(WITH|WINDOW)\b", re.IGNORECASE)
_MEDIUM_COMPLEXITY = re.compile(r"\b(JOIN|UNION)\b", re.IGNORECASE)
_MSSQL_EST_ROWS = re.compile(r'StatementEstRows="([0-9.Ee+-]+)"')
_MSSQL_SUBTREE_COST = re.compile(r'StatementSubTreeCost="([0-9.Ee+-]+)"')


def add_row_limit(sql: str, dialect: Dialect, max_rows: int) -> str:
    """
    Injects a row limiter for sample execution unless one is already present.

    postgres/mysql/sqlite get `LIMIT n` appended to SELECT/WITH statements;
    SQL Server gets `TOP n` after a leading SELECT. Anything else is
    returned unchanged.
    """
    if _HAS_LIMITER.search(sql):
        return sql

    if dialect == Dialect.MSSQL:
        if not _LEADING_SELECT.match(sql):
            return sql
        return _LEADING_SELECT.sub(
            lambda m: f"{m.group(1)}{m.group(2) or ''} TOP {max_rows}", sql, count=1
        )

    if not _LIMITABLE.match(sql):
        return sql
    return f"{sql.strip().rstrip(';').rstrip()} LIMIT {max_rows}"


def extract_affected_tables(sql: str) -> List[str]:
    tables: List[str] = []
    for match in _TABLE_REFERENCE.finditer(sql):
        name = match.group(1)
        if name not in tables:
            tables.append(name)
    return tables


def assess_complexity(sql: str) -> str:
    if _HIGH_COMPLEXITY.search(sql):
        return "high"
    if _MEDIUM_COMPLEXITY.search(sql):
        return "medium"
    return "low"


def _plan_values(plan: Any) -> List[Any]:
    """
    Column values of the first plan row, with JSON text decoded.
    Empty for anything that is not a non-empty list of row dicts.
    """
    if not isinstance(plan, list) or not plan or not isinstance(plan[0], dict):
        return []
    values = []
    for value in plan[0].values():
        if isinstance(value, str) and value.lstrip().startswith(("{", "[")):
            try:
                value = json.loads(value)
            except ValueError:
                pass
        values.append(value)
    return values


def _postgres_root(value: Any) -> Optional[Dict[str, Any]]:
    # [{"Plan": {...}}]
    if isinstance(value, list) and value and isinstance(value[0], dict):
        root = value[0].get("Plan")
        if isinstance(root, dict):
            return root
    return None


def estimate_rows(plan: Any) -> int:
    """
    Reads the planner's row estimate from a retrieved plan, when it has one.
    Returns 0 for plans that carry no overall estimate.
    """
    for value in _plan_values(plan):
        root = _postgres_root(value)
        if root is not None and isinstance(root.get("Plan Rows"), (int, float)):
            return int(root["Plan Rows"])
        if isinstance(value, str):
            match = _MSSQL_EST_ROWS.search(value)
            if match:
                return int(float(match.group(1)))
    return 0


def estimate_cost(plan: Any) -> Optional[float]:
    """
    Reads the planner's total cost: postgres `Total Cost`, MySQL
    `query_block.cost_info.query_cost`, SQL Server `StatementSubTreeCost`.
    None when the plan carries no cost.
    """
    for value in _plan_values(plan):
        root = _postgres_root(value)
        if root is not None and isinstance(root.get("Total Cost"), (int, float)):
            return float(root["Total Cost"])
        if isinstance(value, dict):
            cost = value.get("query_block", {}).get("cost_info", {}).get("query_cost")
            if cost is not None:
                try:
                    return float(cost)
                except (TypeError, ValueError):
                    return None
        if isinstance(value, str):
            match = _MSSQL_SUBTREE_COST.search(value)
            if match:
                return float(match.group(1))
    return None


def analyze_metadata(sql: str, plan: Any = None) -> QueryMetadata:
    """Pure text scan; never fails."""
    return QueryMetadata(
        affected_tables=extract_affected_tables(sql),
        estimated_rows=estimate_rows(plan),
        complexity=assess_complexity(sql),
    )


class SqlExecutor:
    """
    Validates one SQL statement against one target database.

    The executor owns exactly one connection from `initialize()` until
    `cleanup()`. Stages run strictly in order over that connection:
    security gate, syntax check, plan (optional, best-effort), sample
    execution (best-effort), metadata. A failed gate or syntax check ends
    the run early with `is_valid=False`; plan and sample failures only add
    warnings.

    Use as a context manager to guarantee the connection is released:

        with SqlExecutor(descriptor, options, manager) as executor:
            result = executor.validate_sql(sql)
    """

    def __init__(
        self,
        connection: ConnectionDescriptor,
        options: ExecutionOptions,
        manager: ConnectionManager,
    ):
        self.connection = connection
        self.options = options
        self.manager = manager
        self.connection_id: Optional[str] = None
        self.state = ExecutorState.UNINITIALIZED

    def __enter__(self) -> "SqlExecutor":
        self.initialize()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cleanup()

    @property
    def dialect(self) -> Dialect:
        return self.connection.dialect

    def initialize(self) -> None:
        """Acquires the connection. Failures propagate to the caller."""
        self.connection_id = self.manager.create_connection(
            self.connection, statement_timeout_ms=self.options.timeout_ms
        )
        self.state = ExecutorState.CONNECTED

    def cleanup(self) -> None:
        """Releases the owned connection. Safe to call more than once."""
        if self.connection_id:
            self.manager.close_connection(self.connection_id)
            self.connection_id = None

    def validate_sql(self, sql: str) -> ValidationResult:
        result = ValidationResult()

        result.security_check = security.analyze(sql, readonly=self.options.readonly)
        self.state = ExecutorState.SECURITY_CHECKED
        if not security.passes_gate(result.security_check, self.options.readonly):
            logger.info(
                f"Security gate rejected statement; blocked: {result.security_check.blocked_operations}"
            )
            return self._finalize(result)

        result.syntax_check = self.check_syntax(sql)
        self.state = ExecutorState.SYNTAX_CHECKED
        if not result.syntax_check.valid:
            return self._finalize(result)

        if self.options.explain:
            result.execution_plan = self.get_execution_plan(sql)
        self.state = ExecutorState.PLAN_ATTEMPTED

        try:
            result.sample_results = self.execute_sample(sql)
        except SqlCheckError as e:
            logger.warning(f"Sample execution failed: {e}")
            result.sample_results = SampleResults(columns=[], rows=[], execution_time=0)
            result.security_check.warnings.append(f"Sample execution failed: {e}")
        self.state = ExecutorState.SAMPLE_ATTEMPTED

        plan = result.execution_plan.plan if result.execution_plan else None
        result.metadata = analyze_metadata(sql, plan)
        self.state = ExecutorState.METADATA_ANNOTATED

        result.is_valid = True
        return self._finalize(result)

    def check_syntax(self, sql: str) -> SyntaxCheck:
        """Asks the target engine to plan the statement without running it."""
        prefix, showplan = SYNTAX_CHECKS[self.dialect]
        try:
            self._explain(prefix, showplan, sql)
            return SyntaxCheck(valid=True)
        except SqlCheckError as e:
            return SyntaxCheck(valid=False, error=str(e))

    def get_execution_plan(self, sql: str) -> ExecutionPlan:
        prefix, showplan = PLAN_REQUESTS[self.dialect]
        try:
            plan = self._explain(prefix, showplan, sql)
            return ExecutionPlan(plan=plan.rows, cost=estimate_cost(plan.rows), warnings=[])
        except SqlCheckError as e:
            logger.warning(f"Execution plan retrieval failed: {e}")
            return ExecutionPlan(plan=None, warnings=[f"Execution plan retrieval failed: {e}"])

    def execute_sample(self, sql: str) -> SampleResults:
        limited_sql = add_row_limit(sql, self.dialect, self.options.max_rows)

        start = time.perf_counter()
        result = self._execute(limited_sql)
        execution_time = (time.perf_counter() - start) * 1000

        return SampleResults(
            columns=[FieldInfo(name=f.name, type=f.type or "unknown") for f in result.fields],
            rows=result.rows,
            total_rows=result.row_count,
            execution_time=execution_time,
        )

    def _explain(self, prefix: str, showplan: Optional[str], sql: str) -> QueryResult:
        if showplan is None:
            return self._execute(f"{prefix}{sql}")
        # SET SHOWPLAN_* must be alone in its batch
        self._execute(f"SET {showplan} ON")
        try:
            return self._execute(sql)
        finally:
            self._showplan_off(showplan)

    def _showplan_off(self, showplan: str) -> None:
        try:
            self._execute(f"SET {showplan} OFF")
        except SqlCheckError as e:
            # A session stuck in showplan mode would answer the sample with plan rows
            logger.error(f"Could not leave {showplan} mode: {e}")
            self.manager.retire_connection(
                self.connection_id,
                QueryExecutionError(f"Connection left in {showplan} mode: {e}"),
            )

    def _execute(self, sql: str) -> QueryResult:
        if not self.connection_id:
            raise SqlCheckError("Database connection is not initialized")
        return self.manager.execute_query(
            self.connection_id,
            sql,
            timeout_ms=self.options.timeout_ms,
            max_rows=self.options.max_rows,
        )

    def _finalize(self, result: ValidationResult) -> ValidationResult:
        self.state = ExecutorState.FINALIZED
        return result
