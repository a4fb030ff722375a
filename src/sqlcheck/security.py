"""Pattern-based safety classification for SQL text.

This is deliberately not a parser. Signatures are matched against the raw
statement, case-insensitively, in a fixed order. A SELECT that calls a
side-effecting function still classifies as read-only, and a keyword inside a
string literal still counts as a match.
"""
import re
from typing import List, Pattern

from sqlcheck.common.settings import settings
from sqlcheck.models import SecurityCheck

DANGEROUS_PATTERNS: List[Pattern[str]] = [
    # DDL
    re.compile(r"DROP\s+(TABLE|DATABASE|SCHEMA|INDEX|VIEW)", re.IGNORECASE),
    re.compile(r"CREATE\s+(TABLE|DATABASE|SCHEMA|INDEX|VIEW)", re.IGNORECASE),
    re.compile(r"ALTER\s+(TABLE|DATABASE|SCHEMA|INDEX|VIEW)", re.IGNORECASE),
    re.compile(r"TRUNCATE\s+TABLE", re.IGNORECASE),
    # DML
    re.compile(r"DELETE\s+FROM", re.IGNORECASE),
    re.compile(r"UPDATE\s+.+\s+SET", re.IGNORECASE),
    re.compile(r"INSERT\s+INTO", re.IGNORECASE),
    # Privileges and procedures
    re.compile(r"GRANT\s+", re.IGNORECASE),
    re.compile(r"REVOKE\s+", re.IGNORECASE),
    re.compile(r"EXEC\s+", re.IGNORECASE),
    re.compile(r"EXECUTE\s+", re.IGNORECASE),
    re.compile(r"CALL\s+", re.IGNORECASE),
    # File I/O
    re.compile(r"LOAD\s+DATA", re.IGNORECASE),
    re.compile(r"INTO\s+OUTFILE", re.IGNORECASE),
    re.compile(r"INTO\s+DUMPFILE", re.IGNORECASE),
    # Timing functions
    re.compile(r"SLEEP\s*\(", re.IGNORECASE),
    re.compile(r"BENCHMARK\s*\(", re.IGNORECASE),
    re.compile(r"WAITFOR\s+DELAY", re.IGNORECASE),
]

READONLY_PATTERNS: List[Pattern[str]] = [
    re.compile(r"SELECT\s+", re.IGNORECASE),
    re.compile(r"WITH\s+.+\s+SELECT", re.IGNORECASE | re.DOTALL),
    re.compile(r"EXPLAIN\s+", re.IGNORECASE),
    re.compile(r"DESCRIBE\s+", re.IGNORECASE),
    re.compile(r"SHOW\s+", re.IGNORECASE),
    re.compile(r"PRAGMA\s+", re.IGNORECASE),
]

READONLY_VIOLATION_WARNING = "SQL contains non-read-only operations while readonly mode is enabled"
LENGTH_WARNING = "SQL statement is very long and may carry a performance risk"
COMMENT_DROP_WARNING = "SQL contains both a comment and a DROP operation; review it carefully"


def analyze(sql: str, readonly: bool = False) -> SecurityCheck:
    """Classifies an SQL statement without touching a database.

    Args:
        sql (str): The statement text.
        readonly (bool): Whether the caller requires a read-only statement.

    Returns:
        SecurityCheck: Read-only flag, warnings and the matched dangerous operations.
    """
    warnings: List[str] = []
    blocked_operations: List[str] = []

    for pattern in DANGEROUS_PATTERNS:
        match = pattern.search(sql)
        if match:
            blocked_operations.append(match.group(0))
            warnings.append(f"Dangerous operation detected: {match.group(0)}")

    is_read_only = (
        any(pattern.search(sql) for pattern in READONLY_PATTERNS)
        and not blocked_operations
    )

    if readonly and not is_read_only:
        warnings.append(READONLY_VIOLATION_WARNING)

    if len(sql) > settings.max_sql_length:
        warnings.append(LENGTH_WARNING)

    if "--" in sql and "DROP" in sql:
        warnings.append(COMMENT_DROP_WARNING)

    return SecurityCheck(
        is_read_only=is_read_only,
        warnings=warnings,
        blocked_operations=blocked_operations,
    )


def passes_gate(check: SecurityCheck, readonly: bool) -> bool:
    """Applies the readonly policy to an existing classification."""
    if readonly and not check.is_read_only:
        return False
    return not check.blocked_operations


def safety_gate(sql: str, readonly: bool = False) -> bool:
    """Returns True only if the statement may be sent to a live database.

    Args:
        sql (str): The statement text.
        readonly (bool): Whether the caller requires a read-only statement.

    Returns:
        bool: False when readonly is required and the text is not read-only,
        or when any dangerous operation matched.
    """
    return passes_gate(analyze(sql, readonly=readonly), readonly)
