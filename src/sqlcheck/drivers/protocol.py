from typing import Any, Optional, Protocol, runtime_checkable

from sqlcheck.models import ConnectionDescriptor, Dialect, QueryResult


@runtime_checkable
class DialectDriver(Protocol):
    """
    Structural contract every dialect driver satisfies.
    The ConnectionManager depends only on these members.
    """

    dialect: Dialect
    default_port: Optional[int]

    def connect(
        self,
        descriptor: ConnectionDescriptor,
        *,
        connect_timeout_sec: int,
        statement_timeout_ms: Optional[int] = None,
    ) -> Any:
        """Open one physical connection for the descriptor."""
        ...

    def execute_raw(self, connection: Any, sql: str) -> QueryResult:
        """Run a statement verbatim and normalize rows and field metadata."""
        ...

    def interrupt(self, connection: Any) -> None:
        """Best-effort cancellation of the statement running on the connection."""
        ...

    def close(self, connection: Any) -> None:
        """Release the connection and everything opened for it."""
        ...
