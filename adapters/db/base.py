from typing import Any, Iterable, List, Optional, Protocol, Sequence, Tuple

from sqlgrep.types import QueryLogEntry, TableMetadata


class DBAdapter(Protocol):
    """Abstract database adapter for read-only queries."""

    name: str
    dialect: str

    def execute(
        self,
        sql: str,
        params: Sequence[Any] = (),
        query_log: Optional[List[QueryLogEntry]] = None,
    ) -> Tuple[List[Tuple[Any, ...]], List[str]]:
        """
        Execute a parameterised SELECT and return (rows, columns).

        When query_log is given, append one entry per statement actually sent
        to the driver (after any placeholder rewriting).
        """

    def load_metadata(self, exclude_tables: Iterable[str] = ()) -> List[TableMetadata]:
        """Introspect tables, columns and foreign keys. Raise on failure."""

    def ping(self) -> None:
        """Cheap connectivity check. Raise on failure."""
