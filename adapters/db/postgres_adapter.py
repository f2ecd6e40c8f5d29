import logging
import time
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import psycopg
from adapters.db.base import DBAdapter

from sqlgrep.types import ColumnMetadata, QueryLogEntry, Relationship, TableMetadata

log = logging.getLogger(__name__)


def to_pyformat(sql: str) -> str:
    """
    Rewrite qmark placeholders to psycopg's %s style.

    `?` inside single-quoted literals is left alone; every literal `%` is
    doubled because psycopg interprets it whenever parameters are passed.
    """
    out: List[str] = []
    in_str = False
    for ch in sql:
        if ch == "'":
            in_str = not in_str
            out.append(ch)
        elif ch == "%":
            out.append("%%")
        elif ch == "?" and not in_str:
            out.append("%s")
        else:
            out.append(ch)
    return "".join(out)


class PostgresAdapter(DBAdapter):
    name = "postgres"
    dialect = "postgres"

    def __init__(self, dsn: str, timeout: float = 10.0, schema: str = "public"):
        """
        DSN example:
        "dbname=demo user=postgres password=postgres host=localhost port=5432"
        """
        self.dsn = dsn
        self.timeout = float(timeout)
        self.schema = schema

    def _connect(self) -> "psycopg.Connection[Any]":
        conn = psycopg.connect(self.dsn)
        # Make it explicitly read-only at the session level
        conn.read_only = True
        return conn

    def execute(
        self,
        sql: str,
        params: Sequence[Any] = (),
        query_log: Optional[List[QueryLogEntry]] = None,
    ) -> Tuple[List[Tuple[Any, ...]], List[str]]:
        """
        Execute a read-only SELECT query and return (rows, columns).
        """
        if not sql or not sql.strip().lower().startswith("select"):
            raise ValueError("Only SELECT statements are allowed.")

        issued = to_pyformat(sql) if params else sql
        with self._connect() as conn:
            with conn.cursor() as cur:
                if self.timeout > 0:
                    cur.execute(f"SET statement_timeout = {int(self.timeout * 1000)}")
                log.debug("Executing SQL: %s", issued.strip().replace("\n", " "))
                t0 = time.perf_counter()
                try:
                    cur.execute(issued, tuple(params) if params else None)
                except psycopg.errors.QueryCanceled as e:
                    raise TimeoutError(
                        f"query exceeded {self.timeout:g}s statement timeout"
                    ) from e
                rows = cur.fetchall() or []
                elapsed = (time.perf_counter() - t0) * 1000.0
                desc = cur.description or ()
                cols: List[str] = [d[0] for d in desc if d]
                if query_log is not None:
                    query_log.append(
                        QueryLogEntry(
                            query=issued, bindings=tuple(params), time=round(elapsed, 3)
                        )
                    )
                return rows, cols

    def ping(self) -> None:
        with self._connect() as conn:
            conn.execute("SELECT 1")

    def load_metadata(self, exclude_tables: Iterable[str] = ()) -> List[TableMetadata]:
        excluded = {t.strip().lower() for t in exclude_tables if t and t.strip()}
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT c.relname, COALESCE(obj_description(c.oid, 'pg_class'), '')
                    FROM pg_class c
                    JOIN pg_namespace n ON n.oid = c.relnamespace
                    WHERE n.nspname = %s AND c.relkind IN ('r', 'v', 'm', 'p')
                    ORDER BY c.relname;
                    """,
                    (self.schema,),
                )
                table_rows = cur.fetchall() or []

                cur.execute(
                    """
                    SELECT c.table_name, c.column_name, c.data_type,
                           COALESCE(col_description(
                               (quote_ident(c.table_schema) || '.' || quote_ident(c.table_name))::regclass,
                               c.ordinal_position), '')
                    FROM information_schema.columns c
                    WHERE c.table_schema = %s
                    ORDER BY c.table_name, c.ordinal_position;
                    """,
                    (self.schema,),
                )
                column_rows = cur.fetchall() or []

                cur.execute(
                    """
                    SELECT tc.table_name, ccu.table_name, kcu.column_name
                    FROM information_schema.table_constraints tc
                    JOIN information_schema.key_column_usage kcu
                      ON tc.constraint_name = kcu.constraint_name
                     AND tc.table_schema = kcu.table_schema
                    JOIN information_schema.constraint_column_usage ccu
                      ON tc.constraint_name = ccu.constraint_name
                     AND tc.table_schema = ccu.table_schema
                    WHERE tc.constraint_type = 'FOREIGN KEY' AND tc.table_schema = %s
                    ORDER BY tc.table_name, kcu.column_name;
                    """,
                    (self.schema,),
                )
                fk_rows = cur.fetchall() or []

        columns: Dict[str, List[ColumnMetadata]] = {}
        for table, col, dtype, comment in column_rows:
            if table and col:
                columns.setdefault(table, []).append(
                    ColumnMetadata(name=col, type=dtype or "", description=comment or "")
                )

        relationships: Dict[str, List[Relationship]] = {}
        for table, target, fk in fk_rows:
            if table and target:
                relationships.setdefault(table, []).append(
                    Relationship(type="belongsTo", table=target, foreign_key=fk)
                )

        return [
            TableMetadata(
                name=name,
                description=comment or "",
                columns=tuple(columns.get(name, [])),
                relationships=tuple(relationships.get(name, [])),
            )
            for name, comment in table_rows
            if name and name.lower() not in excluded
        ]
