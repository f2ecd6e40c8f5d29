import sqlite3
import logging
import time
from typing import Any, Iterable, List, Optional, Sequence, Tuple
from adapters.db.base import DBAdapter
from pathlib import Path

from sqlgrep.types import ColumnMetadata, QueryLogEntry, Relationship, TableMetadata

log = logging.getLogger(__name__)

# sqlite3 calls the progress handler every N virtual machine instructions.
_PROGRESS_STEPS = 10_000


class SQLiteAdapter(DBAdapter):
    name = "sqlite"
    dialect = "sqlite"

    def __init__(self, path: str, timeout: float = 10.0):
        # resolve absolute path for safety
        self.path = Path(path).resolve()
        self.timeout = float(timeout)
        log.info("SQLiteAdapter initialized with DB path: %s", self.path)

    def _connect(self) -> sqlite3.Connection:
        if not self.path.exists():
            raise FileNotFoundError(f"SQLite DB does not exist: {self.path}")
        # use proper SQLite URI (not .as_uri())
        uri = f"file:{self.path}?mode=ro"
        conn = sqlite3.connect(uri, uri=True, timeout=3)
        # Extra safety: enforce query-only mode on top of the read-only URI
        conn.execute("PRAGMA query_only = ON;")
        return conn

    def _install_deadline(self, conn: sqlite3.Connection) -> None:
        if self.timeout <= 0:
            return
        deadline = time.monotonic() + self.timeout

        # A non-zero return value aborts the running statement.
        def _check() -> int:
            return 1 if time.monotonic() > deadline else 0

        conn.set_progress_handler(_check, _PROGRESS_STEPS)

    def execute(
        self,
        sql: str,
        params: Sequence[Any] = (),
        query_log: Optional[List[QueryLogEntry]] = None,
    ) -> Tuple[List[Tuple[Any, ...]], List[str]]:
        conn = self._connect()
        try:
            self._install_deadline(conn)
            log.debug("Executing SQL: %s", sql.strip().replace("\n", " "))
            t0 = time.perf_counter()
            try:
                cur = conn.execute(sql, tuple(params))
                rows = cur.fetchall()
            except sqlite3.OperationalError as e:
                if "interrupted" in str(e).lower():
                    raise TimeoutError(
                        f"query exceeded {self.timeout:g}s time limit"
                    ) from e
                raise
            elapsed = (time.perf_counter() - t0) * 1000.0
            cols = [desc[0] for desc in (cur.description or ())]
            if query_log is not None:
                query_log.append(
                    QueryLogEntry(query=sql, bindings=tuple(params), time=round(elapsed, 3))
                )
            log.info("Query executed successfully. Returned %d rows.", len(rows))
            return rows, cols
        finally:
            conn.close()

    def ping(self) -> None:
        conn = self._connect()
        try:
            conn.execute("SELECT 1").fetchone()
        finally:
            conn.close()

    def load_metadata(self, exclude_tables: Iterable[str] = ()) -> List[TableMetadata]:
        excluded = {t.strip().lower() for t in exclude_tables if t and t.strip()}
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute(
                "SELECT name FROM sqlite_master "
                "WHERE type='table' AND name NOT LIKE 'sqlite_%' "
                "ORDER BY name;"
            )
            tables = [t[0] for t in cur.fetchall() if t and t[0]]

            out: List[TableMetadata] = []
            for t in tables:
                if t.lower() in excluded:
                    continue
                # PRAGMA does not accept bound parameters; quote the identifier.
                ident = '"' + t.replace('"', '""') + '"'
                cur.execute(f"PRAGMA table_info({ident});")
                cols = tuple(
                    ColumnMetadata(name=c[1], type=str(c[2] or ""))
                    for c in cur.fetchall()
                    if c and len(c) >= 3
                )
                cur.execute(f"PRAGMA foreign_key_list({ident});")
                # Rows are (id, seq, table, from, to, on_update, on_delete, match)
                rels = tuple(
                    Relationship(type="belongsTo", table=str(fk[2]), foreign_key=str(fk[3]))
                    for fk in cur.fetchall()
                    if fk and len(fk) >= 4
                )
                out.append(TableMetadata(name=t, columns=cols, relationships=rels))
            return out
        finally:
            conn.close()
