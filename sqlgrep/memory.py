from __future__ import annotations

import logging
import re
import sqlite3
import threading
import time
from contextlib import closing
from pathlib import Path
from typing import List, Optional

from sqlgrep.errors.exceptions import ConfigurationError
from sqlgrep.types import ConversationMessage

log = logging.getLogger(__name__)

_IDENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_ROLES = ("user", "assistant")
_SECONDS_PER_DAY = 86_400


class ConversationStore:
    """
    SQLite-backed conversation memory with bounded length and TTL expiry.

    Responsibilities:
    - Keep at most `max_messages` messages per conversation id.
    - Drop messages older than `ttl_days` (0 disables expiry).
    - Create its table and indexes lazily on first use.
    """

    def __init__(
        self,
        db_path: str,
        table: str = "sqlgrep_conversations",
        max_messages: int = 10,
        ttl_days: int = 10,
        timeout: float = 5.0,
    ) -> None:
        if not _IDENT_RE.match(table or ""):
            raise ConfigurationError(
                message=f"Invalid conversation table name: {table!r}"
            )
        if str(db_path).strip() in ("", ":memory:"):
            # every connection would open its own empty database
            raise ConfigurationError(
                message=f"Conversation memory needs a file path, got {db_path!r}"
            )
        self.db_path = str(db_path)
        self.table = table
        self.max_messages = max(1, int(max_messages))
        self.ttl_days = max(0, int(ttl_days))
        self.timeout = float(timeout)
        self._ready = False
        self._ready_lock = threading.Lock()

    def _now(self) -> float:
        return time.time()

    def _connect(self) -> sqlite3.Connection:
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        # autocommit; transactions are opened explicitly
        return sqlite3.connect(self.db_path, timeout=self.timeout, isolation_level=None)

    def _ensure_table(self, conn: sqlite3.Connection) -> None:
        if self._ready:
            return
        with self._ready_lock:
            if self._ready:
                return
            conn.execute(
                f"CREATE TABLE IF NOT EXISTS {self.table} ("
                "id INTEGER PRIMARY KEY AUTOINCREMENT, "
                "context TEXT NOT NULL, "
                "role TEXT NOT NULL, "
                "content TEXT NOT NULL, "
                "created_at REAL NOT NULL)"
            )
            conn.execute(
                f"CREATE INDEX IF NOT EXISTS {self.table}_context_idx "
                f"ON {self.table} (context)"
            )
            conn.execute(
                f"CREATE INDEX IF NOT EXISTS {self.table}_created_at_idx "
                f"ON {self.table} (created_at)"
            )
            self._ready = True
            log.debug("Conversation table ready", extra={"table": self.table})

    def _purge_expired(self, conn: sqlite3.Connection) -> None:
        if self.ttl_days <= 0:
            return
        cutoff = self._now() - self.ttl_days * _SECONDS_PER_DAY
        cur = conn.execute(f"DELETE FROM {self.table} WHERE created_at < ?", (cutoff,))
        if cur.rowcount:
            log.debug("Purged expired conversation messages", extra={"rows": cur.rowcount})

    def get_messages(self, conversation_id: Optional[str]) -> List[ConversationMessage]:
        """Most recent messages of a conversation, oldest first."""
        cid = (conversation_id or "").strip()
        if not cid:
            return []
        with closing(self._connect()) as conn:
            self._ensure_table(conn)
            self._purge_expired(conn)
            rows = conn.execute(
                f"SELECT role, content FROM {self.table} "
                "WHERE context = ? ORDER BY id DESC LIMIT ?",
                (cid, self.max_messages),
            ).fetchall()

        messages: List[ConversationMessage] = []
        for role, content in reversed(rows):
            if role in _ROLES and isinstance(content, str) and content.strip():
                messages.append(ConversationMessage(role=role, content=content))
        return messages

    def append_exchange(
        self, conversation_id: Optional[str], user_text: str, assistant_text: str
    ) -> None:
        cid = (conversation_id or "").strip()
        if not cid:
            return
        entries = [
            (role, text.strip())
            for role, text in (("user", user_text), ("assistant", assistant_text))
            if isinstance(text, str) and text.strip()
        ]
        if not entries:
            return

        with closing(self._connect()) as conn:
            self._ensure_table(conn)
            self._purge_expired(conn)
            now = self._now()
            conn.execute("BEGIN IMMEDIATE")
            try:
                conn.executemany(
                    f"INSERT INTO {self.table} (context, role, content, created_at) "
                    "VALUES (?, ?, ?, ?)",
                    [(cid, role, text, now) for role, text in entries],
                )
                conn.execute(
                    f"DELETE FROM {self.table} WHERE context = ? AND id NOT IN ("
                    f"SELECT id FROM {self.table} WHERE context = ? "
                    "ORDER BY id DESC LIMIT ?)",
                    (cid, cid, self.max_messages),
                )
                conn.execute("COMMIT")
            except BaseException:
                conn.execute("ROLLBACK")
                raise

    def clear(self, conversation_id: Optional[str]) -> int:
        """Delete every message of a conversation. Returns the number removed."""
        cid = (conversation_id or "").strip()
        if not cid:
            return 0
        with closing(self._connect()) as conn:
            self._ensure_table(conn)
            cur = conn.execute(f"DELETE FROM {self.table} WHERE context = ?", (cid,))
            return max(cur.rowcount, 0)
