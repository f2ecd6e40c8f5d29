from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Pattern

import sqlglot
from sqlglot import exp

from sqlgrep.tables import AmbiguousSqlError, tokenize


# ------------------------- Zero-width & basic regexes -------------------------

_ZERO_WIDTH = [
    "\u200b",
    "\u200c",
    "\u200d",
    "\ufeff",
    "\u2060",
    "\u180e",
    "\u200e",
    "\u200f",
]
_ZERO_WIDTH_RE = re.compile("|".join(map(re.escape, _ZERO_WIDTH)))

# String / comment regexes
_STR_SINGLE_RE = re.compile(r"'([^'\\]|\\.)*'", re.DOTALL)
_STR_DOUBLE_RE = re.compile(r'"([^"\\]|\\.)*"', re.DOTALL)
_LINE_COMMENT_RE = re.compile(r"--[^\n]*")
_BLOCK_COMMENT_RE = re.compile(r"/\*.*?\*/", re.DOTALL)

_SELECT_HEAD_RE = re.compile(r"^select\b", re.IGNORECASE)

# Strict forbidden keywords (word boundaries)
_FORBIDDEN: Pattern[str] = re.compile(
    r"\b("
    r"delete|update|insert|drop|create|alter|truncate|merge|upsert|"
    r"grant|revoke|execute|exec|call|copy|attach|detach|pragma|reindex|vacuum|"
    r"into|lock|unlock|load_file|outfile|dumpfile|handler|set_config|pg_sleep|sleep"
    r")\b",
    re.IGNORECASE,
)

MAX_SQL_LEN = 20_000


def strip_zero_width(sql: str) -> str:
    return _ZERO_WIDTH_RE.sub("", sql or "")


def _remove_comments(body: str) -> str:
    body = _BLOCK_COMMENT_RE.sub("", body)
    body = _LINE_COMMENT_RE.sub("", body)
    return body


def _strip_strings(body: str) -> str:
    """
    Remove string literals (so forbidden keyword checks won't fire on quoted text).
    """
    body = _STR_SINGLE_RE.sub("''", body)
    body = _STR_DOUBLE_RE.sub('""', body)
    return body


def _count_statements_semicolon(body: str) -> int:
    """
    Count statements by semicolons after masking strings and removing comments.
    """
    masked_strings = _STR_SINGLE_RE.sub("'S'", body)
    masked_strings = _STR_DOUBLE_RE.sub('"S"', masked_strings)
    no_comments = _remove_comments(masked_strings)
    parts = [p.strip() for p in no_comments.split(";")]
    non_empty = [p for p in parts if p]
    return len(non_empty) if non_empty else 0


def _count_statements_sqlglot(body: str, dialect: Optional[str]) -> int:
    """
    Count statements via sqlglot parser after removing comments.
    """
    try:
        trees = sqlglot.parse(_remove_comments(body), read=dialect)
        return len([t for t in trees if t is not None])
    except Exception:
        # If parse fails, conservatively return 1 to avoid double blocking.
        return 1


def _contains_forbidden_ast(body: str, dialect: Optional[str]) -> str:
    """Return the name of a data-modifying AST node, or "" if none/unparseable."""
    forbidden_node_names = {
        "insert",
        "update",
        "delete",
        "drop",
        "create",
        "alter",
        "altertable",
        "truncatetable",
        "merge",
        "grant",
        "copy",
        "into",
        "lock",
    }
    try:
        root = sqlglot.parse_one(body, read=dialect)
    except Exception:
        # Textual checks already ran; an unparseable query is left to the DB.
        return ""
    if root is None:
        return ""
    for node in root.walk():
        # sqlglot < 18 yields (node, parent, key) tuples from walk()
        if isinstance(node, tuple):
            node = node[0]
        name = type(node).__name__.lower()
        if name in forbidden_node_names:
            return name
        if isinstance(node, exp.Command):
            return "command"
    return ""


@dataclass(frozen=True)
class SafetyVerdict:
    ok: bool
    sql: str
    reason: str = ""


class Safety:
    """
    Read-only policy for a single model-proposed query: a leading SELECT,
    one statement, no DML/DDL/administrative keywords, no ambiguous literals.
    """

    name = "safety"

    def __init__(self, *, dialect: Optional[str] = None, max_len: int = MAX_SQL_LEN) -> None:
        self.dialect = dialect
        self.max_len = max_len

    def check(self, sql: str) -> SafetyVerdict:
        body = strip_zero_width(sql).strip()

        # 0) nil / size guard
        if not body:
            return SafetyVerdict(ok=False, sql=body, reason="empty_sql")
        if len(body) > self.max_len:
            return SafetyVerdict(ok=False, sql=body, reason="sql_too_long")

        # 1) the gate: first token must be SELECT
        if not _SELECT_HEAD_RE.match(body):
            return SafetyVerdict(ok=False, sql=body, reason="non_select")

        # 2) literals/comments whose end differs between dialects
        try:
            tokenize(body)
        except AmbiguousSqlError as e:
            return SafetyVerdict(ok=False, sql=body, reason=f"ambiguous_literal: {e}")

        # 3) single-statement check (semicolon + parser)
        semicolon_count = _count_statements_semicolon(body)
        glot_count = _count_statements_sqlglot(body, self.dialect)
        if semicolon_count != 1 or glot_count != 1:
            return SafetyVerdict(ok=False, sql=body, reason="multiple_statements")

        # 4) forbidden keywords (ignore inside string literals, not comments)
        m = _FORBIDDEN.search(_strip_strings(body))
        if m:
            return SafetyVerdict(
                ok=False, sql=body, reason=f"forbidden_keyword: {m.group(0).lower()}"
            )

        # 5) AST-based forbidden nodes (defense-in-depth)
        node = _contains_forbidden_ast(body, self.dialect)
        if node:
            return SafetyVerdict(ok=False, sql=body, reason=f"forbidden_ast: {node}")

        return SafetyVerdict(ok=True, sql=body)
