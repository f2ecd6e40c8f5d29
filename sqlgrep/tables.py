"""
Referenced-table extraction for the SELECT grammar the validator permits.

A deliberately small lexer: comments and string literals are dropped,
quoted identifiers are unquoted, and table references are read after FROM and
JOIN (including comma lists). This is a heuristic, not a SQL parser; anything
it cannot classify is reported as a table so the allow-list check fails closed.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

WORD = "word"  # bare identifier or keyword
IDENT = "ident"  # quoted identifier, never a keyword
STRING = "string"
NUMBER = "number"
PUNCT = "punct"


# Words that end a table reference (so they are never read as an alias).
_CLAUSE_WORDS = {
    "where", "join", "inner", "left", "right", "full", "outer", "cross", "natural",
    "on", "using", "group", "order", "having", "limit", "offset", "fetch", "union",
    "intersect", "except", "window", "for", "lateral", "straight_join", "as",
    "select", "from", "into", "qualify", "tablesample", "with", "returning",
}

# Keywords that may sit directly in front of "(" without making it a call.
_NON_CALL_WORDS = {
    "in", "exists", "from", "join", "as", "on", "and", "or", "not", "select",
    "where", "any", "all", "some", "union", "intersect", "except", "lateral",
    "values", "when", "then", "else", "case", "using", "having", "by", "with",
    "recursive", "materialized", "over", "filter", "within",
}

# Functions whose own syntax uses FROM for a non-table argument.
_FROM_ARG_FUNCTIONS = {"extract", "substring", "substr", "trim", "overlay", "position"}

# $$ or $tag$ opening a PostgreSQL dollar-quoted literal ($1 is a parameter).
_DOLLAR_QUOTE_RE = re.compile(r"\$(?:[A-Za-z_][A-Za-z0-9_]*)?\$")


@dataclass(frozen=True)
class Token:
    kind: str
    value: str

    @property
    def lower(self) -> str:
        return self.value.lower()

    def is_word(self, *words: str) -> bool:
        return self.kind == WORD and self.lower in words

    def is_punct(self, ch: str) -> bool:
        return self.kind == PUNCT and self.value == ch


class AmbiguousSqlError(ValueError):
    """Raised when dialects disagree on where a literal or comment ends."""


def _bracket_ident_end(sql: str, i: int) -> int:
    """Index of the closing ] if [..] looks like a plain quoted name, else -1."""
    j = sql.find("]", i + 1)
    if j == -1:
        return -1
    body = sql[i + 1 : j]
    if any(c in body for c in "()'\";[") or not body.strip():
        return -1
    return j


def tokenize(sql: str) -> List[Token]:
    """
    Split SQL into tokens, dropping comments and keeping literals opaque.

    Where MySQL and standard SQL disagree on a boundary the lexer either keeps
    lexing (so more text is inspected, not less) or raises AmbiguousSqlError.
    """
    tokens: List[Token] = []
    i, n = 0, len(sql)
    while i < n:
        ch = sql[i]
        if ch.isspace():
            i += 1
        elif sql.startswith("--", i) and (i + 2 >= n or sql[i + 2].isspace()):
            end = sql.find("\n", i)
            i = n if end == -1 else end + 1
        elif sql.startswith("/*!", i):
            # MySQL executable comment: the body is code
            i += 3
            while i < n and sql[i].isdigit():
                i += 1
        elif sql.startswith("/*", i):
            end = sql.find("*/", i + 2)
            if end == -1:
                raise AmbiguousSqlError("unterminated block comment")
            i = end + 2
        elif ch in ("'", '"'):
            j = i + 1
            while j < n:
                if sql[j] == "\\" and j + 1 < n and sql[j + 1] == ch:
                    raise AmbiguousSqlError("backslash-escaped quote in literal")
                if sql[j] == ch:
                    if j + 1 < n and sql[j + 1] == ch:
                        j += 2
                        continue
                    break
                j += 1
            if j >= n:
                raise AmbiguousSqlError(f"unterminated {ch} literal")
            tokens.append(Token(STRING if ch == "'" else IDENT, sql[i + 1 : j]))
            i = j + 1
        elif ch == "`":
            j = sql.find("`", i + 1)
            if j == -1:
                raise AmbiguousSqlError("unterminated ` identifier")
            tokens.append(Token(IDENT, sql[i + 1 : j]))
            i = j + 1
        elif ch == "$" and _DOLLAR_QUOTE_RE.match(sql, i):
            # PostgreSQL $tag$...$tag$ bodies hide quotes from the other dialects
            raise AmbiguousSqlError("dollar-quoted literal")
        elif ch == "[" and _bracket_ident_end(sql, i) != -1:
            j = _bracket_ident_end(sql, i)
            tokens.append(Token(IDENT, sql[i + 1 : j].strip()))
            i = j + 1
        elif ch.isalpha() or ch == "_":
            j = i + 1
            while j < n and (sql[j].isalnum() or sql[j] in "_$"):
                j += 1
            tokens.append(Token(WORD, sql[i:j]))
            i = j
        elif ch.isdigit():
            j = i + 1
            while j < n and (sql[j].isalnum() or sql[j] == "."):
                j += 1
            tokens.append(Token(NUMBER, sql[i:j]))
            i = j
        else:
            tokens.append(Token(PUNCT, ch))
            i += 1
    return tokens


def _is_name(tok: Optional[Token]) -> bool:
    return tok is not None and tok.kind in (WORD, IDENT)


def _matching_paren(tokens: List[Token], start: int) -> int:
    depth = 0
    for k in range(start, len(tokens)):
        if tokens[k].is_punct("("):
            depth += 1
        elif tokens[k].is_punct(")"):
            depth -= 1
            if depth == 0:
                return k
    return len(tokens) - 1


def _enclosing_close(tokens: List[Token]) -> List[int]:
    """For each token, the index of the ")" closing its innermost group (or len)."""
    out = [len(tokens)] * len(tokens)
    opens: List[int] = []
    for k, tok in enumerate(tokens):
        if tok.is_punct("("):
            opens.append(k)
        elif tok.is_punct(")") and opens:
            start = opens.pop()
            for m in range(start + 1, k):
                if out[m] == len(tokens):
                    out[m] = k
    return out


@dataclass(frozen=True)
class CteScope:
    """A CTE name and the token range [start, end) in which it shadows tables."""

    name: str
    start: int
    end: int


def _cte_scopes(tokens: List[Token]) -> List[CteScope]:
    """
    Names declared by each `WITH [RECURSIVE] name [(cols)] AS (...)` list.

    A name is visible from the end of its own body (from the start of it under
    RECURSIVE) to the end of the group the WITH sits in. References outside
    that range are real tables.
    """
    closes = _enclosing_close(tokens)
    scopes: List[CteScope] = []
    for w, tok in enumerate(tokens):
        if not tok.is_word("with"):
            continue
        end = closes[w]
        j = w + 1
        recursive = j < len(tokens) and tokens[j].is_word("recursive")
        if recursive:
            j += 1
        while j < len(tokens) and _is_name(tokens[j]):
            name = tokens[j].lower
            k = j + 1
            if k < len(tokens) and tokens[k].is_punct("("):
                k = _matching_paren(tokens, k) + 1
            if not (k < len(tokens) and tokens[k].is_word("as")):
                break
            k += 1
            while k < len(tokens) and tokens[k].is_word("not", "materialized"):
                k += 1
            if not (k < len(tokens) and tokens[k].is_punct("(")):
                break
            body_end = _matching_paren(tokens, k)
            scopes.append(CteScope(name, k if recursive else body_end + 1, end))
            j = body_end + 1
            if j < len(tokens) and tokens[j].is_punct(","):
                j += 1
            else:
                break
    return scopes


def _read_table(tokens: List[Token], i: int) -> Tuple[Optional[str], int]:
    """Read one table reference at i. Returns (name or None, next index)."""
    while i < len(tokens) and tokens[i].is_word("lateral", "only"):
        i += 1
    if i >= len(tokens):
        return None, i
    if tokens[i].is_punct("("):
        # derived table / subquery: its body is scanned on its own
        return None, _matching_paren(tokens, i) + 1
    if not _is_name(tokens[i]):
        return None, i

    name = tokens[i].lower
    i += 1
    while (
        i + 1 < len(tokens) and tokens[i].is_punct(".") and _is_name(tokens[i + 1])
    ):
        name = tokens[i + 1].lower
        i += 2
    if i < len(tokens) and tokens[i].is_punct("("):
        # table-valued function; still reported so unknown ones are rejected
        i = _matching_paren(tokens, i) + 1
    return name, i


def _skip_alias(tokens: List[Token], i: int) -> int:
    if i < len(tokens) and tokens[i].is_word("as"):
        i += 1
        if i < len(tokens) and _is_name(tokens[i]):
            i += 1
    elif i < len(tokens) and (
        tokens[i].kind == IDENT
        or (tokens[i].kind == WORD and tokens[i].lower not in _CLAUSE_WORDS)
    ):
        i += 1
    if i < len(tokens) and tokens[i].is_punct("("):
        # alias column list: AS t(a, b)
        i = _matching_paren(tokens, i) + 1
    return i


def extract_tables(sql: str) -> List[str]:
    """Case-folded table names referenced after FROM/JOIN, first-seen order."""
    tokens = tokenize(sql)
    scopes = _cte_scopes(tokens)
    found: List[str] = []

    def _add(name: Optional[str], at: int) -> None:
        if not name or name in found:
            return
        if any(s.name == name and s.start <= at < s.end for s in scopes):
            return
        found.append(name)

    # Innermost open parenthesis: the function name if it is a call.
    stack: List[Optional[str]] = []
    for i, tok in enumerate(tokens):
        if tok.is_punct("("):
            prev = tokens[i - 1] if i else None
            call = (
                prev.lower
                if prev is not None
                and prev.kind == WORD
                and prev.lower not in _NON_CALL_WORDS
                else None
            )
            stack.append(call)
            continue
        if tok.is_punct(")"):
            if stack:
                stack.pop()
            continue
        if not tok.is_word("from", "join"):
            continue

        if tok.is_word("from"):
            if stack and stack[-1] in _FROM_ARG_FUNCTIONS:
                continue
            # a IS [NOT] DISTINCT FROM b
            if i >= 2 and tokens[i - 1].is_word("distinct") and tokens[i - 2].is_word(
                "is", "not"
            ):
                continue

        name, j = _read_table(tokens, i + 1)
        _add(name, i)
        if not tok.is_word("from"):
            continue
        j = _skip_alias(tokens, j)
        while j < len(tokens) and tokens[j].is_punct(","):
            comma = j
            name, j = _read_table(tokens, j + 1)
            _add(name, comma)
            j = _skip_alias(tokens, j)
    return found
