"""
Plan interpretation: turn the raw planning response into a validated QueryPlan.

Fails closed. Every step is checked against the read-only safety policy and the
table allow-list before anything reaches a database.
"""

from __future__ import annotations

import json
import re
from typing import Any, Iterable, List, Mapping, Optional, Tuple

from sqlgrep.errors.exceptions import (
    EmptyPlanError,
    InvalidBindingsError,
    MalformedResponseError,
    MissingQueryError,
    UnknownTableError,
    UnsafeQueryError,
)
from sqlgrep.safety import Safety, strip_zero_width
from sqlgrep.tables import AmbiguousSqlError, extract_tables
from sqlgrep.types import QueryPlan, QueryStep, Scalar, StepKind

# ```json ... ``` or ``` ... ```
_FENCE_RE = re.compile(r"^\s*```[a-zA-Z0-9_-]*\s*\n?(.*?)\n?\s*```\s*$", re.DOTALL)

# Step `type` values that mean "run this raw SELECT".
RAW_SELECT_ALIASES = frozenset({"raw", "raw_select", "rawselect", "select"})


def response_content(raw_response: Any) -> Optional[str]:
    """choices[0].message.content, or None when the shape is off."""
    if not isinstance(raw_response, Mapping):
        return None
    choices = raw_response.get("choices")
    if not isinstance(choices, (list, tuple)) or not choices:
        return None
    first = choices[0]
    if not isinstance(first, Mapping):
        return None
    message = first.get("message")
    if not isinstance(message, Mapping):
        return None
    content = message.get("content")
    return content if isinstance(content, str) else None


def _strip_fence(text: str) -> str:
    m = _FENCE_RE.match(text)
    return m.group(1) if m else text


def _is_scalar(value: Any) -> bool:
    return value is None or isinstance(value, (str, int, float, bool))


class PlanInterpreter:
    """Parses and validates the model's proposed plan. Pure: no I/O."""

    def __init__(self, safety: Optional[Safety] = None) -> None:
        self.safety = safety or Safety()

    def interpret(self, raw_response: Any, known_tables: Iterable[str] = ()) -> QueryPlan:
        content = response_content(raw_response)
        if content is None or not content.strip():
            raise MalformedResponseError(
                message="Model response has no message content."
            )

        try:
            data = json.loads(_strip_fence(content.strip()))
        except ValueError as e:
            raise MalformedResponseError(
                message="Model response is not valid JSON.",
                extra={"detail": str(e), "content": content[:500]},
            ) from e
        if not isinstance(data, Mapping):
            raise MalformedResponseError(message="Model response is not a JSON object.")

        raw_steps = data.get("steps")
        if raw_steps is None:
            raw_steps = []
        if not isinstance(raw_steps, list):
            raise MalformedResponseError(message="'steps' must be a list.")

        summary = data.get("summary")
        if not isinstance(summary, str) or not summary.strip():
            summary = None

        allowed = frozenset(t.strip().lower() for t in known_tables if t and t.strip())
        steps = tuple(
            self._interpret_step(raw, index, allowed) for index, raw in enumerate(raw_steps)
        )

        if not steps and summary is None:
            raise EmptyPlanError(message="Plan has neither steps nor a summary.")
        return QueryPlan(steps=steps, summary=summary)

    # -- per step -----------------------------------------------------------

    def _interpret_step(
        self, raw: Any, index: int, allowed: frozenset
    ) -> QueryStep:
        if not isinstance(raw, Mapping):
            raise MissingQueryError(message="Step is not an object.", step_index=index)

        query = raw.get("query")
        if not isinstance(query, str) or not strip_zero_width(query).strip():
            raise MissingQueryError(message="Step has no query.", step_index=index)
        query = strip_zero_width(query).strip()

        kind = raw.get("type")
        if kind is not None and (
            not isinstance(kind, str) or kind.strip().lower() not in RAW_SELECT_ALIASES
        ):
            raise UnsafeQueryError(
                message=f"Unsupported step type: {kind!r}",
                query=query,
                reason="unsupported_step_type",
                step_index=index,
            )

        verdict = self.safety.check(query)
        if not verdict.ok:
            raise UnsafeQueryError(
                message="Only read-only SELECT queries are allowed.",
                query=query,
                reason=verdict.reason,
                step_index=index,
            )

        if allowed:
            self._check_tables(query, index, allowed)

        return QueryStep(
            query=query,
            bindings=self._bindings(raw.get("bindings"), index),
            kind=StepKind.RAW_SELECT,
        )

    @staticmethod
    def _check_tables(query: str, index: int, allowed: frozenset) -> None:
        try:
            tables = extract_tables(query)
        except AmbiguousSqlError as e:
            raise UnsafeQueryError(
                message="Query could not be tokenized unambiguously.",
                query=query,
                reason=f"ambiguous_literal: {e}",
                step_index=index,
            ) from e
        for table in tables:
            if table not in allowed:
                raise UnknownTableError(
                    message=f"Query references unknown table: {table}",
                    table=table,
                    step_index=index,
                )

    @staticmethod
    def _bindings(raw: Any, index: int) -> Tuple[Scalar, ...]:
        if raw is None:
            return ()
        if not isinstance(raw, list):
            raise InvalidBindingsError(
                message="'bindings' must be a list of scalars.",
                step_index=index,
                extra={"type": type(raw).__name__},
            )
        out: List[Scalar] = []
        for pos, value in enumerate(raw):
            if not _is_scalar(value):
                raise InvalidBindingsError(
                    message=f"Binding #{pos} is not a scalar.",
                    step_index=index,
                    extra={"position": pos, "type": type(value).__name__},
                )
            out.append(value)
        return tuple(out)
