from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from sqlgrep.errors.codes import ErrorCode
from sqlgrep.errors.mapper import map_error


@dataclass(eq=False)
class SqlGrepError(Exception):
    """Base class for every failure the engine surfaces to its caller."""

    message: str
    code: ErrorCode = ErrorCode.PIPELINE_CRASH
    extra: Dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return self.message

    @property
    def http_status(self) -> int:
        return map_error(self.code)[0]

    @property
    def retryable(self) -> bool:
        return map_error(self.code)[1]

    def context(self) -> Dict[str, Any]:
        """Operator-facing context (step index, offending table/query, ...)."""
        return dict(self.extra)


# ---------------------------------------------------------------------------
# Configuration / gateway
# ---------------------------------------------------------------------------


@dataclass(eq=False)
class ConfigurationError(SqlGrepError):
    code: ErrorCode = ErrorCode.CONFIGURATION_ERROR


@dataclass(eq=False)
class EmptyRequestError(SqlGrepError):
    code: ErrorCode = ErrorCode.EMPTY_REQUEST


@dataclass(eq=False)
class UpstreamError(SqlGrepError):
    status: Optional[int] = None
    body: str = ""
    code: ErrorCode = ErrorCode.LLM_UPSTREAM_ERROR

    def context(self) -> Dict[str, Any]:
        return {**self.extra, "status": self.status, "body": self.body[:2000]}


# ---------------------------------------------------------------------------
# Plan interpretation (never retried)
# ---------------------------------------------------------------------------


@dataclass(eq=False)
class PlanError(SqlGrepError):
    step_index: Optional[int] = None

    def context(self) -> Dict[str, Any]:
        ctx = dict(self.extra)
        if self.step_index is not None:
            ctx["step_index"] = self.step_index
        return ctx


@dataclass(eq=False)
class MalformedResponseError(PlanError):
    code: ErrorCode = ErrorCode.LLM_BAD_OUTPUT


@dataclass(eq=False)
class MissingQueryError(PlanError):
    code: ErrorCode = ErrorCode.PLAN_MISSING_QUERY


@dataclass(eq=False)
class UnsafeQueryError(PlanError):
    query: str = ""
    reason: str = ""
    code: ErrorCode = ErrorCode.PLAN_UNSAFE_QUERY

    def context(self) -> Dict[str, Any]:
        return {**super().context(), "query": self.query, "reason": self.reason}


@dataclass(eq=False)
class UnknownTableError(PlanError):
    table: str = ""
    code: ErrorCode = ErrorCode.PLAN_UNKNOWN_TABLE

    def context(self) -> Dict[str, Any]:
        return {**super().context(), "table": self.table}


@dataclass(eq=False)
class InvalidBindingsError(PlanError):
    code: ErrorCode = ErrorCode.PLAN_INVALID_BINDINGS


@dataclass(eq=False)
class EmptyPlanError(PlanError):
    code: ErrorCode = ErrorCode.PLAN_EMPTY


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


@dataclass(eq=False)
class QueryExecutionError(SqlGrepError):
    query: str = ""
    step_index: Optional[int] = None
    code: ErrorCode = ErrorCode.DB_EXECUTION_ERROR

    def context(self) -> Dict[str, Any]:
        return {**self.extra, "query": self.query, "step_index": self.step_index}


PLAN_ERRORS = (
    MalformedResponseError,
    MissingQueryError,
    UnsafeQueryError,
    UnknownTableError,
    InvalidBindingsError,
    EmptyPlanError,
)
