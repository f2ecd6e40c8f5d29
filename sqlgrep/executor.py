from __future__ import annotations

import logging
import sqlite3
from typing import Any, List, Sequence, Tuple

from adapters.db.base import DBAdapter
from sqlgrep.errors.codes import ErrorCode
from sqlgrep.errors.exceptions import QueryExecutionError
from sqlgrep.types import ExecutedStep, QueryLogEntry, QueryStep, Row, StepKind

log = logging.getLogger(__name__)


def _error_code(exc: BaseException) -> ErrorCode:
    if isinstance(exc, TimeoutError):
        return ErrorCode.DB_TIMEOUT
    if isinstance(exc, sqlite3.OperationalError) and "locked" in str(exc).lower():
        return ErrorCode.DB_LOCKED
    return ErrorCode.DB_EXECUTION_ERROR


def rows_to_dicts(rows: Sequence[Sequence[Any]], cols: Sequence[str]) -> Tuple[Row, ...]:
    return tuple(dict(zip(cols, row)) for row in rows)


class QueryExecutor:
    name = "executor"

    def execute(
        self,
        step: QueryStep,
        adapter: DBAdapter,
        *,
        capture_telemetry: bool = False,
        step_index: int = 0,
    ) -> ExecutedStep:
        query_log: List[QueryLogEntry] = []
        try:
            if step.kind is StepKind.RAW_SELECT:
                rows, cols = adapter.execute(
                    step.query,
                    step.bindings,
                    query_log=query_log if capture_telemetry else None,
                )
            else:
                raise AssertionError(f"unhandled step kind: {step.kind!r}")
        except AssertionError:
            raise
        except Exception as e:
            code = _error_code(e)
            log.warning(
                "Query execution failed",
                extra={
                    "step_index": step_index,
                    "adapter": adapter.name,
                    "error_type": type(e).__name__,
                    "code": code.value,
                },
            )
            raise QueryExecutionError(
                message=f"Query #{step_index} failed: {e}",
                query=step.query,
                step_index=step_index,
                code=code,
                extra={"error_type": type(e).__name__},
            ) from e

        return ExecutedStep(
            step=step,
            results=rows_to_dicts(rows, cols),
            queries=tuple(query_log),
        )
