from __future__ import annotations

import logging
import sqlite3
import time
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from adapters.db.base import DBAdapter
from adapters.llm.base import ModelGateway
from adapters.metrics.base import Metrics
from adapters.metrics.noop import NoOpMetrics
from sqlgrep.config import BaseConfig, EffectiveConfig, resolve, resolve_database
from sqlgrep.errors.codes import ErrorCode
from sqlgrep.errors.exceptions import (
    PLAN_ERRORS,
    EmptyRequestError,
    MalformedResponseError,
    SqlGrepError,
    UpstreamError,
)
from sqlgrep.executor import QueryExecutor
from sqlgrep.interpreter import PlanInterpreter, response_content
from sqlgrep.memory import ConversationStore
from sqlgrep.prompts import (
    MAX_RESULT_ROWS_IN_PROMPT,
    build_interpretation_messages,
    build_planning_messages,
)
from sqlgrep.schema.catalog import SchemaCatalog
from sqlgrep.schema.metadata import known_tables, merge_tables, parse_tables
from sqlgrep.schema.render import render_schema_context
from sqlgrep.types import (
    Answer,
    ConversationMessage,
    ExecutedStep,
    QueryPlan,
    TableMetadata,
)

log = logging.getLogger(__name__)

# storage errors that degrade memory to stateless behaviour
_MEMORY_ERRORS = (sqlite3.Error, OSError)


class Pipeline:
    """
    SQLGrep question pipeline:
      context → history → plan (model) → validate → execute → summarize (model) → remember.

    A plan with no steps and a summary is a refusal: it skips execution and the
    second model call. Any failure aborts the request with the originating
    error; memory failures are logged and ignored.
    """

    def __init__(
        self,
        *,
        gateway: ModelGateway,
        base_config: BaseConfig,
        catalog: SchemaCatalog,
        adapter_factory: Callable[[Mapping[str, Any]], DBAdapter],
        interpreter: Optional[PlanInterpreter] = None,
        executor: Optional[QueryExecutor] = None,
        memory: Optional[ConversationStore] = None,
        metrics: Optional[Metrics] = None,
        system_prompt: Optional[str] = None,
        answer_format: Optional[str] = None,
        max_result_rows: int = MAX_RESULT_ROWS_IN_PROMPT,
        model_max_retries: int = 1,
        model_retry_backoff: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.gateway = gateway
        self.base_config = base_config
        self.catalog = catalog
        self.adapter_factory = adapter_factory
        self.interpreter = interpreter or PlanInterpreter()
        self.executor = executor or QueryExecutor()
        self.memory = memory
        self.metrics: Metrics = metrics or NoOpMetrics()
        self.system_prompt = system_prompt
        self.answer_format = answer_format
        self.max_result_rows = max_result_rows
        self.model_max_retries = max(0, int(model_max_retries))
        self.model_retry_backoff = float(model_retry_backoff)
        self._sleep = sleep

    # ---------------------------- helpers ----------------------------
    @staticmethod
    def _mk_trace(
        stage: str,
        duration_ms: float,
        summary: str,
        notes: Optional[Dict[str, Any]] = None,
    ) -> dict:
        return {
            "stage": stage,
            "duration_ms": float(duration_ms),
            "summary": summary,
            "notes": notes or {},
        }

    def _run_stage(self, stage: str, traces: List[dict], fn: Callable[..., Any], *args):
        """Run one stage with timing, metrics and a trace entry. Errors propagate."""
        t0 = time.perf_counter()
        try:
            out = fn(*args)
        except Exception as e:
            dt = (time.perf_counter() - t0) * 1000.0
            code = e.code.value if isinstance(e, SqlGrepError) else ErrorCode.PIPELINE_CRASH.value
            self.metrics.observe_stage_duration_ms(stage=stage, dt_ms=dt)
            self.metrics.inc_stage_call(stage=stage, ok=False)
            self.metrics.inc_stage_error(stage=stage, error_code=code)
            traces.append(self._mk_trace(stage, dt, "failed", {"error_code": code}))
            raise
        dt = (time.perf_counter() - t0) * 1000.0
        self.metrics.observe_stage_duration_ms(stage=stage, dt_ms=dt)
        self.metrics.inc_stage_call(stage=stage, ok=True)
        traces.append(self._mk_trace(stage, dt, "ok"))
        return out

    def _call_model(self, stage: str, messages: List[Dict[str, str]]) -> Dict[str, Any]:
        """Gateway call with bounded retry on upstream failures only."""
        attempt = 0
        while True:
            try:
                return self.gateway.complete(messages)
            except UpstreamError as e:
                if attempt >= self.model_max_retries:
                    raise
                delay = self.model_retry_backoff * (2**attempt)
                attempt += 1
                self.metrics.inc_model_retry(stage=stage)
                log.warning(
                    "Model call failed; retrying",
                    extra={"stage": stage, "attempt": attempt, "status": e.status},
                )
                if delay > 0:
                    self._sleep(delay)

    # ---------------------------- stages ----------------------------
    def _load_context(
        self, config: EffectiveConfig
    ) -> Tuple[Dict[str, Any], Tuple[TableMetadata, ...]]:
        database = resolve_database(config)
        loaded = self.catalog.load(database, config.exclude_tables)
        configured = parse_tables(config.metadata)
        tables = merge_tables(loaded, configured, config.exclude_tables)
        return database, tables

    def _load_history(self, conversation_id: Optional[str]) -> List[ConversationMessage]:
        if self.memory is None or not conversation_id:
            return []
        try:
            return self.memory.get_messages(conversation_id)
        except _MEMORY_ERRORS as e:
            self.metrics.inc_memory_failure(operation="read")
            log.warning(
                "Conversation memory unavailable; continuing without history",
                extra={"error_type": type(e).__name__, "error": str(e)},
            )
            return []

    def _remember(self, conversation_id: Optional[str], question: str, summary: str) -> None:
        if self.memory is None or not conversation_id:
            return
        try:
            self.memory.append_exchange(conversation_id, question, summary)
        except _MEMORY_ERRORS as e:
            self.metrics.inc_memory_failure(operation="write")
            log.warning(
                "Could not store conversation exchange",
                extra={"error_type": type(e).__name__, "error": str(e)},
            )

    def _interpret(self, raw: Dict[str, Any], allowed: frozenset) -> QueryPlan:
        try:
            return self.interpreter.interpret(raw, allowed)
        except PLAN_ERRORS as e:
            self.metrics.inc_plan_rejection(reason=e.code.value)
            log.info(
                "Plan rejected",
                extra={"code": e.code.value, **e.context()},
            )
            raise

    def _execute_plan(
        self, plan: QueryPlan, database: Mapping[str, Any], debug: bool
    ) -> Tuple[ExecutedStep, ...]:
        adapter = self.adapter_factory(database)
        return tuple(
            self.executor.execute(step, adapter, capture_telemetry=debug, step_index=i)
            for i, step in enumerate(plan.steps)
        )

    def _summarize(
        self, question: str, plan: QueryPlan, executed: Tuple[ExecutedStep, ...]
    ) -> str:
        messages = build_interpretation_messages(
            question,
            plan.summary,
            executed,
            answer_format=self.answer_format,
            max_rows=self.max_result_rows,
        )
        raw = self._call_model("summarize", messages)
        content = response_content(raw)
        if content is None:
            raise MalformedResponseError(
                message="Interpretation response has no message content."
            )
        return content

    # ---------------------------- main entry ----------------------------
    def answer_question(
        self,
        question: str,
        *,
        debug: bool = False,
        conversation_id: Optional[str] = None,
        context_name: Optional[str] = "default",
    ) -> Answer:
        question = (question or "").strip()
        if not question:
            raise EmptyRequestError(message="Question must not be empty.")
        conversation_id = (conversation_id or "").strip() or None

        traces: List[dict] = []
        try:
            answer = self._answer(question, debug, conversation_id, context_name, traces)
        except Exception:
            self.metrics.inc_pipeline_run(status="error")
            raise
        self.metrics.inc_pipeline_run(status="refused" if answer.refused else "ok")
        return answer

    def _answer(
        self,
        question: str,
        debug: bool,
        conversation_id: Optional[str],
        context_name: Optional[str],
        traces: List[dict],
    ) -> Answer:
        config = resolve(self.base_config, context_name)
        database, tables = self._run_stage("context", traces, self._load_context, config)

        history = self._run_stage("history", traces, self._load_history, conversation_id)

        messages = build_planning_messages(
            question,
            render_schema_context(tables),
            history,
            system_prompt=self.system_prompt,
        )
        raw = self._run_stage("plan", traces, self._call_model, "plan", messages)
        plan = self._run_stage(
            "validate", traces, self._interpret, raw, known_tables(tables)
        )

        if plan.is_refusal:
            summary = plan.summary or ""
            self._run_stage("remember", traces, self._remember, conversation_id, question, summary)
            return Answer(summary=summary, plan=plan, traces=traces)

        executed = self._run_stage(
            "execute", traces, self._execute_plan, plan, database, debug
        )
        summary = self._run_stage("summarize", traces, self._summarize, question, plan, executed)
        self._run_stage("remember", traces, self._remember, conversation_id, question, summary)

        log.info(
            "Answered question",
            extra={
                "context": config.context_name,
                "steps": len(plan.steps),
                "rows": sum(len(e.results) for e in executed),
            },
        )
        return Answer(summary=summary, plan=plan, executed=executed, traces=traces)
