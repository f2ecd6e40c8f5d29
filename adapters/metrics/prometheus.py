from __future__ import annotations

from prometheus_client import Counter, Histogram
from sqlgrep.prom import REGISTRY

from adapters.metrics.base import Metrics, PipelineStatus

# -----------------------------------------------------------------------------
# Stage-level metrics
# -----------------------------------------------------------------------------
stage_duration_ms = Histogram(
    "stage_duration_ms",
    "Duration (ms) of each pipeline stage",
    ["stage"],
    buckets=(1, 2, 5, 10, 20, 50, 100, 200, 500, 1000, 2000, 5000, 10000, 20000, 60000),
    registry=REGISTRY,
)

stage_calls_total = Counter(
    "stage_calls_total",
    "Count of stage calls labeled by stage and ok",
    ["stage", "ok"],
    registry=REGISTRY,
)

stage_errors_total = Counter(
    "stage_errors_total",
    "Count of stage errors labeled by stage and error_code",
    ["stage", "error_code"],
    registry=REGISTRY,
)

# -----------------------------------------------------------------------------
# Plan validation metrics
# -----------------------------------------------------------------------------
plan_rejections_total = Counter(
    "plan_rejections_total",
    "Count of model plans rejected by the validator",
    ["reason"],
    registry=REGISTRY,
)

# -----------------------------------------------------------------------------
# Model gateway / memory
# -----------------------------------------------------------------------------
model_retries_total = Counter(
    "model_retries_total",
    "Count of model call retries after upstream failures",
    ["stage"],
    registry=REGISTRY,
)

memory_failures_total = Counter(
    "memory_failures_total",
    "Conversation memory failures (request continued statelessly)",
    ["operation"],
    registry=REGISTRY,
)

# -----------------------------------------------------------------------------
# Pipeline-level metrics
# -----------------------------------------------------------------------------
pipeline_runs_total = Counter(
    "pipeline_runs_total",
    "Total number of full pipeline runs",
    ["status"],
    registry=REGISTRY,
)

# -----------------------------------------------------------------------------
# Cache metrics (schema metadata)
# -----------------------------------------------------------------------------
cache_events_total = Counter(
    "cache_events_total",
    "Schema metadata cache hit/miss events",
    ["hit"],
    registry=REGISTRY,
)


class PrometheusMetrics(Metrics):
    def observe_stage_duration_ms(self, *, stage: str, dt_ms: float) -> None:
        stage_duration_ms.labels(stage=stage).observe(float(dt_ms))

    def inc_pipeline_run(self, *, status: PipelineStatus) -> None:
        pipeline_runs_total.labels(status=status).inc()

    def inc_stage_call(self, *, stage: str, ok: bool) -> None:
        stage_calls_total.labels(stage=stage, ok=("true" if ok else "false")).inc()

    def inc_stage_error(self, *, stage: str, error_code: str) -> None:
        stage_errors_total.labels(stage=stage, error_code=str(error_code)).inc()

    def inc_plan_rejection(self, *, reason: str) -> None:
        plan_rejections_total.labels(reason=str(reason)).inc()

    def inc_model_retry(self, *, stage: str) -> None:
        model_retries_total.labels(stage=stage).inc()

    def inc_memory_failure(self, *, operation: str) -> None:
        memory_failures_total.labels(operation=operation).inc()


# -----------------------------------------------------------------------------
# Label priming to keep /metrics stable
# -----------------------------------------------------------------------------
for status in ("ok", "refused", "error"):
    pipeline_runs_total.labels(status=status).inc(0)

for hit in ("true", "false"):
    cache_events_total.labels(hit=hit).inc(0)

for stage in ("context", "history", "plan", "validate", "execute", "summarize", "remember"):
    for ok in ("true", "false"):
        stage_calls_total.labels(stage=stage, ok=ok).inc(0)

for reason in (
    "LLM_BAD_OUTPUT",
    "PLAN_MISSING_QUERY",
    "PLAN_UNSAFE_QUERY",
    "PLAN_UNKNOWN_TABLE",
    "PLAN_INVALID_BINDINGS",
    "PLAN_EMPTY",
):
    plan_rejections_total.labels(reason=reason).inc(0)
