import json

import pytest

from adapters.db.factory import build_adapter
from adapters.metrics.noop import NoOpMetrics
from conftest import FakeGateway, chat, plan_response
from sqlgrep.config import BaseConfig
from sqlgrep.errors.exceptions import (
    EmptyRequestError,
    MalformedResponseError,
    QueryExecutionError,
    UnknownTableError,
    UnsafeQueryError,
    UpstreamError,
)
from sqlgrep.memory import ConversationStore
from sqlgrep.pipeline import Pipeline
from sqlgrep.schema.catalog import AdapterSchemaCatalog
from sqlgrep.types import TableMetadata


class RecordingMetrics(NoOpMetrics):
    def __init__(self):
        self.runs = []
        self.rejections = []
        self.retries = []
        self.memory_failures = []
        self.stage_calls = []

    def inc_pipeline_run(self, *, status):
        self.runs.append(status)

    def inc_plan_rejection(self, *, reason):
        self.rejections.append(reason)

    def inc_model_retry(self, *, stage):
        self.retries.append(stage)

    def inc_memory_failure(self, *, operation):
        self.memory_failures.append(operation)

    def inc_stage_call(self, *, stage, ok):
        self.stage_calls.append((stage, ok))


def _config(db_path, **extra):
    raw = {
        "connections": {"main": {"kind": "sqlite", "path": db_path}},
        "connection": "main",
        "contexts": {"default": {}},
    }
    raw.update(extra)
    return BaseConfig.from_mapping(raw)


def _pipeline(db_path, gateway, *, memory=None, metrics=None, adapter_factory=None, **extra):
    return Pipeline(
        gateway=gateway,
        base_config=_config(db_path, **extra),
        catalog=AdapterSchemaCatalog(cache_ttl=0),
        adapter_factory=adapter_factory or build_adapter,
        memory=memory,
        metrics=metrics or RecordingMetrics(),
        model_retry_backoff=0,
    )


def test_users_end_to_end_with_debug(users_db):
    gateway = FakeGateway(
        plan_response(
            [{"type": "raw", "query": "select name from users where status = ?", "bindings": ["active"]}],
            summary="Look up active users.",
        ),
        chat("1 active user: Alice."),
    )
    metrics = RecordingMetrics()
    answer = _pipeline(users_db, gateway, metrics=metrics).answer_question(
        "Who is active?", debug=True
    )

    assert answer.summary == "1 active user: Alice."
    payload = answer.to_payload(debug=True)
    assert payload["steps"] == [
        {
            "query": "select name from users where status = ?",
            "bindings": ["active"],
            "results": [{"name": "Alice"}],
        }
    ]
    assert payload["results"] == [[{"name": "Alice"}]]
    queries = payload["debug"]["queries"]
    assert [q["query"] for q in queries] == ["select name from users where status = ?"]
    assert queries[0]["bindings"] == ["active"]
    assert isinstance(queries[0]["time"], float)
    assert metrics.runs == ["ok"]

    # schema context reached the planning prompt; results reached the second call
    planning_system = gateway.calls[0][0]["content"]
    assert "Table users" in planning_system
    assert gateway.calls[0][-1] == {"role": "user", "content": "Who is active?"}
    assert '"Alice"' in gateway.calls[1][-1]["content"]


def test_without_debug_steps_are_kept_but_no_telemetry(users_db):
    gateway = FakeGateway(
        plan_response([{"query": "select count(*) as n from users"}]),
        chat("There are 2 users."),
    )
    answer = _pipeline(users_db, gateway).answer_question("How many users?")
    payload = answer.to_payload(debug=False)
    assert payload["results"] == [[{"n": 2}]]
    assert "debug" not in payload
    assert answer.executed[0].queries == ()


def test_summary_is_used_verbatim(users_db):
    text = '{"not": "parsed"}'
    gateway = FakeGateway(plan_response([{"query": "select 1 from users"}]), chat(text))
    assert _pipeline(users_db, gateway).answer_question("q").summary == text


def test_refusal_path_is_summary_only_and_remembered(users_db, tmp_path):
    memory = ConversationStore(str(tmp_path / "mem.sqlite"))
    gateway = FakeGateway(plan_response([], summary="I can only answer questions about users."))
    metrics = RecordingMetrics()
    pipeline = _pipeline(users_db, gateway, memory=memory, metrics=metrics)

    answer = pipeline.answer_question("What's the weather?", conversation_id="c1")

    assert answer.refused
    assert answer.to_payload(debug=False) == {
        "summary": "I can only answer questions about users."
    }
    assert len(gateway.calls) == 1
    assert [m.content for m in memory.get_messages("c1")] == [
        "What's the weather?",
        "I can only answer questions about users.",
    ]
    assert metrics.runs == ["refused"]


def test_refusal_with_debug_has_empty_steps(users_db):
    gateway = FakeGateway(plan_response([], summary="No."))
    payload = _pipeline(users_db, gateway).answer_question("q", debug=True).to_payload(debug=True)
    assert payload == {"summary": "No.", "steps": [], "results": [], "debug": {"queries": []}}


def test_unknown_table_never_touches_the_database(users_db):
    def no_db(descriptor):
        raise AssertionError("adapter must not be built for a rejected plan")

    gateway = FakeGateway(plan_response([{"query": "select * from secrets"}]))
    metrics = RecordingMetrics()
    pipeline = _pipeline(users_db, gateway, metrics=metrics, adapter_factory=no_db)

    with pytest.raises(UnknownTableError) as ei:
        pipeline.answer_question("show secrets")
    assert ei.value.table == "secrets"
    assert metrics.rejections == ["PLAN_UNKNOWN_TABLE"]
    assert metrics.runs == ["error"]


def test_excluded_tables_are_unknown(users_db):
    gateway = FakeGateway(plan_response([{"query": "select * from orders"}]))
    pipeline = _pipeline(users_db, gateway, exclude_tables=["orders"])
    with pytest.raises(UnknownTableError):
        pipeline.answer_question("orders?")
    assert "Table orders" not in gateway.calls[0][0]["content"]


def test_configured_metadata_reaches_prompt(users_db):
    gateway = FakeGateway(plan_response([], summary="ok"))
    pipeline = _pipeline(
        users_db,
        gateway,
        metadata=[{"name": "users", "model": "App.User", "description": "Registered users"}],
    )
    pipeline.answer_question("q")
    assert "Table users (Model: App.User) - Registered users" in gateway.calls[0][0]["content"]


def test_unsafe_plan_is_not_retried(users_db):
    gateway = FakeGateway(plan_response([{"query": "delete from users"}]))
    with pytest.raises(UnsafeQueryError):
        _pipeline(users_db, gateway).answer_question("delete everything")
    assert len(gateway.calls) == 1


def test_mid_plan_failure_aborts(users_db):
    gateway = FakeGateway(
        plan_response(
            [
                {"query": "select * from users"},
                {"query": "select missing_column from orders"},
            ]
        ),
    )
    with pytest.raises(QueryExecutionError) as ei:
        _pipeline(users_db, gateway).answer_question("q")
    assert ei.value.step_index == 1
    assert len(gateway.calls) == 1


def test_upstream_error_is_retried_once(users_db):
    gateway = FakeGateway(
        UpstreamError(message="boom", status=503),
        plan_response([], summary="fine"),
    )
    metrics = RecordingMetrics()
    answer = _pipeline(users_db, gateway, metrics=metrics).answer_question("q")
    assert answer.summary == "fine"
    assert metrics.retries == ["plan"]


def test_upstream_error_after_retries_propagates(users_db):
    gateway = FakeGateway(
        UpstreamError(message="boom", status=503),
        UpstreamError(message="boom", status=503),
    )
    with pytest.raises(UpstreamError):
        _pipeline(users_db, gateway).answer_question("q")
    assert len(gateway.calls) == 2


def test_interpretation_without_content_is_malformed(users_db):
    gateway = FakeGateway(plan_response([{"query": "select 1 from users"}]), {"choices": []})
    with pytest.raises(MalformedResponseError):
        _pipeline(users_db, gateway).answer_question("q")


@pytest.mark.parametrize("question", ["", "   ", None])
def test_empty_question(users_db, question):
    gateway = FakeGateway()
    with pytest.raises(EmptyRequestError):
        _pipeline(users_db, gateway).answer_question(question)
    assert gateway.calls == []


def test_history_is_sent_before_the_question(users_db, tmp_path):
    memory = ConversationStore(str(tmp_path / "mem.sqlite"))
    memory.append_exchange("c1", "How many users?", "There are 2 users.")
    gateway = FakeGateway(plan_response([], summary="ok"))

    _pipeline(users_db, gateway, memory=memory).answer_question(
        "And orders?", conversation_id="c1"
    )

    roles = [(m["role"], m["content"]) for m in gateway.calls[0][1:]]
    assert roles == [
        ("user", "How many users?"),
        ("assistant", "There are 2 users."),
        ("user", "And orders?"),
    ]


def test_memory_failure_degrades_to_stateless(users_db, tmp_path):
    blocker = tmp_path / "not_a_dir"
    blocker.write_text("x")
    memory = ConversationStore(str(blocker / "mem.sqlite"))
    gateway = FakeGateway(plan_response([], summary="still answered"))
    metrics = RecordingMetrics()

    answer = _pipeline(users_db, gateway, memory=memory, metrics=metrics).answer_question(
        "q", conversation_id="c1"
    )
    assert answer.summary == "still answered"
    assert metrics.memory_failures == ["read", "write"]


def test_context_selects_connection(users_db, tmp_path):
    from conftest import make_users_db

    other = make_users_db(tmp_path / "other.db")
    gateway = FakeGateway(
        plan_response([{"query": "select count(*) as n from users"}]),
        chat("done"),
    )
    seen = []

    def factory(descriptor):
        seen.append(descriptor["path"])
        return build_adapter(descriptor)

    pipeline = _pipeline(
        users_db,
        gateway,
        adapter_factory=factory,
        connections={
            "main": {"kind": "sqlite", "path": users_db},
            "other": {"kind": "sqlite", "path": other},
        },
        contexts={"other": {"connection": "other"}},
    )
    pipeline.answer_question("q", context_name="other")
    assert seen == [other]


def test_stage_calls_are_recorded(users_db):
    gateway = FakeGateway(plan_response([{"query": "select 1 from users"}]), chat("ok"))
    metrics = RecordingMetrics()
    _pipeline(users_db, gateway, metrics=metrics).answer_question("q")
    assert [s for s, ok in metrics.stage_calls if ok] == [
        "context",
        "history",
        "plan",
        "validate",
        "execute",
        "summarize",
        "remember",
    ]


def test_answer_traces(users_db):
    gateway = FakeGateway(plan_response([], summary="ok"))
    answer = _pipeline(users_db, gateway).answer_question("q")
    assert [t["stage"] for t in answer.traces] == [
        "context",
        "history",
        "plan",
        "validate",
        "remember",
    ]
    json.dumps(answer.traces)


def test_fake_catalog_is_used(users_db):
    class StaticCatalog:
        def load(self, database, exclude_tables=()):
            return [TableMetadata(name="widgets")]

    gateway = FakeGateway(plan_response([{"query": "select * from users"}]))
    pipeline = Pipeline(
        gateway=gateway,
        base_config=_config(users_db),
        catalog=StaticCatalog(),
        adapter_factory=build_adapter,
    )
    with pytest.raises(UnknownTableError):
        pipeline.answer_question("q")
    assert "Table widgets" in gateway.calls[0][0]["content"]
