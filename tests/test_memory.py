import sqlite3
from concurrent.futures import ThreadPoolExecutor

import pytest

from sqlgrep.errors.exceptions import ConfigurationError
from sqlgrep.memory import ConversationStore


@pytest.fixture
def store(tmp_path):
    return ConversationStore(str(tmp_path / "memory.sqlite"), max_messages=4, ttl_days=10)


def _roles(messages):
    return [(m.role, m.content) for m in messages]


def test_append_and_read_back_in_order(store):
    store.append_exchange("c1", "How many users?", "There are 2 users.")
    store.append_exchange("c1", "And active ones?", "1 is active.")

    assert _roles(store.get_messages("c1")) == [
        ("user", "How many users?"),
        ("assistant", "There are 2 users."),
        ("user", "And active ones?"),
        ("assistant", "1 is active."),
    ]
    assert store.get_messages("other") == []


def test_trims_to_max_messages(store):
    for i in range(5):
        store.append_exchange("c1", f"q{i}", f"a{i}")

    assert _roles(store.get_messages("c1")) == [
        ("user", "q3"),
        ("assistant", "a3"),
        ("user", "q4"),
        ("assistant", "a4"),
    ]
    with sqlite3.connect(store.db_path) as conn:
        (count,) = conn.execute(
            f"SELECT COUNT(*) FROM {store.table} WHERE context = ?", ("c1",)
        ).fetchone()
    assert count == 4


def test_trimming_is_independent_of_batching(tmp_path):
    a = ConversationStore(str(tmp_path / "a.sqlite"), max_messages=3)
    b = ConversationStore(str(tmp_path / "b.sqlite"), max_messages=3)

    for i in range(6):
        a.append_exchange("c", f"q{i}", f"a{i}")
    for i in range(6):
        b.append_exchange("c", f"q{i}", "")
        b.append_exchange("c", "", f"a{i}")

    assert _roles(a.get_messages("c")) == _roles(b.get_messages("c"))
    assert len(a.get_messages("c")) == 3


def test_blank_parts_are_skipped(store):
    store.append_exchange("c1", "   ", "answer only")
    store.append_exchange("c1", "", "")
    assert _roles(store.get_messages("c1")) == [("assistant", "answer only")]


@pytest.mark.parametrize("cid", [None, "", "   "])
def test_blank_conversation_id_is_stateless(store, cid):
    store.append_exchange(cid, "q", "a")
    assert store.get_messages(cid) == []
    assert store.clear(cid) == 0


def test_conversation_id_is_trimmed(store):
    store.append_exchange("  c1 ", "q", "a")
    assert len(store.get_messages("c1")) == 2


def test_expired_messages_are_purged(store, monkeypatch):
    now = 1_000_000.0
    monkeypatch.setattr(store, "_now", lambda: now)
    store.append_exchange("c1", "old q", "old a")

    now += 11 * 86_400
    store.append_exchange("c1", "new q", "new a")
    assert _roles(store.get_messages("c1")) == [("user", "new q"), ("assistant", "new a")]


def test_ttl_zero_disables_expiry(tmp_path, monkeypatch):
    store = ConversationStore(str(tmp_path / "m.sqlite"), ttl_days=0)
    now = 0.0
    monkeypatch.setattr(store, "_now", lambda: now)
    store.append_exchange("c1", "q", "a")
    now = 10_000 * 86_400.0
    assert len(store.get_messages("c1")) == 2


def test_limits_are_clamped(tmp_path):
    store = ConversationStore(str(tmp_path / "m.sqlite"), max_messages=0, ttl_days=-3)
    assert store.max_messages == 1
    assert store.ttl_days == 0


def test_invalid_table_name_is_rejected(tmp_path):
    with pytest.raises(ConfigurationError):
        ConversationStore(str(tmp_path / "m.sqlite"), table="x; drop table users")


def test_clear(store):
    store.append_exchange("c1", "q", "a")
    store.append_exchange("c2", "q", "a")
    assert store.clear("c1") == 2
    assert store.get_messages("c1") == []
    assert len(store.get_messages("c2")) == 2


def test_concurrent_appends_never_exceed_limit(store):
    def append(i):
        store.append_exchange("shared", f"q{i}", f"a{i}")
        return len(store.get_messages("shared"))

    with ThreadPoolExecutor(max_workers=8) as pool:
        sizes = list(pool.map(append, range(40)))

    assert all(0 < s <= store.max_messages for s in sizes)
    messages = store.get_messages("shared")
    assert len(messages) == store.max_messages
    # exchanges stay whole: user/assistant alternate
    assert [m.role for m in messages] == ["user", "assistant"] * 2


@pytest.mark.parametrize("path", [":memory:", "", "  "])
def test_in_memory_path_is_rejected(path):
    with pytest.raises(ConfigurationError):
        ConversationStore(path)
