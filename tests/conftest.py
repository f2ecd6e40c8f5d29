import json
import os
import sqlite3
from typing import Any, Dict, List, Optional

import pytest
from dotenv import load_dotenv

# Load .env once for tests
ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
ENV_PATH = os.path.join(ROOT, ".env")
load_dotenv(ENV_PATH)

# Never talk to a real endpoint from the unit tests.
os.environ.setdefault("SQLGREP_API_KEY", "DUMMY_TEST_KEY")
os.environ.setdefault("SQLGREP_BASE_URL", "http://localhost:9999")

from app.main import app  # noqa: E402
from app.routers import ask  # noqa: E402


def chat(content: Optional[str]) -> Dict[str, Any]:
    """A raw chat-completions response carrying `content`."""
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


def plan_response(steps: List[Dict[str, Any]], summary: Optional[str] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"steps": steps}
    if summary is not None:
        body["summary"] = summary
    return chat(json.dumps(body))


class FakeGateway:
    """Scripted ModelGateway: pops queued responses, records every request."""

    PROVIDER_ID = "fake"

    def __init__(self, *responses: Any) -> None:
        self.responses = list(responses)
        self.calls: List[List[Dict[str, str]]] = []

    def complete(self, messages):
        self.calls.append(list(messages))
        if not self.responses:
            raise AssertionError("FakeGateway ran out of responses")
        nxt = self.responses.pop(0)
        if isinstance(nxt, Exception):
            raise nxt
        return nxt


def make_users_db(path) -> str:
    """users(id, name, status) with Alice and Bob; orders referencing users."""
    conn = sqlite3.connect(str(path))
    try:
        conn.execute("CREATE TABLE users(id INTEGER PRIMARY KEY, name TEXT, status TEXT);")
        conn.execute(
            "CREATE TABLE orders(id INTEGER PRIMARY KEY, "
            "user_id INTEGER REFERENCES users(id), total REAL);"
        )
        conn.execute("INSERT INTO users VALUES (1, 'Alice', 'active');")
        conn.execute("INSERT INTO users VALUES (2, 'Bob', 'suspended');")
        conn.execute("INSERT INTO orders VALUES (10, 1, 9.5);")
        conn.commit()
    finally:
        conn.close()
    return str(path)


@pytest.fixture
def users_db(tmp_path) -> str:
    return make_users_db(tmp_path / "users.db")


@pytest.fixture(autouse=True)
def disable_api_key_auth():
    """Disable X-API-Key auth for tests."""
    prev = app.dependency_overrides.get(ask.require_api_key)
    app.dependency_overrides[ask.require_api_key] = lambda: None
    try:
        yield
    finally:
        if prev is None:
            app.dependency_overrides.pop(ask.require_api_key, None)
        else:
            app.dependency_overrides[ask.require_api_key] = prev
