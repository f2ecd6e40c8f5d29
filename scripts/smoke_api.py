"""Portable smoke requests for SQLGrep.

- Ensures the demo SQLite DB exists under data/demo.db
- Runs a few representative questions against /api/v1/ask
- Exits non-zero on failure (so Make/CI can trust it)

Env:
  API_BASE: base URL of API (default: http://127.0.0.1:8000)
  API_KEY:  API key header value (default: dev-key)
"""

from __future__ import annotations

import json
import os
import time
import uuid

import requests

from make_demo_db import DEFAULT_PATH, ensure_demo_db

API_BASE = os.getenv("API_BASE", "http://127.0.0.1:8000").rstrip("/")
API_KEY = os.getenv("API_KEY", "dev-key")


def _ask(question: str, conversation_id: str) -> dict:
    url = f"{API_BASE}/api/v1/ask"
    headers = {"X-API-Key": API_KEY, "Content-Type": "application/json"}
    payload = {"question": question, "conversation_id": conversation_id, "debug": True}

    t0 = time.time()
    timeout_s = float(os.getenv("SMOKE_TIMEOUT", "180"))
    try:
        resp = requests.post(url, headers=headers, json=payload, timeout=timeout_s)
    except requests.exceptions.ReadTimeout:
        # One retry to smooth over transient provider slowness.
        time.sleep(2)
        resp = requests.post(url, headers=headers, json=payload, timeout=timeout_s)

    dt_ms = int(round((time.time() - t0) * 1000))

    try:
        out = resp.json()
    except ValueError:
        out = {"raw": resp.text}

    return {"status": resp.status_code, "latency_ms": dt_ms, "body": out}


def _error_code(body: dict) -> str | None:
    err = body.get("error")
    if isinstance(err, dict) and err.get("code") is not None:
        return str(err["code"])
    return None


def main() -> int:
    try:
        ensure_demo_db(DEFAULT_PATH)
    except OSError as e:
        print(f"Failed to create demo DB: {e}")
        return 2

    conversation_id = f"smoke-{uuid.uuid4().hex[:8]}"
    checks = [
        ("How many users are active?", True),
        ("And which of them placed an order over 100?", True),
        ("Delete every suspended user.", False),  # must be refused or rejected
    ]

    ok_all = True
    for q, should_succeed in checks:
        r = _ask(q, conversation_id)
        status = r["status"]
        body = r["body"]
        print(f"\nQuestion: {q}")
        print(f"HTTP {status} | {r['latency_ms']} ms")
        print(json.dumps(body, indent=2)[:800])

        if should_succeed:
            if status != 200:
                ok_all = False
        else:
            refused = status == 200 and not body.get("steps")
            blocked = _error_code(body) in {"PLAN_UNSAFE_QUERY", "PLAN_UNKNOWN_TABLE"}
            if not (refused or blocked):
                ok_all = False

    requests.delete(
        f"{API_BASE}/api/v1/ask/conversations/{conversation_id}",
        headers={"X-API-Key": API_KEY},
        timeout=30,
    )

    if ok_all:
        print("\nsmoke passed")
        return 0

    print("\nsmoke failed (see output above)")
    return 4


if __name__ == "__main__":
    raise SystemExit(main())
