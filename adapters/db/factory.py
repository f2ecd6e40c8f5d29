from __future__ import annotations

from typing import Any, Mapping

from adapters.db.base import DBAdapter
from adapters.db.postgres_adapter import PostgresAdapter
from adapters.db.sqlite_adapter import SQLiteAdapter
from sqlgrep.errors.exceptions import ConfigurationError


def _require_str(value: Any, *, name: str) -> str:
    if value is None or not isinstance(value, str) or not value.strip():
        raise ConfigurationError(f"Config {name} must be a non-empty string")
    return value.strip()


def build_adapter(descriptor: Mapping[str, Any], *, timeout: float = 10.0) -> DBAdapter:
    """
    Build a DB adapter from a database descriptor.

    {"kind": "sqlite", "path": "data/demo.db"}
    {"kind": "postgres", "dsn": "dbname=demo ...", "schema": "public"}
    """
    kind = str(descriptor.get("kind") or "sqlite").lower()
    timeout = float(descriptor.get("timeout", timeout))
    if kind == "sqlite":
        path = _require_str(
            descriptor.get("path") or descriptor.get("dsn"), name="database.path"
        )
        return SQLiteAdapter(path, timeout=timeout)
    if kind in ("postgres", "postgresql"):
        dsn = _require_str(descriptor.get("dsn"), name="database.dsn")
        schema = str(descriptor.get("schema") or "public")
        return PostgresAdapter(dsn, timeout=timeout, schema=schema)
    raise ConfigurationError(f"Unknown adapter kind: {kind}", extra={"kind": kind})
