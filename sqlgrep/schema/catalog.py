from __future__ import annotations

import json
import logging
import threading
import time
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Protocol, Tuple

from adapters.db.base import DBAdapter
from adapters.db.factory import build_adapter
from adapters.metrics.prometheus import cache_events_total
from sqlgrep.types import TableMetadata

log = logging.getLogger(__name__)


class SchemaCatalog(Protocol):
    def load(
        self, database: Mapping[str, Any], exclude_tables: Iterable[str] = ()
    ) -> List[TableMetadata]:
        """Return table/column/relationship metadata for the given database."""


class MetadataCache:
    """
    Tiny in-memory TTL cache for introspected schema metadata.
    Keyed by the database descriptor and the exclude list.
    """

    def __init__(self, ttl: float = 300.0) -> None:
        self.ttl = ttl
        self._store: Dict[str, Tuple[float, Tuple[TableMetadata, ...]]] = {}
        self._lock = threading.Lock()

    def _gc(self, now: float) -> None:
        """Remove expired entries based on the configured TTL."""
        expired_keys = [
            key for key, (ts, _) in self._store.items() if now - ts > self.ttl
        ]
        for key in expired_keys:
            del self._store[key]

    def get(self, key: str) -> Optional[Tuple[TableMetadata, ...]]:
        now = time.time()
        with self._lock:
            self._gc(now)
            entry = self._store.get(key)
        if entry is None:
            cache_events_total.labels(hit="false").inc()
            return None
        cache_events_total.labels(hit="true").inc()
        return entry[1]

    def set(self, key: str, tables: Tuple[TableMetadata, ...]) -> None:
        with self._lock:
            self._store[key] = (time.time(), tables)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()


def cache_key(database: Mapping[str, Any], exclude_tables: Iterable[str]) -> str:
    return json.dumps(
        {"database": dict(database), "exclude": sorted(set(exclude_tables))},
        sort_keys=True,
        default=str,
    )


class AdapterSchemaCatalog:
    """SchemaCatalog that introspects through the DB adapters."""

    def __init__(
        self,
        *,
        adapter_factory: Callable[[Mapping[str, Any]], DBAdapter] = build_adapter,
        cache_ttl: float = 300.0,
    ) -> None:
        self.adapter_factory = adapter_factory
        self.cache: Optional[MetadataCache] = (
            MetadataCache(ttl=cache_ttl) if cache_ttl > 0 else None
        )

    def load(
        self, database: Mapping[str, Any], exclude_tables: Iterable[str] = ()
    ) -> List[TableMetadata]:
        exclude = tuple(exclude_tables)
        key = cache_key(database, exclude)
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                return list(cached)

        adapter = self.adapter_factory(database)
        t0 = time.perf_counter()
        tables = tuple(adapter.load_metadata(exclude))
        log.debug(
            "Loaded schema metadata",
            extra={
                "adapter": adapter.name,
                "tables": len(tables),
                "duration_ms": round((time.perf_counter() - t0) * 1000.0, 1),
            },
        )
        if self.cache is not None:
            self.cache.set(key, tables)
        return list(tables)
