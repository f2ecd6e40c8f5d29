from __future__ import annotations

import logging
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Tuple

from sqlgrep.types import ColumnMetadata, Relationship, TableMetadata

log = logging.getLogger(__name__)

RELATIONSHIP_TYPES = {
    "hasone",
    "hasmany",
    "belongsto",
    "belongstomany",
    "hasmanythrough",
    "hasonethrough",
}


def _str(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def normalize_table_key(name: str) -> str:
    return (name or "").strip().lower()


def _parse_column(raw: Any) -> Optional[ColumnMetadata]:
    if isinstance(raw, str) and raw.strip():
        return ColumnMetadata(name=raw.strip())
    if not isinstance(raw, Mapping):
        return None
    name = _str(raw.get("name"))
    if not name:
        return None
    return ColumnMetadata(
        name=name,
        type=_str(raw.get("type")),
        description=_str(raw.get("description")),
    )


def _parse_relationship(raw: Any) -> Optional[Relationship]:
    if not isinstance(raw, Mapping):
        return None
    rel_type = _str(raw.get("type"))
    table = _str(raw.get("table"))
    if not rel_type or not table:
        return None
    if rel_type.lower() not in RELATIONSHIP_TYPES:
        log.debug("Unusual relationship type %r on table %r", rel_type, table)
    fk = _str(raw.get("foreign_key") or raw.get("foreignKey")) or None
    return Relationship(type=rel_type, table=table, foreign_key=fk)


def parse_table(raw: Any) -> Optional[TableMetadata]:
    """
    Build TableMetadata from a configured mapping.

    Returns None for entries that are not mappings or have no usable name.
    Malformed columns/relationships are dropped one by one.
    """
    if isinstance(raw, TableMetadata):
        return raw
    if not isinstance(raw, Mapping):
        return None
    name = _str(raw.get("name"))
    if not name:
        return None

    raw_cols = raw.get("columns") or []
    raw_rels = raw.get("relationships") or []
    cols = [c for c in (_parse_column(x) for x in _as_list(raw_cols)) if c]
    rels = [r for r in (_parse_relationship(x) for x in _as_list(raw_rels)) if r]

    return TableMetadata(
        name=name,
        description=_str(raw.get("description")),
        columns=tuple(cols),
        relationships=tuple(rels),
        model=_str(raw.get("model")) or None,
    )


def _as_list(value: Any) -> List[Any]:
    if isinstance(value, (list, tuple)):
        return list(value)
    return []


def parse_tables(raw: Iterable[Any]) -> Tuple[TableMetadata, ...]:
    out: List[TableMetadata] = []
    for entry in raw or ():
        table = parse_table(entry)
        if table is None:
            log.debug("Discarding malformed metadata entry", extra={"entry": repr(entry)[:200]})
            continue
        out.append(table)
    return tuple(out)


def merge_tables(
    loaded: Sequence[TableMetadata],
    configured: Sequence[TableMetadata],
    exclude_tables: Iterable[str] = (),
) -> Tuple[TableMetadata, ...]:
    """
    Catalog tables followed by configured tables.

    A configured table replaces a loaded table of the same (case-insensitive)
    name in place. Excluded tables are dropped from both sources.
    """
    excluded = {normalize_table_key(t) for t in exclude_tables if t}
    merged: Dict[str, TableMetadata] = {}

    for table in list(loaded) + list(configured):
        key = normalize_table_key(table.name)
        if not key or key in excluded:
            continue
        merged[key] = table

    return tuple(merged.values())


def known_tables(tables: Iterable[TableMetadata]) -> FrozenSet[str]:
    return frozenset(normalize_table_key(t.name) for t in tables if t.name)
