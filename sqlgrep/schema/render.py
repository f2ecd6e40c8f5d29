from __future__ import annotations

from typing import Iterable, List

from sqlgrep.types import ColumnMetadata, Relationship, TableMetadata


def _render_column(col: ColumnMetadata) -> str:
    line = f"- {col.name} ({col.type or 'unknown'})"
    if col.description:
        line += f": {col.description}"
    return line


def _render_relationship(rel: Relationship) -> str:
    line = f"- {rel.type} {rel.table}"
    if rel.foreign_key:
        line += f" (foreign key: {rel.foreign_key})"
    return line


def render_table(table: TableMetadata) -> str:
    header = f"Table {table.name}"
    if table.model:
        header += f" (Model: {table.model})"
    if table.description:
        header += f" - {table.description}"

    lines: List[str] = [header]
    lines.extend(_render_column(c) for c in table.columns)
    if table.relationships:
        lines.append("Relationships:")
        lines.extend(_render_relationship(r) for r in table.relationships)
    return "\n".join(lines)


def render_schema_context(tables: Iterable[TableMetadata]) -> str:
    """One block per table, in the order given. Never sorts."""
    return "\n\n".join(render_table(t) for t in tables)
