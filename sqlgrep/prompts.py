"""Message builders for the two model calls: planning and interpretation."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Sequence

from sqlgrep.types import ConversationMessage, ExecutedStep

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful assistant that translates natural language questions "
    "into safe, read-only SQL queries. Always respond with valid JSON "
    "describing the queries to execute."
)

DEFAULT_INTERPRETATION_PROMPT = (
    "You are a helpful assistant that answers questions using the results of "
    "database queries. Answer concisely, using only the data provided."
)

RESPONSE_CONTRACT = (
    'Respond strictly in JSON with the format: {"steps": [{"type": "raw", '
    '"query": "select ...", "bindings": [...]}], "summary": "..."}.'
)

PLANNING_RULES = (
    "Rules:\n"
    "- Every query must be a single read-only SELECT statement.\n"
    "- Use ? placeholders for every value taken from the question and list the "
    "values, in order, in bindings.\n"
    "- Only reference the tables listed in the schema below.\n"
    "- If the question cannot be answered from this schema, return no steps and "
    "explain why in summary."
)

ANSWER_FORMATS: Dict[str, str] = {
    "text": "Format the answer as plain text.",
    "markdown": "Format the answer as Markdown.",
    "html": "Format the answer as an HTML fragment.",
}

MAX_RESULT_ROWS_IN_PROMPT = 50


Message = Dict[str, str]


def build_planning_messages(
    question: str,
    schema_context: str,
    history: Sequence[ConversationMessage] = (),
    *,
    system_prompt: Optional[str] = None,
) -> List[Message]:
    system = "\n\n".join(
        [
            system_prompt or DEFAULT_SYSTEM_PROMPT,
            RESPONSE_CONTRACT,
            PLANNING_RULES,
            "Available schema information:\n" + (schema_context or "(none)"),
        ]
    )
    messages: List[Message] = [{"role": "system", "content": system}]
    messages.extend(m.to_dict() for m in history)
    messages.append({"role": "user", "content": question})
    return messages


def _steps_for_prompt(
    executed: Sequence[ExecutedStep], max_rows: int
) -> List[Dict[str, Any]]:
    out: List[Dict[str, Any]] = []
    for e in executed:
        rows = [dict(r) for r in e.results[:max_rows]]
        item: Dict[str, Any] = {
            "query": e.query,
            "bindings": list(e.bindings),
            "results": rows,
        }
        if len(e.results) > max_rows:
            item["truncated_rows"] = len(e.results) - max_rows
        out.append(item)
    return out


def build_interpretation_messages(
    question: str,
    plan_summary: Optional[str],
    executed: Sequence[ExecutedStep],
    *,
    answer_format: Optional[str] = None,
    max_rows: int = MAX_RESULT_ROWS_IN_PROMPT,
) -> List[Message]:
    system = DEFAULT_INTERPRETATION_PROMPT
    fmt = ANSWER_FORMATS.get((answer_format or "").lower())
    if fmt:
        system = f"{system}\n\n{fmt}"

    parts = [f"Question: {question}"]
    if plan_summary:
        parts.append(f"Plan summary: {plan_summary}")
    parts.append(
        "Query results (JSON):\n"
        + json.dumps(_steps_for_prompt(executed, max_rows), default=str, ensure_ascii=False)
    )
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": "\n\n".join(parts)},
    ]
